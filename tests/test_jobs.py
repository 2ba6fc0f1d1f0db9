"""Tests for the event channel and the background job runner."""

from __future__ import annotations

import logging
import threading

import pytest

from packsync.events import (
    EventChannel,
    EventLog,
    LogEvent,
    PhaseEvent,
    ResultEvent,
    UpdateCheckEvent,
)
from packsync.jobs import JobRunner, JobSlot
from packsync.models import RunPhase, SyncMode

from conftest import FakeFetcher


class TestEventChannel:
    """Tests for EventChannel fan-out."""

    def test_every_subscriber_gets_every_event(self) -> None:
        channel = EventChannel()
        a, b = channel.subscribe(), channel.subscribe()
        channel.publish(PhaseEvent(phase=RunPhase.DIFFING))
        channel.publish(LogEvent(message="hi"))
        assert [e.kind for e in a.drain()] == ["phase", "log"]
        assert [e.kind for e in b.drain()] == ["phase", "log"]

    def test_unsubscribed_gets_nothing(self) -> None:
        channel = EventChannel()
        sub = channel.subscribe()
        sub.close()
        channel.publish(LogEvent(message="hi"))
        assert sub.drain() == []

    def test_get_timeout(self) -> None:
        assert EventChannel().subscribe().get(timeout=0.01) is None

    def test_failing_listener_does_not_block_others(self) -> None:
        channel = EventChannel()
        seen = []

        def bad(event) -> None:
            raise RuntimeError("listener bug")

        channel.add_listener(bad)
        channel.add_listener(seen.append)
        channel.publish(LogEvent(message="hi"))
        assert len(seen) == 1

    def test_event_log_writes_both(self, caplog: pytest.LogCaptureFixture) -> None:
        channel = EventChannel()
        sub = channel.subscribe()
        log = EventLog(logging.getLogger("packsync.test.events"), channel)
        with caplog.at_level(logging.INFO, logger="packsync.test.events"):
            log.warning("  FAILED: %s", "a.png")
        (event,) = sub.drain()
        assert event.message == "  FAILED: a.png"
        assert event.level == logging.WARNING
        assert "  FAILED: a.png" in caplog.text


class TestJobSlot:
    """Tests for JobSlot."""

    def test_single_occupancy(self) -> None:
        slot = JobSlot("sync")
        assert slot.try_acquire()
        assert slot.busy
        assert not slot.try_acquire()
        slot.release()
        assert not slot.busy


class TestJobRunner:
    """Tests for JobRunner."""

    def test_sync_result_published(self, sync_config, fetcher, publish) -> None:
        publish({"a.png": b"1"})
        runner = JobRunner(fetcher_factory=lambda: fetcher)
        sub = runner.events.subscribe()
        thread = runner.start_sync(sync_config)
        assert thread is not None
        assert runner.wait(timeout=10)

        results = [e for e in sub.drain() if isinstance(e, ResultEvent)]
        assert len(results) == 1
        assert results[0].outcome.ok
        assert runner.last_outcome.counters.downloaded == 1
        assert not runner.sync_running
        assert fetcher.closed

    def test_finished_workers_not_retained(self, sync_config, fetcher, publish) -> None:
        publish({"a.png": b"1"})
        runner = JobRunner(fetcher_factory=lambda: fetcher)
        for _ in range(3):
            thread = runner.start_sync(sync_config)
            assert thread is not None
            thread.join(10)
            assert not thread.is_alive()

        last = runner.start_sync(sync_config)
        assert last is not None
        assert runner._threads == [last]
        assert runner.wait(timeout=10)

    def test_second_start_refused(self, sync_config, fetcher, publish) -> None:
        publish({"a.png": b"1"})
        gate = threading.Event()
        entered = threading.Event()
        body = fetcher.routes[sync_config.manifest_url]

        def slow_manifest() -> bytes:
            entered.set()
            gate.wait(10)
            return body

        fetcher.routes[sync_config.manifest_url] = slow_manifest
        runner = JobRunner(fetcher_factory=lambda: fetcher)
        sub = runner.events.subscribe()
        assert runner.start_sync(sync_config) is not None
        assert entered.wait(10)

        assert runner.sync_running
        assert runner.start_sync(sync_config, SyncMode.REMOVE) is None
        gate.set()
        assert runner.wait(timeout=10)

        events = sub.drain()
        refusals = [e for e in events if isinstance(e, LogEvent) and e.message == "Sync already running."]
        assert len(refusals) == 1
        assert len([e for e in events if isinstance(e, ResultEvent)]) == 1

    def test_cancel_reaches_worker(self, sync_config, fetcher, publish) -> None:
        publish({"a.png": b"1"})
        gate = threading.Event()
        entered = threading.Event()
        body = fetcher.routes[sync_config.manifest_url]

        def slow_manifest() -> bytes:
            entered.set()
            gate.wait(10)
            return body

        fetcher.routes[sync_config.manifest_url] = slow_manifest
        runner = JobRunner(fetcher_factory=lambda: fetcher)
        runner.start_sync(sync_config)
        assert entered.wait(10)
        runner.cancel()
        gate.set()
        assert runner.wait(timeout=10)
        assert runner.last_outcome.phase == RunPhase.CANCELED
        assert not (sync_config.sync_root / "a.png").exists()

    def test_runner_restartable_after_cancel(self, sync_config, fetcher, publish) -> None:
        publish({"a.png": b"1"})
        runner = JobRunner(fetcher_factory=lambda: fetcher)
        runner.cancel()
        runner.start_sync(sync_config)
        assert runner.wait(timeout=10)
        assert runner.last_outcome.ok

    def test_worker_crash_becomes_outcome(self, sync_config) -> None:
        def broken_factory() -> FakeFetcher:
            raise RuntimeError("no network stack")

        runner = JobRunner(fetcher_factory=broken_factory)
        runner.start_sync(sync_config)
        assert runner.wait(timeout=10)
        assert not runner.last_outcome.ok
        assert "internal error" in runner.last_outcome.error
        assert not runner.sync_running

    def test_update_check_result_published(self, settings) -> None:
        fetcher = FakeFetcher()
        fetcher.routes[settings.update.version_url] = b"0.0.1\n" + b"a" * 64 + b"\n"
        runner = JobRunner(fetcher_factory=lambda: fetcher)
        sub = runner.events.subscribe()
        runner.start_update_check(settings, local_version="1.0.0")
        assert runner.wait(timeout=10)
        (event,) = [e for e in sub.drain() if isinstance(e, UpdateCheckEvent)]
        assert event.result.ok
        assert not event.result.different
        assert not runner.update_running
