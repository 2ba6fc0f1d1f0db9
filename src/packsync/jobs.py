"""
Background jobs -- one worker thread per run, one run per kind at a time.

Two job kinds exist: sync/remove runs and update checks. Each kind has a
single slot; starting a second job of a kind while one is active is
refused, not queued. Results reach the caller only through the event
channel (and the ``last_*`` attributes once the thread has finished).
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from . import __version__
from .cancel import CancelSource, CancelToken
from .config import PackSyncSettings
from .events import EventChannel, LogEvent, ResultEvent, UpdateCheckEvent
from .fetcher import ContentFetcher
from .models import RunPhase, SyncConfig, SyncMode, SyncOutcome, UpdateResult
from .sync.engine import SyncEngine

logger = logging.getLogger("packsync.jobs")


class JobSlot:
    """Single-occupancy slot with try-acquire semantics."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


class JobRunner:
    """Starts sync and update-check workers and routes their results.

    Args:
        events: Channel every worker publishes to. A new one is created
            when omitted.
        fetcher_factory: Builds a fresh ContentFetcher per job.
    """

    def __init__(
        self,
        events: Optional[EventChannel] = None,
        fetcher_factory: Callable[[], ContentFetcher] = ContentFetcher,
    ) -> None:
        self.events = events or EventChannel()
        self._fetcher_factory = fetcher_factory
        self._sync_slot = JobSlot("sync")
        self._update_slot = JobSlot("update")
        self._sync_cancel = CancelSource()
        self._update_cancel = CancelSource()
        self._threads: list[threading.Thread] = []
        self.last_outcome: Optional[SyncOutcome] = None
        self.last_update: Optional[UpdateResult] = None

    # ------------------------------------------------------------------
    # Sync / remove
    # ------------------------------------------------------------------

    def start_sync(
        self, config: SyncConfig, mode: SyncMode = SyncMode.SYNC
    ) -> Optional[threading.Thread]:
        """Start a sync or remove run on a worker thread.

        Returns:
            The started thread, or None if a run is already active.
        """
        if not self._sync_slot.try_acquire():
            self._refuse("Sync already running.")
            return None
        self._sync_cancel.reset()
        token = self._sync_cancel.token()
        t = threading.Thread(
            target=self._sync_worker,
            args=(config, mode, token),
            name=f"packsync-{mode.value}",
            daemon=True,
        )
        self._track(t)
        t.start()
        return t

    def _sync_worker(self, config: SyncConfig, mode: SyncMode, token: CancelToken) -> None:
        engine: Optional[SyncEngine] = None
        try:
            with self._fetcher_factory() as fetcher:
                engine = SyncEngine(config, fetcher, token, self.events)
                if mode == SyncMode.SYNC:
                    outcome = engine.run_sync()
                else:
                    outcome = engine.run_remove()
        except Exception as exc:
            logger.exception("%s worker failed", mode.value)
            outcome = SyncOutcome(
                mode=mode,
                phase=engine.phase if engine is not None else RunPhase.IDLE,
                error=f"internal error: {exc}",
            )
        finally:
            self._sync_slot.release()
        self.last_outcome = outcome
        self.events.publish(ResultEvent(outcome=outcome))

    # ------------------------------------------------------------------
    # Update check
    # ------------------------------------------------------------------

    def start_update_check(
        self,
        settings: PackSyncSettings,
        local_version: str = __version__,
        executable: Optional[Path] = None,
    ) -> Optional[threading.Thread]:
        """Start an update check on a worker thread.

        Returns:
            The started thread, or None if a check is already active.
        """
        if not self._update_slot.try_acquire():
            self._refuse("Update check already running.")
            return None
        self._update_cancel.reset()
        token = self._update_cancel.token()
        t = threading.Thread(
            target=self._update_worker,
            args=(settings, local_version, executable, token),
            name="packsync-update-check",
            daemon=True,
        )
        self._track(t)
        t.start()
        return t

    def _update_worker(
        self,
        settings: PackSyncSettings,
        local_version: str,
        executable: Optional[Path],
        token: CancelToken,
    ) -> None:
        from .update.trust import SignatureTrustChecker
        from .update.verifier import SelfUpdateVerifier

        try:
            with self._fetcher_factory() as fetcher:
                verifier = SelfUpdateVerifier(
                    settings,
                    fetcher,
                    SignatureTrustChecker(settings.update.pinned_fingerprints),
                    token,
                    local_version=local_version,
                    executable=executable,
                )
                result = verifier.check()
        except Exception as exc:
            logger.exception("update check worker failed")
            result = UpdateResult(local_version=local_version, error=f"internal error: {exc}")
        finally:
            self._update_slot.release()
        self.last_update = result
        self.events.publish(UpdateCheckEvent(result=result))

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def sync_running(self) -> bool:
        return self._sync_slot.busy

    @property
    def update_running(self) -> bool:
        return self._update_slot.busy

    def cancel(self) -> None:
        """Ask every active job to stop at its next checkpoint."""
        self._sync_cancel.cancel()
        self._update_cancel.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join started workers.

        Returns:
            True if every worker has finished.
        """
        for t in list(self._threads):
            t.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]
        return not self._threads

    def _track(self, thread: threading.Thread) -> None:
        self._threads = [t for t in self._threads if t.is_alive()]
        self._threads.append(thread)

    def _refuse(self, message: str) -> None:
        logger.warning(message)
        self.events.publish(LogEvent(level=logging.WARNING, message=message))
