"""
Event channel -- the only way work leaves a worker thread.

The orchestrator and the update verifier publish typed events; any
number of consumers (the CLI renderer, a test harness) read them
without the core holding a reference to presentation state.

Usage:
    channel = EventChannel()
    sub = channel.subscribe()
    engine = SyncEngine(config, fetcher, cancel, events=channel)
    ...
    for event in sub.drain():
        print(event.kind)
"""

from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Callable, Literal, Optional, Union

from pydantic import BaseModel, Field

from .models import RunPhase, SyncOutcome, UpdateResult

logger = logging.getLogger("packsync.events")


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


class _EventBase(BaseModel):
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LogEvent(_EventBase):
    """A user-visible log line."""

    kind: Literal["log"] = "log"
    level: int = logging.INFO
    message: str


class PhaseEvent(_EventBase):
    """The orchestrator entered a new phase."""

    kind: Literal["phase"] = "phase"
    phase: RunPhase


class ProgressEvent(_EventBase):
    """Monotonic progress over a known total."""

    kind: Literal["progress"] = "progress"
    current: int
    total: int
    text: str = ""


class ResultEvent(_EventBase):
    """Terminal outcome of a sync or remove run."""

    kind: Literal["result"] = "result"
    outcome: SyncOutcome


class UpdateCheckEvent(_EventBase):
    """Terminal outcome of an update check."""

    kind: Literal["update_check"] = "update_check"
    result: UpdateResult


Event = Union[LogEvent, PhaseEvent, ProgressEvent, ResultEvent, UpdateCheckEvent]


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------


class Subscription:
    """A queue of every event published after it was created."""

    def __init__(self, channel: "EventChannel") -> None:
        self._channel = channel
        self._queue: "queue.Queue[Event]" = queue.Queue()

    def _put(self, event: Event) -> None:
        self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None if nothing arrived within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Event]:
        """Every event queued so far, without blocking."""
        events: list[Event] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        self._channel.unsubscribe(self)


class EventChannel:
    """Thread-safe fan-out of events to subscriptions and listeners.

    Listeners run synchronously on the publishing thread; a listener
    that raises is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: list[Subscription] = []
        self._listeners: list[Callable[[Event], None]] = []

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        with self._lock:
            self._subs.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def add_listener(self, callback: Callable[[Event], None]) -> None:
        with self._lock:
            self._listeners.append(callback)

    def publish(self, event: Event) -> None:
        with self._lock:
            subs = list(self._subs)
            listeners = list(self._listeners)
        for sub in subs:
            sub._put(event)
        for cb in listeners:
            try:
                cb(event)
            except Exception as exc:
                logger.error("Event listener failed on %s event: %s", event.kind, exc)


class EventLog:
    """Writes a line to a module logger and to the event channel at once."""

    def __init__(self, log: logging.Logger, channel: Optional[EventChannel] = None):
        self._log = log
        self._channel = channel

    def emit(self, level: int, message: str, *args: object) -> None:
        text = message % args if args else message
        self._log.log(level, text)
        if self._channel is not None:
            self._channel.publish(LogEvent(level=level, message=text))

    def info(self, message: str, *args: object) -> None:
        self.emit(logging.INFO, message, *args)

    def warning(self, message: str, *args: object) -> None:
        self.emit(logging.WARNING, message, *args)

    def error(self, message: str, *args: object) -> None:
        self.emit(logging.ERROR, message, *args)

    def publish(self, event: Event) -> None:
        if self._channel is not None:
            self._channel.publish(event)
