"""
Cooperative cancellation.

A ``CancelSource`` owns the shared flag. Workers only ever see a
``CancelToken``, which can read the flag but not set it.
"""

from __future__ import annotations

import threading


class OperationCanceled(Exception):
    """Raised by ``CancelToken.raise_if_canceled`` at a checkpoint."""


class CancelToken:
    """Read-only view over a shared cancellation flag."""

    __slots__ = ("_event",)

    def __init__(self, event: threading.Event):
        self._event = event

    def is_canceled(self) -> bool:
        return self._event.is_set()

    def raise_if_canceled(self) -> None:
        if self._event.is_set():
            raise OperationCanceled("operation canceled")

    @classmethod
    def never(cls) -> "CancelToken":
        """A token that is never canceled (scripts, tests)."""
        return cls(threading.Event())


class CancelSource:
    """Owner of a cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def canceled(self) -> bool:
        return self._event.is_set()

    def token(self) -> CancelToken:
        return CancelToken(self._event)
