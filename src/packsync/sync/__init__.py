"""Sync orchestrator and its cleanup and prefs steps."""

from .engine import DigestMismatchError, SyncEngine
from .prefs import PrefsPatchResult, PrefsPatchStatus, ensure_prefs_value

__all__ = [
    "DigestMismatchError",
    "PrefsPatchResult",
    "PrefsPatchStatus",
    "SyncEngine",
    "ensure_prefs_value",
]
