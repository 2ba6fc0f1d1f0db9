"""
Pydantic models shared by the sync engine and the self-updater.

Manifest records are immutable once validated. Counters are the only
mutable record and belong to exactly one run.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RunPhase(str, Enum):
    """Orchestrator state machine positions."""

    IDLE = "idle"
    FETCHING_MANIFEST = "fetching_manifest"
    MANIFEST_READY = "manifest_ready"
    MANIFEST_FAILED = "manifest_failed"
    DIFFING = "diffing"
    TRANSFERRING = "transferring"
    CLEANING = "cleaning"
    PATCHING_CONFIG = "patching_config"
    DONE = "done"
    CANCELED = "canceled"

    @property
    def terminal(self) -> bool:
        """Whether the run ends in this phase."""
        return self in (RunPhase.MANIFEST_FAILED, RunPhase.DONE, RunPhase.CANCELED)


class SyncMode(str, Enum):
    """Which orchestrator variant to run."""

    SYNC = "sync"
    REMOVE = "remove"


class FetchTimeouts(BaseModel):
    """Timeout budget for one fetch category, in seconds.

    A ``total`` of 0 means the receive phase is unbounded.
    """

    model_config = ConfigDict(frozen=True)

    connect: float = 15.0
    total: float = 120.0


# ---------------------------------------------------------------------------
# Manifest records
# ---------------------------------------------------------------------------


class ManifestRawEntry(BaseModel):
    """One ``files`` element exactly as decoded, not yet validated."""

    path: str
    sha256: str


class ManifestEntry(BaseModel):
    """A validated manifest entry.

    ``rel_path`` is root-relative, slash-delimited, free of ``.``/``..``
    segments and unique within its manifest.
    """

    model_config = ConfigDict(frozen=True)

    remote_path: str
    rel_path: str
    sha256: str


class ManifestData(BaseModel):
    """The sync plan for one run, sorted by ``rel_path``."""

    model_config = ConfigDict(frozen=True)

    work_list: tuple[ManifestEntry, ...] = ()
    rel_set: frozenset[str] = frozenset()
    base_url: Optional[str] = None


# ---------------------------------------------------------------------------
# Run configuration and results
# ---------------------------------------------------------------------------


class SyncConfig(BaseModel):
    """Immutable per-run configuration, built after preflight."""

    model_config = ConfigDict(frozen=True)

    manifest_url: str
    legacy_manifest_url: Optional[str] = None
    files_base_url: str

    install_root: Path
    sync_root: Path
    orphan_root: Path
    orphan_extensions: tuple[str, ...] = ()
    strip_prefixes: tuple[str, ...] = ()

    legacy_root: Path
    legacy_strip_prefixes: tuple[str, ...] = ()
    legacy_dir_cleanup_roots: tuple[Path, ...] = ()

    prefs_file: Optional[Path] = None
    prefs_key: str = "string mapPath"
    prefs_sync_value: str = ""
    prefs_remove_value: str = ""

    text_timeouts: FetchTimeouts = Field(default_factory=FetchTimeouts)
    file_timeouts: FetchTimeouts = Field(
        default_factory=lambda: FetchTimeouts(connect=15.0, total=0.0)
    )
    manifest_max_bytes: int = 16 * 1024 * 1024
    json_max_depth: int = 64


class SyncCounters(BaseModel):
    """Per-run tallies. Reported, never persisted."""

    downloaded: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    deleted: int = 0
    missing: int = 0
    dirs_removed: int = 0


class SyncOutcome(BaseModel):
    """Terminal result of one orchestrator run."""

    mode: SyncMode
    phase: RunPhase
    counters: SyncCounters = Field(default_factory=SyncCounters)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True only when the run reached ``DONE``."""
        return self.phase == RunPhase.DONE


class UpdateResult(BaseModel):
    """Result of one self-update check."""

    ok: bool = False
    different: bool = False
    local_version: str = ""
    remote_version: str = ""
    expected_digest: str = ""
    error: str = ""
    downloaded_temp_path: Optional[Path] = None
    signer_fingerprint: Optional[str] = None
