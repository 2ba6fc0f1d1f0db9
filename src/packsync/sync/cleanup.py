"""
Cleanup passes that run after a validated manifest is in hand.

    delete_orphans        files under the sync root the manifest no longer lists
    remove_empty_dirs     directories left empty by the passes above
    remove_legacy_files   best-effort removal of files an older layout left behind

None of these is ever called before the current manifest was fetched,
parsed and validated.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AbstractSet, Iterable, Iterator, Optional

from ..cancel import CancelToken
from ..events import EventLog
from ..fetcher import ContentFetcher, FetchError
from ..manifest.parser import ManifestFormatError, parse_legacy_paths
from ..manifest.paths import UnsafePathError, join_under_root, normalize_manifest_path
from ..models import SyncConfig

logger = logging.getLogger("packsync.sync.cleanup")


@dataclass
class CleanupTally:
    """Counts produced by one cleanup pass."""

    deleted: int = 0
    failed: int = 0
    dirs_removed: int = 0
    skipped: str = ""


def _iter_candidates(root: Path) -> Iterator[Path]:
    """Regular files and symlinks under ``root``; links are never followed."""
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        base = Path(dirpath)
        for name in sorted(filenames):
            yield base / name
        for name in sorted(dirnames):
            if os.path.islink(base / name):
                yield base / name


def _normalize_extensions(extensions: Iterable[str]) -> frozenset[str]:
    out = set()
    for ext in extensions:
        ext = ext.strip().lower()
        if ext:
            out.add(ext if ext.startswith(".") else "." + ext)
    return frozenset(out)


def delete_orphans(
    sync_root: Path,
    rel_set: AbstractSet[str],
    cancel: CancelToken,
    log: EventLog,
    orphan_root: Optional[Path] = None,
    extensions: Iterable[str] = (),
) -> CleanupTally:
    """Delete files under ``orphan_root`` that are not in ``rel_set``.

    Paths are compared in POSIX form relative to ``sync_root``, the same
    form the validator puts in ``rel_set``.

    Raises:
        OperationCanceled: If cancellation is observed between deletions.
    """
    tally = CleanupTally()
    scan_root = orphan_root or sync_root
    if not scan_root.is_dir():
        log.info("NOTE: %s not found; nothing to delete.", scan_root)
        return tally

    wanted_ext = _normalize_extensions(extensions)
    candidates = []
    for full in _iter_candidates(scan_root):
        cancel.raise_if_canceled()
        if wanted_ext and full.suffix.lower() not in wanted_ext:
            continue
        candidates.append(full)

    for full in candidates:
        cancel.raise_if_canceled()
        rel = full.relative_to(sync_root).as_posix()
        if rel in rel_set:
            continue
        try:
            full.unlink()
        except OSError as exc:
            tally.failed += 1
            log.warning("  FAILED DELETE: %s (%s)", rel, exc.strerror or exc)
            continue
        tally.deleted += 1
        log.info("  DELETED: %s", rel)

    if not tally.deleted and not tally.failed:
        log.info("  No files found that need to be deleted.")
    return tally


def remove_empty_dirs(
    root: Path,
    log: Optional[EventLog] = None,
    include_root: bool = False,
) -> int:
    """Remove empty directories under ``root``, deepest first.

    Directories are visited longest path first so children always go
    before their parents. Non-empty or undeletable directories are
    skipped. Symlinked directories are neither followed nor removed.

    Returns:
        Number of directories removed.
    """
    if not root.is_dir() or root.is_symlink():
        return 0

    dirs: list[Path] = []
    for dirpath, dirnames, _ in os.walk(root, followlinks=False):
        for name in dirnames:
            path = Path(dirpath) / name
            if not path.is_symlink():
                dirs.append(path)
    dirs.sort(key=lambda p: len(str(p)), reverse=True)
    if include_root:
        dirs.append(root)

    removed = 0
    for path in dirs:
        try:
            path.rmdir()
        except OSError:
            continue
        removed += 1
        if log is not None:
            log.info("  REMOVED EMPTY DIR: %s", path)
        else:
            logger.debug("Removed empty directory %s", path)
    return removed


def remove_legacy_files(
    config: SyncConfig,
    fetcher: ContentFetcher,
    cancel: CancelToken,
    log: EventLog,
) -> CleanupTally:
    """Delete files listed by the old-format manifest.

    Every failure here is logged and skipped: a missing or broken legacy
    manifest leaves the run's result untouched. Listed paths still go
    through the path validator; anything unsafe is skipped.

    Raises:
        FetchCanceled: If cancellation is observed during the fetch.
        OperationCanceled: If cancellation is observed between deletions.
    """
    tally = CleanupTally()
    if not config.legacy_manifest_url:
        tally.skipped = "no legacy manifest configured"
        return tally

    log.info("Downloading manifest for older pack versions...")
    try:
        data = fetcher.fetch_to_buffer(
            config.legacy_manifest_url,
            cancel,
            config.manifest_max_bytes,
            config.text_timeouts,
        )
        raw_paths = parse_legacy_paths(
            data,
            max_bytes=config.manifest_max_bytes,
            max_depth=config.json_max_depth,
        )
    except FetchError as exc:
        tally.skipped = str(exc)
        log.warning("  (skipped) Could not download legacy manifest: %s", exc)
        return tally
    except ManifestFormatError as exc:
        tally.skipped = str(exc)
        log.warning("  (skipped) Could not parse legacy manifest: %s", exc)
        return tally

    log.info("Removing files from older pack versions...")
    for raw in raw_paths:
        cancel.raise_if_canceled()
        try:
            rel = normalize_manifest_path(raw, config.legacy_strip_prefixes)
            local = join_under_root(config.legacy_root, rel)
        except UnsafePathError as exc:
            log.warning("  SKIPPED (unsafe legacy path): %s", exc)
            continue
        try:
            if not local.is_file():
                continue
            local.unlink()
        except OSError as exc:
            tally.failed += 1
            log.warning("  ERROR deleting old file: %s (%s)", rel, exc.strerror or exc)
            continue
        tally.deleted += 1
        log.info("  DELETED (old): %s", rel)

    log.info("Legacy Deleted Files Summary:")
    log.info("  Deletions: %d", tally.deleted)
    log.info("  Failed deletions: %d", tally.failed)

    for root in config.legacy_dir_cleanup_roots:
        cancel.raise_if_canceled()
        tally.dirs_removed += remove_empty_dirs(root, log)
    return tally
