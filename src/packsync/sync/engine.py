"""
Sync orchestrator -- brings the managed tree in line with the manifest.

State machine::

    IDLE -> FETCHING_MANIFEST -> MANIFEST_FAILED                       (terminal)
                              -> MANIFEST_READY -> DIFFING -> TRANSFERRING
                                 -> CLEANING -> PATCHING_CONFIG -> DONE (terminal)

    any phase -> CANCELED at a checkpoint                                (terminal)

The manifest is fetched, parsed and validated before anything on disk is
touched. If any of those three steps fails the run ends in
MANIFEST_FAILED and no file is created, replaced or deleted.

Per-file failures (transport, digest mismatch, filesystem) are logged,
counted and skipped; they never end the run.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from ..cancel import CancelToken, OperationCanceled
from ..events import EventChannel, EventLog, PhaseEvent, ProgressEvent
from ..fetcher import ContentFetcher, FetchCanceled, FetchError, file_url
from ..hashing import DigestMismatchError, HashingFileSink, digests_equal, sha256_file
from ..manifest.parser import ManifestFormatError, parse_manifest
from ..manifest.paths import UnsafePathError, join_under_root
from ..manifest.validator import ManifestValidationError, validate_manifest
from ..models import (
    ManifestData,
    ManifestEntry,
    RunPhase,
    SyncConfig,
    SyncCounters,
    SyncMode,
    SyncOutcome,
)
from .atomic import discard, temp_file_beside
from .cleanup import delete_orphans, remove_empty_dirs, remove_legacy_files
from .prefs import PrefsPatchStatus, ensure_prefs_value

logger = logging.getLogger("packsync.sync.engine")

SEPARATOR = "-" * 60
ABORT_NOTE = "Aborting sync. No local deletes/cleanup will be performed."


class _ManifestFailure(Exception):
    pass


class SyncEngine:
    """Runs one sync or remove pass over the managed tree.

    Args:
        config: Frozen run configuration.
        fetcher: Transport used for the manifest and every file.
        cancel: Cooperative cancellation token, polled at checkpoints.
        events: Optional channel receiving log, phase and progress events.
    """

    def __init__(
        self,
        config: SyncConfig,
        fetcher: ContentFetcher,
        cancel: CancelToken,
        events: Optional[EventChannel] = None,
    ) -> None:
        self._config = config
        self._fetcher = fetcher
        self._cancel = cancel
        self._events = events
        self._log = EventLog(logger, events)
        self.phase = RunPhase.IDLE

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run_sync(self) -> SyncOutcome:
        """Download missing/changed files, delete orphans, patch prefs."""
        return self._run(SyncMode.SYNC)

    def run_remove(self) -> SyncOutcome:
        """Delete every manifest-listed file and restore the prefs value."""
        return self._run(SyncMode.REMOVE)

    def download_verified(self, url: str, dest: Path, expected: str) -> None:
        """Fetch ``url`` into ``dest`` only if its SHA-256 equals ``expected``.

        The body streams into a temp file beside ``dest`` while being
        hashed. The temp file replaces ``dest`` only after it is synced
        and its digest matched; on any failure or cancellation it is
        removed and ``dest`` is left as it was.

        Raises:
            FetchError: On transport failure.
            FetchCanceled: If cancellation is observed mid-transfer.
            DigestMismatchError: If the digest does not match.
            OSError: On filesystem failure.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = temp_file_beside(dest)
        try:
            with os.fdopen(fd, "wb") as fh:
                sink = HashingFileSink(fh)
                self._fetcher.fetch_to_sink(
                    url, sink, self._cancel, self._config.file_timeouts
                )
                fh.flush()
                os.fsync(fh.fileno())
            actual = sink.hexdigest()
            if not digests_equal(actual, expected):
                raise DigestMismatchError(expected, actual)
            os.replace(tmp, dest)
        except BaseException:
            discard(tmp)
            raise

    # ------------------------------------------------------------------
    # Run driver
    # ------------------------------------------------------------------

    def _run(self, mode: SyncMode) -> SyncOutcome:
        counters = SyncCounters()
        try:
            manifest = self._load_manifest()
        except _ManifestFailure as exc:
            self._set_phase(RunPhase.MANIFEST_FAILED)
            return SyncOutcome(mode=mode, phase=self.phase, counters=counters, error=str(exc))
        except (OperationCanceled, FetchCanceled):
            return self._canceled(mode, counters)

        try:
            if mode == SyncMode.SYNC:
                self._sync(manifest, counters)
            else:
                self._remove(manifest, counters)
        except (OperationCanceled, FetchCanceled):
            return self._canceled(mode, counters)

        self._set_phase(RunPhase.DONE)
        self._log.info(SEPARATOR)
        self._log.info("Sync complete." if mode == SyncMode.SYNC else "Remove complete.")
        return SyncOutcome(mode=mode, phase=self.phase, counters=counters)

    def _canceled(self, mode: SyncMode, counters: SyncCounters) -> SyncOutcome:
        self._set_phase(RunPhase.CANCELED)
        self._log.info("Operation canceled.")
        return SyncOutcome(mode=mode, phase=self.phase, counters=counters)

    def _set_phase(self, phase: RunPhase) -> None:
        self.phase = phase
        logger.debug("Phase -> %s", phase.value)
        self._log.publish(PhaseEvent(phase=phase))

    def _progress(self, current: int, total: int, text: str) -> None:
        self._log.publish(ProgressEvent(current=current, total=total, text=text))

    def _checkpoint(self, where: str) -> None:
        if self._cancel.is_canceled():
            self._log.info("INFO: Canceled %s.", where)
            raise OperationCanceled(where)

    # ------------------------------------------------------------------
    # Step 1: manifest
    # ------------------------------------------------------------------

    def _load_manifest(self) -> ManifestData:
        cfg = self._config
        self._set_phase(RunPhase.FETCHING_MANIFEST)
        self._log.info("Downloading manifest: %s", cfg.manifest_url)
        try:
            data = self._fetcher.fetch_to_buffer(
                cfg.manifest_url, self._cancel, cfg.manifest_max_bytes, cfg.text_timeouts
            )
            self._checkpoint("after manifest download")
            parsed = parse_manifest(
                data, max_bytes=cfg.manifest_max_bytes, max_depth=cfg.json_max_depth
            )
            manifest = validate_manifest(
                parsed.entries, strip_prefixes=cfg.strip_prefixes, base_url=parsed.base_url
            )
            self._checkpoint("after manifest validation")
        except FetchError as exc:
            status = f" (HTTP {exc.status})" if exc.status else ""
            self._abort(f"Manifest download failed{status}: {exc}")
        except ManifestFormatError as exc:
            self._abort(f"Manifest parse failed: {exc}")
        except ManifestValidationError as exc:
            self._abort(f"Manifest rejected: {exc}")

        self._set_phase(RunPhase.MANIFEST_READY)
        self._log.info("Manifest file count: %d", len(manifest.work_list))
        return manifest

    def _abort(self, reason: str) -> None:
        self._log.error("ERROR: %s", reason)
        self._log.error(ABORT_NOTE)
        raise _ManifestFailure(reason)

    # ------------------------------------------------------------------
    # Sync mode
    # ------------------------------------------------------------------

    def _sync(self, manifest: ManifestData, counters: SyncCounters) -> None:
        cfg = self._config
        self._log.info("Syncing root: %s", cfg.sync_root)
        self._log.info(SEPARATOR)
        self._checkpoint("before downloads")

        plan, done = self._diff(manifest, counters)
        self._transfer(manifest, plan, done, counters)
        self._checkpoint("after downloads")
        self._log_sync_summary(counters)

        self._checkpoint("before deletions")
        self._set_phase(RunPhase.CLEANING)
        self._log.info(SEPARATOR)
        self._log.info("Searching for local files that are not in the manifest...")
        orphans = delete_orphans(
            cfg.sync_root,
            manifest.rel_set,
            self._cancel,
            self._log,
            orphan_root=cfg.orphan_root,
            extensions=cfg.orphan_extensions,
        )
        counters.deleted += orphans.deleted
        counters.failed += orphans.failed
        self._log.info("File Delete Summary:")
        self._log.info("  Deletions: %d", orphans.deleted)
        self._log.info("  Failed deletions: %d", orphans.failed)

        self._checkpoint("before directory cleanup")
        self._remove_empty(cfg.orphan_root, counters, include_root=False)

        self._checkpoint("before legacy cleanup")
        self._legacy(counters)

        self._checkpoint("before prefs update")
        self._patch_prefs(cfg.prefs_sync_value)

    def _diff(
        self, manifest: ManifestData, counters: SyncCounters
    ) -> tuple[list[tuple[ManifestEntry, Path, bool]], int]:
        """Hash local files.

        Returns:
            The entries that need a transfer, each with its destination
            and whether something already exists there, plus the number
            of entries already settled (unchanged or failed).
        """
        self._set_phase(RunPhase.DIFFING)
        self._log.info("Searching for local files that are missing or changed...")
        total = len(manifest.work_list)
        plan: list[tuple[ManifestEntry, Path, bool]] = []
        done = 0
        for entry in manifest.work_list:
            self._checkpoint("during diffing")
            try:
                dest = join_under_root(self._config.sync_root, entry.rel_path)
            except UnsafePathError as exc:
                counters.failed += 1
                done += 1
                self._log.warning("FAILED: %s (%s)", entry.rel_path, exc.reason)
                self._progress(done, total, entry.rel_path)
                continue

            try:
                local = sha256_file(dest) if dest.is_file() else None
                existed = local is not None or os.path.lexists(dest)
            except OSError as exc:
                counters.failed += 1
                done += 1
                self._log.warning("FAILED HASH (local): %s (%s)", entry.rel_path, exc)
                self._progress(done, total, entry.rel_path)
                continue
            if local is not None and digests_equal(local, entry.sha256):
                counters.unchanged += 1
                done += 1
                self._progress(done, total, entry.rel_path)
                continue
            plan.append((entry, dest, existed))
        return plan, done

    def _transfer(
        self,
        manifest: ManifestData,
        plan: list[tuple[ManifestEntry, Path, bool]],
        done: int,
        counters: SyncCounters,
    ) -> None:
        self._set_phase(RunPhase.TRANSFERRING)
        total = len(manifest.work_list)
        base = manifest.base_url or self._config.files_base_url
        for entry, dest, existed in plan:
            self._checkpoint("before next download")
            rel = entry.rel_path
            self._progress(done, total, f"File {done + 1}/{total}: {rel}")
            url = file_url(base, entry.remote_path)
            try:
                self.download_verified(url, dest, entry.sha256)
            except FetchError as exc:
                counters.failed += 1
                self._log.warning("FAILED DOWNLOAD: %s (HTTP %s) %s", rel, exc.status or 0, exc)
            except DigestMismatchError as exc:
                counters.failed += 1
                self._log.warning("FAILED VERIFY: %s (%s)", rel, exc)
            except OSError as exc:
                counters.failed += 1
                self._log.warning("FAILED WRITE: %s (%s)", rel, exc)
            else:
                if existed:
                    counters.updated += 1
                    self._log.info("  UPDATED: %s", rel)
                else:
                    counters.downloaded += 1
                    self._log.info("  DOWNLOADED: %s", rel)
            done += 1
            self._progress(done, total, rel)

        if not plan:
            self._log.info("  No missing or changed files found. Your files are in sync with the manifest!")

    def _log_sync_summary(self, counters: SyncCounters) -> None:
        self._log.info("Sync Summary:")
        self._log.info("  Downloaded (missing): %d", counters.downloaded)
        self._log.info("  Updated (different): %d", counters.updated)
        self._log.info("  Unchanged (same): %d", counters.unchanged)
        self._log.info("  Failed Downloads/Updates: %d", counters.failed)

    # ------------------------------------------------------------------
    # Remove mode
    # ------------------------------------------------------------------

    def _remove(self, manifest: ManifestData, counters: SyncCounters) -> None:
        cfg = self._config
        self._set_phase(RunPhase.CLEANING)
        self._log.info(SEPARATOR)
        self._log.info("Removing files listed in the manifest...")
        total = len(manifest.work_list)
        for done, entry in enumerate(manifest.work_list, 1):
            self._checkpoint("during remove")
            rel = entry.rel_path
            self._progress(done - 1, total, f"Removing {done}/{total}: {rel}")
            try:
                dest = join_under_root(cfg.sync_root, rel)
            except UnsafePathError as exc:
                counters.failed += 1
                self._log.warning("  FAILED DELETE: %s (%s)", rel, exc.reason)
                self._progress(done, total, rel)
                continue
            if not os.path.lexists(dest):
                counters.missing += 1
            else:
                try:
                    dest.unlink()
                except OSError as exc:
                    counters.failed += 1
                    self._log.warning("  FAILED DELETE: %s (%s)", rel, exc.strerror or exc)
                else:
                    counters.deleted += 1
                    self._log.info("  DELETED: %s", rel)
            self._progress(done, total, rel)

        self._log.info("Deleted Files Summary:")
        self._log.info("  Deletions: %d", counters.deleted)
        self._log.info("  File doesn't exist (already removed): %d", counters.missing)
        self._log.info("  Failed deletions: %d", counters.failed)

        self._checkpoint("before directory cleanup")
        self._remove_empty(cfg.sync_root, counters, include_root=True)

        self._checkpoint("before legacy cleanup")
        self._legacy(counters)

        self._checkpoint("before prefs update")
        self._patch_prefs(cfg.prefs_remove_value)

    # ------------------------------------------------------------------
    # Shared tail steps
    # ------------------------------------------------------------------

    def _remove_empty(self, root: Path, counters: SyncCounters, include_root: bool) -> None:
        self._log.info(SEPARATOR)
        self._log.info("Removing empty directories under %s...", root)
        removed = remove_empty_dirs(root, self._log, include_root=include_root)
        counters.dirs_removed += removed
        if removed:
            self._log.info("  Directories removed: %d", removed)
        else:
            self._log.info("  No empty sub-directories found; nothing to delete.")

    def _legacy(self, counters: SyncCounters) -> None:
        self._log.info(SEPARATOR)
        tally = remove_legacy_files(self._config, self._fetcher, self._cancel, self._log)
        counters.deleted += tally.deleted
        counters.dirs_removed += tally.dirs_removed

    def _patch_prefs(self, value: str) -> None:
        cfg = self._config
        if cfg.prefs_file is None or not value:
            return
        self._set_phase(RunPhase.PATCHING_CONFIG)
        self._log.info(SEPARATOR)
        try:
            result = ensure_prefs_value(cfg.prefs_file, cfg.prefs_key, value)
        except OSError as exc:
            self._log.warning("Prefs check: could not update %s: %s", cfg.prefs_file, exc)
            return

        if result.status == PrefsPatchStatus.MISSING_FILE:
            self._log.info("Prefs check: file not found: %s", cfg.prefs_file)
        elif result.status == PrefsPatchStatus.MISSING_KEY:
            self._log.info("Prefs check: '%s' not found in %s", cfg.prefs_key, cfg.prefs_file)
        elif result.status == PrefsPatchStatus.MALFORMED:
            self._log.warning(
                "Prefs check: '%s' line has no quoted value in %s", cfg.prefs_key, cfg.prefs_file
            )
        elif result.status == PrefsPatchStatus.UNCHANGED:
            self._log.info("Checking '%s': already correct -> %s", cfg.prefs_key, value)
        else:
            self._log.info("Checking '%s': incorrect, updating...", cfg.prefs_key)
            self._log.info("  Old: %s", result.old_value)
            self._log.info("  New: %s", result.new_value)
