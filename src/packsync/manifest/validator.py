"""
Manifest validator -- raw entries to a trusted, sorted sync plan.

A manifest is trusted atomically: one bad entry rejects the whole
document, and nothing downstream runs.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from ..models import ManifestData, ManifestEntry, ManifestRawEntry, SyncConfig
from .parser import parse_manifest
from .paths import (
    DEFAULT_STRIP_PREFIXES,
    UnsafePathError,
    normalize_manifest_path,
    remote_path_of,
)

logger = logging.getLogger("packsync.manifest.validator")

SHA256_HEX_RE = re.compile(r"[0-9a-fA-F]{64}")


class ManifestValidationError(ValueError):
    """A manifest entry failed validation; the whole manifest is rejected."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


def validate_manifest(
    entries: Iterable[ManifestRawEntry],
    *,
    strip_prefixes: Iterable[str] = DEFAULT_STRIP_PREFIXES,
    base_url: Optional[str] = None,
) -> ManifestData:
    """Validate raw entries and build the sorted work list.

    Args:
        entries: Parsed entries in document order.
        strip_prefixes: Prefixes removed from each path after
            normalization.
        base_url: Optional download root carried by the manifest.

    Returns:
        ManifestData sorted by ``rel_path``.

    Raises:
        ManifestValidationError: On an empty path, a malformed hash, an
            unsafe path or two entries that normalize to the same path.
    """
    prefixes = tuple(strip_prefixes)
    seen: dict[str, str] = {}
    validated: list[ManifestEntry] = []

    for raw in entries:
        if not raw.path:
            raise ManifestValidationError("manifest entry has an empty path", path="")
        if not SHA256_HEX_RE.fullmatch(raw.sha256):
            raise ManifestValidationError(
                f"invalid sha256 for {raw.path!r}: expected 64 hex characters",
                path=raw.path,
            )
        try:
            rel = normalize_manifest_path(raw.path, prefixes)
            remote = remote_path_of(raw.path)
        except UnsafePathError as exc:
            raise ManifestValidationError(
                f"unsafe manifest path {raw.path!r}: {exc.reason}", path=raw.path
            ) from exc

        if rel in seen:
            raise ManifestValidationError(
                f"duplicate manifest path {rel!r} "
                f"(from {seen[rel]!r} and {raw.path!r})",
                path=raw.path,
            )
        seen[rel] = raw.path
        validated.append(
            ManifestEntry(remote_path=remote, rel_path=rel, sha256=raw.sha256.lower())
        )

    validated.sort(key=lambda e: e.rel_path)
    logger.debug("Validated %d manifest entries", len(validated))
    return ManifestData(
        work_list=tuple(validated),
        rel_set=frozenset(seen),
        base_url=base_url,
    )


def load_manifest(data: bytes, config: SyncConfig) -> ManifestData:
    """Parse and validate manifest bytes with the limits of ``config``.

    Raises:
        ManifestFormatError: If the document cannot be parsed.
        ManifestValidationError: If any entry is rejected.
    """
    parsed = parse_manifest(
        data,
        max_bytes=config.manifest_max_bytes,
        max_depth=config.json_max_depth,
    )
    return validate_manifest(
        parsed.entries,
        strip_prefixes=config.strip_prefixes,
        base_url=parsed.base_url,
    )
