"""
Manifest path validation -- the one security boundary for paths.

Every path string that comes out of a manifest passes through
``normalize_manifest_path`` before it is allowed anywhere near a
filesystem root. Paths that try to leave the root are rejected, not
clamped.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Iterable

DEFAULT_STRIP_PREFIXES: tuple[str, ...] = (
    "resources_override/mappack",
    "mappack",
    "resources_override",
)

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


class UnsafePathError(ValueError):
    """A manifest path is unsafe or empty after normalization."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{reason}: {path!r}")
        self.path = path
        self.reason = reason


def resolve_segments(raw: str) -> list[str]:
    """Split a manifest path into safe segments.

    Converts backslashes, neutralizes one leading slash, collapses
    repeated slashes, drops ``.`` and resolves ``..`` against the
    segments before it.

    Raises:
        UnsafePathError: For NUL bytes, UNC prefixes, drive letters,
            colons, and ``..`` that would climb above the root.
    """
    if "\x00" in raw:
        raise UnsafePathError(raw, "path contains a NUL byte")
    if raw[:2] in ("//", "\\\\", "/\\", "\\/"):
        raise UnsafePathError(raw, "UNC-style path is not allowed")
    if _DRIVE_RE.match(raw):
        raise UnsafePathError(raw, "drive-qualified path is not allowed")

    parts: list[str] = []
    for seg in raw.replace("\\", "/").split("/"):
        if seg in ("", "."):
            continue
        if ":" in seg:
            raise UnsafePathError(raw, "':' is not allowed in a path segment")
        if seg == "..":
            if not parts:
                raise UnsafePathError(raw, "path escapes the sync root")
            parts.pop()
            continue
        parts.append(seg)
    return parts


def _split_prefix(prefix: str) -> list[str]:
    return [p for p in prefix.replace("\\", "/").split("/") if p]


def strip_known_prefix(parts: list[str], prefixes: Iterable[str]) -> list[str]:
    """Remove the first matching prefix (segment-wise), once."""
    for prefix in prefixes:
        pre = _split_prefix(prefix)
        if pre and parts[: len(pre)] == pre:
            return parts[len(pre):]
    return parts


def normalize_manifest_path(
    raw: str, strip_prefixes: Iterable[str] = DEFAULT_STRIP_PREFIXES
) -> str:
    """Turn a manifest path into a root-relative, slash-delimited path.

    Args:
        raw: Path exactly as it appears in the manifest.
        strip_prefixes: Leading directories that mirror the sync root's
            own location; the first one that matches is removed.

    Returns:
        The normalized relative path.

    Raises:
        UnsafePathError: If the path is unsafe or ends up empty.
    """
    parts = strip_known_prefix(resolve_segments(raw), strip_prefixes)
    if not parts:
        raise UnsafePathError(raw, "path is empty after normalization")
    return "/".join(parts)


def remote_path_of(raw: str) -> str:
    """Slash-normalized form of a manifest path, prefixes kept."""
    return "/".join(resolve_segments(raw))


def join_under_root(root: Path, rel_path: str) -> Path:
    """Join a normalized relative path to ``root``.

    The result is re-checked against ``root`` after resolving symlinks
    so a link inside the tree cannot carry a write outside it.

    Raises:
        UnsafePathError: If the joined path lands outside ``root``.
    """
    parts = resolve_segments(rel_path)
    if not parts or "/".join(parts) != rel_path:
        raise UnsafePathError(rel_path, "path is not normalized")
    candidate = root.joinpath(*parts)
    real_root = os.path.realpath(root)
    real = os.path.realpath(candidate)
    try:
        inside = os.path.commonpath([real_root, real]) == real_root
    except ValueError:
        # different drives on Windows
        inside = False
    if not inside:
        raise UnsafePathError(rel_path, "path resolves outside the sync root")
    return candidate
