"""
Client prefs patch -- keep one ``key = "value"`` line pointing at the
right map directory.

Only the text between the two quotes changes. Indentation, the
separator, anything after the closing quote and the line ending
(``\\r\\n`` or ``\\n``) are left exactly as found. Bytes that are not
valid UTF-8 survive a round trip untouched.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .atomic import atomic_write_bytes

logger = logging.getLogger("packsync.sync.prefs")

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


class PrefsPatchStatus(str, Enum):
    MISSING_FILE = "missing_file"
    MISSING_KEY = "missing_key"
    MALFORMED = "malformed"
    UNCHANGED = "unchanged"
    UPDATED = "updated"


class PrefsPatchResult(BaseModel):
    """What ``ensure_prefs_value`` found and did."""

    status: PrefsPatchStatus
    path: Path
    old_value: Optional[str] = None
    new_value: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.status == PrefsPatchStatus.UPDATED


def _key_matches(line: str, key: str) -> bool:
    stripped = line.lstrip(" \t")
    if not stripped.startswith(key):
        return False
    rest = stripped[len(key):]
    return not rest or rest[0] in " \t="


def ensure_prefs_value(path: Path, key: str, value: str) -> PrefsPatchResult:
    """Make the first ``key`` line of ``path`` carry ``value``.

    Args:
        path: The prefs file.
        key: Line prefix identifying the assignment, e.g.
            ``string mapPath``.
        value: Desired text between the quotes.

    Returns:
        PrefsPatchResult describing the outcome. A missing file, a
        missing key or a line without two quotes is reported, not
        raised.

    Raises:
        OSError: If the file exists but cannot be read or replaced.
    """
    if not path.is_file():
        return PrefsPatchResult(status=PrefsPatchStatus.MISSING_FILE, path=path)

    text = path.read_bytes().decode(_ENCODING, _ERRORS)
    lines = text.split("\n")
    for index, line in enumerate(lines):
        if not _key_matches(line, key):
            continue
        start = line.find(key)
        q1 = line.find('"', start + len(key))
        q2 = line.find('"', q1 + 1) if q1 != -1 else -1
        if q1 == -1 or q2 == -1:
            logger.debug("%s: %r line has no quoted value", path, key)
            return PrefsPatchResult(status=PrefsPatchStatus.MALFORMED, path=path)

        current = line[q1 + 1:q2]
        if current == value:
            return PrefsPatchResult(
                status=PrefsPatchStatus.UNCHANGED,
                path=path,
                old_value=current,
                new_value=value,
            )

        lines[index] = line[: q1 + 1] + value + line[q2:]
        atomic_write_bytes(path, "\n".join(lines).encode(_ENCODING, _ERRORS))
        logger.debug("%s: %r changed from %r to %r", path, key, current, value)
        return PrefsPatchResult(
            status=PrefsPatchStatus.UPDATED,
            path=path,
            old_value=current,
            new_value=value,
        )

    return PrefsPatchResult(status=PrefsPatchStatus.MISSING_KEY, path=path)
