"""
Temp-file-then-rename helpers.

Temp files are always created in the destination's own directory so the
final ``os.replace`` is a same-volume rename: readers see either the old
file or the complete new one, never a partial write.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger("packsync.sync.atomic")


def temp_file_beside(dest: Path) -> tuple[int, Path]:
    """Create an empty temp file next to ``dest``.

    Returns:
        The open file descriptor and the temp file's path.
    """
    fd, name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".tmp")
    return fd, Path(name)


def discard(path: Path) -> None:
    """Remove a temp file, ignoring one that is already gone."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove temp file %s: %s", path, exc)


def atomic_write_bytes(dest: Path, data: bytes) -> None:
    """Replace ``dest`` with ``data`` via a synced temp file.

    The existing file's permission bits are carried over.

    Raises:
        OSError: If the temp file cannot be written or renamed. The temp
            file is removed before the error propagates.
    """
    fd, tmp = temp_file_beside(dest)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        try:
            os.chmod(tmp, dest.stat().st_mode & 0o7777)
        except FileNotFoundError:
            pass
        os.replace(tmp, dest)
    except BaseException:
        discard(tmp)
        raise
