"""
Streaming SHA-256 helpers.

Digests are produced as lowercase hex. Comparison anywhere else in the
code base goes through ``digests_equal``, which ignores ASCII case.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import BinaryIO, Optional

FILE_CHUNK_SIZE = 1024 * 1024


class HashError(Exception):
    """Raised when a hasher is used after it was finalized."""


class StreamingHasher:
    """Incremental SHA-256 over an arbitrary sequence of chunks."""

    def __init__(self) -> None:
        self._h: Optional["hashlib._Hash"] = hashlib.sha256()
        self._digest: Optional[str] = None

    def update(self, chunk: bytes) -> None:
        if self._h is None:
            raise HashError("hasher already finalized")
        self._h.update(chunk)

    def hexdigest(self) -> str:
        """Finalize and return the lowercase hex digest.

        Calling it again returns the same digest; ``update`` after this
        point raises ``HashError``.
        """
        if self._digest is None:
            if self._h is None:
                raise HashError("hasher has no state")
            self._digest = self._h.hexdigest()
            self._h = None
        return self._digest


def sha256_file(path: Path, chunk_size: int = FILE_CHUNK_SIZE) -> str:
    """Compute the SHA-256 hex digest of a file.

    Args:
        path: File to hash.
        chunk_size: Read size per iteration.

    Returns:
        Lowercase hex digest.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    hasher = StreamingHasher()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def digests_equal(a: str, b: str) -> bool:
    """ASCII case-insensitive digest comparison."""
    return len(a) == len(b) and a.lower() == b.lower()


class HashingFileSink:
    """Fetch sink that writes to a file and hashes in the same pass."""

    def __init__(self, fh: BinaryIO, hasher: Optional[StreamingHasher] = None):
        self._fh = fh
        self.hasher = hasher or StreamingHasher()
        self.bytes_written = 0

    def write(self, chunk: bytes) -> None:
        self._fh.write(chunk)
        self.hasher.update(chunk)
        self.bytes_written += len(chunk)

    def hexdigest(self) -> str:
        return self.hasher.hexdigest()


class DigestMismatchError(Exception):
    """Downloaded content did not hash to the expected value."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"SHA-256 mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual
