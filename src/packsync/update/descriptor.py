"""
Version descriptor -- the two-line text file published next to a build.

    1.4.2
    sha256: 9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08

Line 1 is a dotted numeric version, line 2 the SHA-256 of the build with
an optional ``sha256``/``sha-256`` label. Blank lines and surrounding
whitespace are ignored; anything else is an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from itertools import zip_longest

VERSION_RE = re.compile(r"^[0-9]+(?:\.[0-9]+)*$")
DIGEST_RE = re.compile(r"^(?:sha-?256\s*[:=]?\s*)?([0-9a-f]{64})$", re.IGNORECASE)


class DescriptorError(ValueError):
    """The version descriptor or a version string is malformed."""


@dataclass(frozen=True)
class VersionDescriptor:
    version: str
    digest: str


def parse_version(text: str) -> tuple[int, ...]:
    """Parse ``1.2.3`` (or ``v1.2.3``) into its numeric components.

    Raises:
        DescriptorError: If the string is not dotted digits.
    """
    value = text.strip()
    if value[:1] in ("v", "V"):
        value = value[1:]
    if not VERSION_RE.match(value):
        raise DescriptorError(f"invalid version {text!r}: expected digits separated by '.'")
    return tuple(int(part) for part in value.split("."))


def compare_versions(a: str, b: str) -> int:
    """Compare two dotted versions; missing components count as zero.

    Returns:
        -1, 0 or 1 as ``a`` is older than, equal to or newer than ``b``.
    """
    for x, y in zip_longest(parse_version(a), parse_version(b), fillvalue=0):
        if x != y:
            return 1 if x > y else -1
    return 0


def is_newer(remote: str, local: str) -> bool:
    """True only if ``remote`` is strictly greater than ``local``."""
    return compare_versions(remote, local) > 0


def parse_version_descriptor(text: str) -> VersionDescriptor:
    """Parse the descriptor body.

    Raises:
        DescriptorError: If there are not exactly two non-blank lines, or
            either line violates its grammar.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        raise DescriptorError("version descriptor is empty")
    if len(lines) != 2:
        raise DescriptorError(
            f"version descriptor must have exactly 2 lines (version, sha256); found {len(lines)}"
        )

    version_line, digest_line = lines
    if version_line[:1] in ("v", "V") or not VERSION_RE.match(version_line):
        raise DescriptorError(f"invalid version line {version_line!r}")

    match = DIGEST_RE.match(digest_line)
    if not match:
        raise DescriptorError(
            f"invalid sha256 line {digest_line!r}: expected 64 hex characters"
        )
    return VersionDescriptor(version=version_line, digest=match.group(1).lower())
