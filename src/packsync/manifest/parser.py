"""
Manifest parser -- JSON bytes to raw (path, hash) entries.

Tolerant of content it does not know about: any extra field, of any
JSON type, at any level is ignored. Intolerant of malformed JSON:
unterminated values, bad numbers, bad escapes, raw control characters
in strings, NaN/Infinity, trailing garbage and pathological nesting are
all fatal.

Accepted shape::

    {
      "base_url": "https://host/root/",          (optional)
      "files": [
        {"path": "a/b.png", "sha256": "<64 hex>"},
        {"path": "c.def",   "hash":   "<64 hex>"}
      ]
    }
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..models import ManifestRawEntry

logger = logging.getLogger("packsync.manifest.parser")

DEFAULT_MAX_BYTES = 16 * 1024 * 1024
DEFAULT_MAX_DEPTH = 64
HASH_KEYS = ("sha256", "hash")


class ManifestFormatError(ValueError):
    """The manifest document is not acceptable JSON of the expected shape."""


@dataclass
class ParsedManifest:
    """Raw parse result, before path and hash validation."""

    entries: list[ManifestRawEntry] = field(default_factory=list)
    base_url: Optional[str] = None


def _reject_constant(name: str) -> Any:
    raise ManifestFormatError(f"invalid number literal {name!r}")


def check_nesting(text: str, max_depth: int) -> None:
    """Structural pre-scan that bounds array/object nesting.

    String contents (including escaped quotes) are skipped so brackets
    inside strings do not count.
    """
    depth = 0
    in_string = False
    escaped = False
    for pos, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "[{":
            depth += 1
            if depth > max_depth:
                raise ManifestFormatError(
                    f"nesting deeper than {max_depth} levels at offset {pos}"
                )
        elif ch in "]}":
            depth -= 1


def _decode(data: bytes, max_bytes: int) -> str:
    if len(data) > max_bytes:
        raise ManifestFormatError(
            f"manifest is {len(data)} bytes; limit is {max_bytes}"
        )
    if data.startswith(codecs.BOM_UTF8):
        data = data[len(codecs.BOM_UTF8):]
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ManifestFormatError(f"manifest is not valid UTF-8: {exc}") from exc


def _clean_string(value: Any, what: str) -> Optional[str]:
    """Return ``value`` if it is a well-formed string, else None.

    Unpaired surrogates (``"\\ud800"``) cannot be represented in UTF-8
    and are treated as a syntax error.
    """
    if not isinstance(value, str):
        return None
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ManifestFormatError(f"invalid \\u escape in {what}: unpaired surrogate") from exc
    return value


def load_json_document(
    data: bytes,
    max_bytes: int = DEFAULT_MAX_BYTES,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Any:
    """Decode, bound and parse a JSON document.

    Raises:
        ManifestFormatError: On size, encoding, depth or syntax errors.
    """
    text = _decode(data, max_bytes)
    check_nesting(text, max_depth)
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise ManifestFormatError(
            f"malformed JSON at line {exc.lineno} column {exc.colno}: {exc.msg}"
        ) from exc


def parse_manifest(
    data: bytes,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    max_depth: int = DEFAULT_MAX_DEPTH,
    require_hash: bool = True,
) -> ParsedManifest:
    """Parse a manifest document into raw entries.

    Args:
        data: UTF-8 encoded JSON.
        max_bytes: Input larger than this is rejected before parsing.
        max_depth: Maximum array/object nesting.
        require_hash: When False (legacy manifests) only ``path`` is
            needed and the hash field is ignored.

    Returns:
        ParsedManifest with entries in document order.

    Raises:
        ManifestFormatError: If the document is malformed, is not an
            object, has no ``files`` array, or yields no usable entries.
    """
    doc = load_json_document(data, max_bytes=max_bytes, max_depth=max_depth)
    if not isinstance(doc, dict):
        raise ManifestFormatError("manifest top-level value is not an object")
    if "files" not in doc:
        raise ManifestFormatError("manifest has no 'files' key")
    files = doc["files"]
    if not isinstance(files, list):
        raise ManifestFormatError("manifest 'files' is not an array")

    base_url = _clean_string(doc.get("base_url"), "base_url")
    if base_url is not None and not base_url.lower().startswith(("http://", "https://")):
        raise ManifestFormatError(f"manifest base_url is not an http(s) URL: {base_url!r}")

    entries: list[ManifestRawEntry] = []
    dropped = 0
    for index, item in enumerate(files):
        if not isinstance(item, dict):
            dropped += 1
            logger.debug("files[%d] is not an object; skipped", index)
            continue
        path = _clean_string(item.get("path"), f"files[{index}].path")
        digest = None
        for key in HASH_KEYS:
            digest = _clean_string(item.get(key), f"files[{index}].{key}")
            if digest is not None:
                break
        if path is None or (require_hash and digest is None):
            dropped += 1
            logger.debug("files[%d] lacks path or hash; skipped", index)
            continue
        entries.append(ManifestRawEntry(path=path, sha256=digest or ""))

    if dropped:
        logger.info("Manifest: %d file element(s) without path/hash ignored", dropped)
    if not entries:
        raise ManifestFormatError("manifest 'files' list is empty")
    return ParsedManifest(entries=entries, base_url=base_url)


def parse_legacy_paths(
    data: bytes,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[str]:
    """Parse an old-format manifest and return only its paths."""
    parsed = parse_manifest(
        data, max_bytes=max_bytes, max_depth=max_depth, require_hash=False
    )
    return [e.path for e in parsed.entries]
