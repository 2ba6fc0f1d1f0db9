"""Manifest parsing, path normalization and validation."""

from .parser import ManifestFormatError, ParsedManifest, parse_legacy_paths, parse_manifest
from .paths import (
    DEFAULT_STRIP_PREFIXES,
    UnsafePathError,
    join_under_root,
    normalize_manifest_path,
)
from .validator import ManifestValidationError, load_manifest, validate_manifest

__all__ = [
    "DEFAULT_STRIP_PREFIXES",
    "ManifestFormatError",
    "ManifestValidationError",
    "ParsedManifest",
    "UnsafePathError",
    "join_under_root",
    "load_manifest",
    "normalize_manifest_path",
    "parse_legacy_paths",
    "parse_manifest",
    "validate_manifest",
]
