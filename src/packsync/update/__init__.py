"""Self-update: version descriptor, trust check, verifier and hand-off."""

from .descriptor import (
    DescriptorError,
    VersionDescriptor,
    compare_versions,
    is_newer,
    parse_version_descriptor,
)
from .trust import SignatureTrustChecker, SignerInfo, TrustError, certificate_fingerprint
from .verifier import SelfUpdateVerifier

__all__ = [
    "DescriptorError",
    "SelfUpdateVerifier",
    "SignatureTrustChecker",
    "SignerInfo",
    "TrustError",
    "VersionDescriptor",
    "certificate_fingerprint",
    "compare_versions",
    "is_newer",
    "parse_version_descriptor",
]
