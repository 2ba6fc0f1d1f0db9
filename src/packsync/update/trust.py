"""
Update trust check -- detached signature plus pinned signer.

A build is published with a signature envelope beside it
(``<binary_url>.sig`` by default)::

    {
      "certificate": "-----BEGIN CERTIFICATE-----\\n...",
      "signature":   "<base64 signature over the raw build bytes>"
    }

The build is trusted only if the signature verifies with the
certificate's key AND the certificate's SHA-256 fingerprint is on the
pinned allow-list. General CA trust plays no part: a valid signature
from an unpinned certificate is rejected.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

logger = logging.getLogger("packsync.update.trust")


class TrustError(Exception):
    """The downloaded build failed the signature or signer check."""


@dataclass(frozen=True)
class SignerInfo:
    """Identity of the certificate that signed an accepted build."""

    fingerprint: str
    subject: str
    not_valid_after: datetime


def normalize_fingerprint(value: str) -> str:
    """Lowercase hex with separators (``:``, spaces) removed."""
    return "".join(ch for ch in value.lower() if ch in "0123456789abcdef")


def certificate_fingerprint(cert: x509.Certificate) -> str:
    """SHA-256 over the DER certificate, lowercase hex."""
    return cert.fingerprint(hashes.SHA256()).hex()


def _parse_envelope(envelope: bytes) -> tuple[x509.Certificate, bytes]:
    try:
        doc = json.loads(envelope.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise TrustError(f"signature envelope is not valid JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise TrustError("signature envelope is not a JSON object")
    pem = doc.get("certificate")
    sig_b64 = doc.get("signature")
    if not isinstance(pem, str) or not isinstance(sig_b64, str):
        raise TrustError("signature envelope needs 'certificate' and 'signature' strings")

    try:
        cert = x509.load_pem_x509_certificate(pem.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise TrustError(f"signer certificate cannot be parsed: {exc}") from exc
    try:
        signature = base64.b64decode(sig_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TrustError(f"signature is not valid base64: {exc}") from exc
    if not signature:
        raise TrustError("signature is empty")
    return cert, signature


class SignatureTrustChecker:
    """Verifies a build against its envelope and the pinned signers.

    Args:
        pinned_fingerprints: SHA-256 fingerprints of the certificates
            allowed to sign builds. Empty means nothing is trusted.
        now: Clock used for the validity window (tests).
    """

    def __init__(
        self,
        pinned_fingerprints: Iterable[str],
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._pinned = frozenset(
            fp for fp in (normalize_fingerprint(v) for v in pinned_fingerprints) if fp
        )
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def pinned(self) -> frozenset[str]:
        return self._pinned

    def check(self, binary_path: Path, envelope: bytes) -> SignerInfo:
        """Verify ``binary_path`` against ``envelope``.

        Returns:
            SignerInfo of the accepted signer.

        Raises:
            TrustError: On any failed check.
        """
        if not self._pinned:
            raise TrustError("no pinned signer fingerprints configured; refusing update")

        cert, signature = _parse_envelope(envelope)
        fingerprint = certificate_fingerprint(cert)

        now = self._now()
        if now < cert.not_valid_before_utc:
            raise TrustError(f"signer certificate not valid before {cert.not_valid_before_utc}")
        if now > cert.not_valid_after_utc:
            raise TrustError(f"signer certificate expired on {cert.not_valid_after_utc}")

        try:
            eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        except x509.ExtensionNotFound:
            eku = None
        if eku is not None and ExtendedKeyUsageOID.CODE_SIGNING not in eku:
            raise TrustError("signer certificate is not valid for code signing")

        data = binary_path.read_bytes()
        self._verify_signature(cert, signature, data)

        if fingerprint not in self._pinned:
            raise TrustError(f"signer {fingerprint} is not in the pinned allow-list")

        subject = cert.subject.rfc4514_string()
        logger.info("Update signed by %s (%s)", subject, fingerprint)
        return SignerInfo(
            fingerprint=fingerprint,
            subject=subject,
            not_valid_after=cert.not_valid_after_utc,
        )

    @staticmethod
    def _verify_signature(cert: x509.Certificate, signature: bytes, data: bytes) -> None:
        try:
            key = cert.public_key()
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise TrustError(f"signer key cannot be loaded: {exc}") from exc
        try:
            if isinstance(key, ed25519.Ed25519PublicKey):
                key.verify(signature, data)
            elif isinstance(key, rsa.RSAPublicKey):
                key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
            elif isinstance(key, ec.EllipticCurvePublicKey):
                key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
            else:
                raise TrustError(f"unsupported signer key type {type(key).__name__}")
        except InvalidSignature as exc:
            raise TrustError("signature does not verify against the downloaded file") from exc
