"""Tests for the update signature and pinned-signer check."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from packsync.update.trust import SignatureTrustChecker, TrustError, normalize_fingerprint

from conftest import Signer

BUILD = b"MZ\x90\x00 new packsync build"


@pytest.fixture
def build(tmp_path: Path) -> Path:
    path = tmp_path / "packsync.exe.download"
    path.write_bytes(BUILD)
    return path


class TestSignatureTrustChecker:
    """Tests for SignatureTrustChecker.check()."""

    def test_accepts_pinned_signer(self, build: Path, signer: Signer) -> None:
        info = SignatureTrustChecker([signer.fingerprint]).check(build, signer.envelope(BUILD))
        assert info.fingerprint == signer.fingerprint
        assert "packsync test signer" in info.subject

    def test_fingerprint_format_is_normalized(self, build: Path, signer: Signer) -> None:
        fp = signer.fingerprint.upper()
        colon_form = ":".join(fp[i:i + 2] for i in range(0, len(fp), 2))
        checker = SignatureTrustChecker([colon_form])
        assert checker.check(build, signer.envelope(BUILD)).fingerprint == signer.fingerprint

    def test_valid_signature_from_unpinned_signer_rejected(
        self, build: Path, signer: Signer, other_signer: Signer
    ) -> None:
        checker = SignatureTrustChecker([signer.fingerprint])
        with pytest.raises(TrustError, match="pinned"):
            checker.check(build, other_signer.envelope(BUILD))

    def test_no_pins_trusts_nothing(self, build: Path, signer: Signer) -> None:
        with pytest.raises(TrustError, match="no pinned"):
            SignatureTrustChecker([]).check(build, signer.envelope(BUILD))

    def test_tampered_build_rejected(self, build: Path, signer: Signer) -> None:
        envelope = signer.envelope(BUILD)
        build.write_bytes(BUILD + b"\x00")
        with pytest.raises(TrustError, match="does not verify"):
            SignatureTrustChecker([signer.fingerprint]).check(build, envelope)

    def test_expired_certificate(self, build: Path, signer: Signer) -> None:
        later = lambda: datetime.now(timezone.utc) + timedelta(days=365)
        checker = SignatureTrustChecker([signer.fingerprint], now=later)
        with pytest.raises(TrustError, match="expired"):
            checker.check(build, signer.envelope(BUILD))

    def test_not_yet_valid_certificate(self, build: Path, signer: Signer) -> None:
        earlier = lambda: datetime.now(timezone.utc) - timedelta(days=30)
        checker = SignatureTrustChecker([signer.fingerprint], now=earlier)
        with pytest.raises(TrustError, match="not valid before"):
            checker.check(build, signer.envelope(BUILD))

    def test_wrong_key_usage(self, build: Path) -> None:
        tls_only = Signer(code_signing=False)
        with pytest.raises(TrustError, match="code signing"):
            SignatureTrustChecker([tls_only.fingerprint]).check(build, tls_only.envelope(BUILD))

    @pytest.mark.parametrize(
        "envelope",
        [
            b"not json",
            b"[]",
            b'{"certificate": "x"}',
            b'{"certificate": "-----BEGIN CERTIFICATE-----\\nAAAA\\n-----END CERTIFICATE-----", "signature": "AA=="}',
        ],
    )
    def test_malformed_envelope(self, build: Path, signer: Signer, envelope: bytes) -> None:
        with pytest.raises(TrustError):
            SignatureTrustChecker([signer.fingerprint]).check(build, envelope)

    def test_bad_base64_signature(self, build: Path, signer: Signer) -> None:
        doc = json.loads(signer.envelope(BUILD))
        doc["signature"] = "!!not base64!!"
        with pytest.raises(TrustError, match="base64"):
            SignatureTrustChecker([signer.fingerprint]).check(build, json.dumps(doc).encode())


class TestNormalizeFingerprint:
    """Tests for normalize_fingerprint()."""

    def test_strips_separators(self) -> None:
        assert normalize_fingerprint("AB:cd 01") == "abcd01"
