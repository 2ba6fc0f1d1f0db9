"""Shared test fixtures for packsync."""

from __future__ import annotations

import base64
import hashlib
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Union

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from packsync.cancel import CancelToken
from packsync.config import PackSyncSettings, build_sync_config
from packsync.fetcher import FetchCanceled, FetchError, file_url
from packsync.models import FetchTimeouts, SyncConfig

Route = Union[bytes, Exception, Callable[[], bytes]]


class FakeFetcher:
    """In-memory stand-in for ContentFetcher.

    ``routes`` maps a URL to a body, an exception to raise, or a callable
    producing the body. Unknown URLs answer HTTP 404.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Route] = {}
        self.calls: list[str] = []
        self.closed = False

    def __enter__(self) -> "FakeFetcher":
        return self

    def __exit__(self, *exc: object) -> None:
        self.closed = True

    def close(self) -> None:
        self.closed = True

    def _body(self, url: str, cancel: CancelToken) -> bytes:
        if cancel.is_canceled():
            raise FetchCanceled("canceled before request")
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            raise FetchError("HTTP status 404", url=url, status=404)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route()
        return route

    def fetch_to_buffer(
        self, url: str, cancel: CancelToken, max_bytes: int, timeouts: FetchTimeouts
    ) -> bytes:
        body = self._body(url, cancel)
        if len(body) > max_bytes:
            raise FetchError(f"response exceeds {max_bytes} byte limit", url=url, status=200)
        return body

    def fetch_to_sink(self, url: str, sink, cancel: CancelToken, timeouts: FetchTimeouts) -> int:
        body = self._body(url, cancel)
        half = len(body) // 2
        for chunk in (body[:half], body[half:]):
            if chunk:
                sink.write(chunk)
        return len(body)

    def file_calls(self, config: SyncConfig) -> list[str]:
        return [u for u in self.calls if u.startswith(config.files_base_url)]


def sha(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def manifest_bytes(files: dict[str, bytes], base_url: Optional[str] = None) -> bytes:
    doc: dict = {"files": [{"path": p, "sha256": sha(b)} for p, b in files.items()]}
    if base_url:
        doc["base_url"] = base_url
    return json.dumps(doc).encode("utf-8")


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    """A fake game install with its marker file."""
    root = tmp_path / "game"
    root.mkdir()
    (root / "istaria.exe").write_bytes(b"MZ")
    return root


@pytest.fixture
def settings() -> PackSyncSettings:
    return PackSyncSettings()


@pytest.fixture
def sync_config(settings: PackSyncSettings, install_root: Path) -> SyncConfig:
    """Run configuration over ``install_root`` with the sync root created."""
    config = build_sync_config(settings, install_root)
    config.sync_root.mkdir(parents=True)
    return config


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def publish(fetcher: FakeFetcher, sync_config: SyncConfig) -> Callable[..., None]:
    """Serve a manifest plus every listed file body from ``fetcher``."""

    def _publish(files: dict[str, bytes], legacy: Optional[list[str]] = None) -> None:
        fetcher.routes[sync_config.manifest_url] = manifest_bytes(files)
        for path, body in files.items():
            fetcher.routes[file_url(sync_config.files_base_url, path)] = body
        if legacy is not None and sync_config.legacy_manifest_url:
            fetcher.routes[sync_config.legacy_manifest_url] = json.dumps(
                {"files": [{"path": p} for p in legacy]}
            ).encode("utf-8")

    return _publish


# ---------------------------------------------------------------------------
# Code-signing material
# ---------------------------------------------------------------------------


class Signer:
    """A self-signed Ed25519 code-signing certificate and its key."""

    def __init__(self, days_valid: int = 30, code_signing: bool = True, name: str = "packsync test signer"):
        self.key = ed25519.Ed25519PrivateKey.generate()
        now = datetime.now(timezone.utc)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
        usage = ExtendedKeyUsageOID.CODE_SIGNING if code_signing else ExtendedKeyUsageOID.SERVER_AUTH
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=days_valid))
            .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
            .sign(self.key, None)
        )
        self.fingerprint = self.cert.fingerprint(hashes.SHA256()).hex()

    def envelope(self, data: bytes) -> bytes:
        pem = self.cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
        signature = base64.b64encode(self.key.sign(data)).decode("ascii")
        return json.dumps({"certificate": pem, "signature": signature}).encode("utf-8")


@pytest.fixture(scope="session")
def signer() -> Signer:
    return Signer()


@pytest.fixture(scope="session")
def other_signer() -> Signer:
    return Signer(name="someone else")
