"""
Content fetcher -- single HTTP(S) GETs with a no-redirect policy.

Two shapes of fetch:

    fetch_to_buffer  ->  small text documents (manifest, version file),
                         hard byte cap, whole body in memory
    fetch_to_sink    ->  file bodies, streamed into a sink chunk by chunk

Redirects are never followed. A 3xx answer is an error: manifest and
binary URLs must resolve directly. Cancellation is polled before the
request goes out and before every chunk read.
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Protocol
from urllib.parse import quote, urlsplit

import requests

from . import __version__
from .cancel import CancelToken
from .models import FetchTimeouts

logger = logging.getLogger("packsync.fetcher")

CHUNK_SIZE = 64 * 1024
DEFAULT_USER_AGENT = f"packsync/{__version__}"
ALLOWED_SCHEMES = ("http", "https")


class FetchError(Exception):
    """Transport failure: bad scheme, timeout, redirect, status, size."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class FetchCanceled(Exception):
    """The cancel flag was observed set during a fetch."""


class Sink(Protocol):
    def write(self, chunk: bytes) -> None: ...


class _BufferSink:
    def __init__(self, url: str, max_bytes: int):
        self._url = url
        self._max = max_bytes
        self._parts: list[bytes] = []
        self._size = 0

    def write(self, chunk: bytes) -> None:
        self._size += len(chunk)
        if self._size > self._max:
            raise FetchError(
                f"response exceeds {self._max} byte limit", url=self._url
            )
        self._parts.append(chunk)

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


def join_url(base: str, path: str) -> str:
    """Join two URL parts with exactly one slash between them."""
    if not base:
        return path
    if not path:
        return base
    if base.endswith("/") and path.startswith("/"):
        return base + path[1:]
    if not base.endswith("/") and not path.startswith("/"):
        return base + "/" + path
    return base + path


def file_url(base: str, remote_path: str) -> str:
    """Build the download URL of a manifest entry.

    Each path segment is percent-encoded; slashes are kept.
    """
    return join_url(base, quote(remote_path.lstrip("/"), safe="/"))


def check_url(url: str) -> None:
    """Reject anything that is not an absolute http(s) URL."""
    parts = urlsplit(url)
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise FetchError(f"unsupported URL scheme: {parts.scheme or '(none)'}", url=url)
    if not parts.hostname:
        raise FetchError("URL has no host", url=url)


class ContentFetcher:
    """Performs GET requests for the sync engine and the updater.

    Args:
        session: Optional pre-built ``requests.Session``.
        user_agent: User-Agent header sent with every request.
        chunk_size: Streaming read size.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = user_agent
        self._chunk_size = chunk_size

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "ContentFetcher":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def fetch_to_buffer(
        self,
        url: str,
        cancel: CancelToken,
        max_bytes: int,
        timeouts: FetchTimeouts,
    ) -> bytes:
        """Download a small document fully into memory.

        Raises:
            FetchError: On any transport failure or if the body is
                larger than ``max_bytes``.
            FetchCanceled: If cancellation is observed.
        """
        sink = _BufferSink(url, max_bytes)
        self._fetch(url, sink, cancel, timeouts, max_bytes=max_bytes)
        return sink.getvalue()

    def fetch_to_sink(
        self,
        url: str,
        sink: Sink,
        cancel: CancelToken,
        timeouts: FetchTimeouts,
    ) -> int:
        """Stream a response body into ``sink``.

        Returns:
            Number of body bytes written.
        """
        return self._fetch(url, sink, cancel, timeouts)

    def _fetch(
        self,
        url: str,
        sink: Sink,
        cancel: CancelToken,
        timeouts: FetchTimeouts,
        max_bytes: Optional[int] = None,
    ) -> int:
        check_url(url)
        if cancel.is_canceled():
            raise FetchCanceled("canceled before request")

        read_timeout = timeouts.total if timeouts.total > 0 else None
        deadline = (
            time.monotonic() + timeouts.total if timeouts.total > 0 else None
        )

        try:
            with self._session.get(
                url,
                stream=True,
                allow_redirects=False,
                timeout=(timeouts.connect, read_timeout),
            ) as resp:
                status = resp.status_code
                if 300 <= status < 400:
                    location = resp.headers.get("Location", "")
                    raise FetchError(
                        f"HTTP {status} redirect received; redirects are treated as errors"
                        + (f" (Location: {location})" if location else ""),
                        url=url,
                        status=status,
                    )
                if not 200 <= status < 300:
                    raise FetchError(f"HTTP status {status}", url=url, status=status)

                if max_bytes is not None:
                    declared = resp.headers.get("Content-Length")
                    if declared and declared.isdigit() and int(declared) > max_bytes:
                        raise FetchError(
                            f"response of {declared} bytes exceeds {max_bytes} byte limit",
                            url=url,
                            status=status,
                        )

                written = 0
                chunks = resp.iter_content(chunk_size=self._chunk_size)
                while True:
                    if cancel.is_canceled():
                        raise FetchCanceled("canceled during transfer")
                    if deadline is not None and time.monotonic() > deadline:
                        raise FetchError(
                            f"transfer exceeded {timeouts.total:g}s total timeout",
                            url=url,
                            status=status,
                        )
                    chunk = next(chunks, None)
                    if chunk is None:
                        break
                    if chunk:
                        sink.write(chunk)
                        written += len(chunk)
                logger.debug("Fetched %s (%d bytes)", url, written)
                return written
        except requests.Timeout as exc:
            raise FetchError(f"timed out: {exc}", url=url) from exc
        except requests.ConnectionError as exc:
            raise FetchError(f"connection failed: {exc}", url=url) from exc
        except requests.RequestException as exc:
            raise FetchError(f"request failed: {exc}", url=url) from exc
