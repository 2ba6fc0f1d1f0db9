"""Tests for the content fetcher against a local HTTP server."""

from __future__ import annotations

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from packsync.cancel import CancelSource, CancelToken
from packsync.fetcher import (
    ContentFetcher,
    FetchCanceled,
    FetchError,
    check_url,
    file_url,
    join_url,
)
from packsync.hashing import HashingFileSink, sha256_bytes
from packsync.models import FetchTimeouts

BIG = b"0123456789abcdef" * 8192
TIMEOUTS = FetchTimeouts(connect=5, total=10)


class _Handler(BaseHTTPRequestHandler):
    routes = {
        "/manifest.json": (200, b'{"files": []}'),
        "/big.bin": (200, BIG),
        "/missing": (404, b"not here"),
    }

    def do_GET(self) -> None:
        self.server.seen_agents.append(self.headers.get("User-Agent", ""))
        if self.path == "/moved":
            self.send_response(302)
            self.send_header("Location", "/manifest.json")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        status, body = self.routes.get(self.path, (404, b""))
        self.send_response(status)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args) -> None:
        pass


@pytest.fixture
def server():
    """Serve _Handler on an ephemeral port for one test."""
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.seen_agents = []
    thread = threading.Thread(target=httpd.serve_forever, name="test-http", daemon=True)
    thread.start()
    yield httpd
    httpd.shutdown()
    httpd.server_close()


def _url(httpd, path: str) -> str:
    return f"http://127.0.0.1:{httpd.server_address[1]}{path}"


class TestUrlHelpers:
    """Tests for join_url(), file_url() and check_url()."""

    @pytest.mark.parametrize(
        "base,path,expected",
        [
            ("https://h/root/", "/a", "https://h/root/a"),
            ("https://h/root", "a", "https://h/root/a"),
            ("https://h/root/", "a", "https://h/root/a"),
            ("https://h/root", "/a", "https://h/root/a"),
            ("", "/a", "/a"),
            ("https://h", "", "https://h"),
        ],
    )
    def test_join_url(self, base: str, path: str, expected: str) -> None:
        assert join_url(base, path) == expected

    def test_file_url_encodes_segments(self) -> None:
        assert file_url("https://h/r/", "maps/my map#1.png") == "https://h/r/maps/my%20map%231.png"

    @pytest.mark.parametrize("url", ["ftp://h/x", "file:///etc/passwd", "h/x", "https:///x"])
    def test_check_url_rejects(self, url: str) -> None:
        with pytest.raises(FetchError):
            check_url(url)


class TestContentFetcher:
    """Tests for ContentFetcher."""

    def test_buffer(self, server) -> None:
        with ContentFetcher() as f:
            data = f.fetch_to_buffer(_url(server, "/manifest.json"), CancelToken.never(), 1024, TIMEOUTS)
        assert data == b'{"files": []}'

    def test_user_agent_sent(self, server) -> None:
        with ContentFetcher(user_agent="packsync-test/9") as f:
            f.fetch_to_buffer(_url(server, "/manifest.json"), CancelToken.never(), 1024, TIMEOUTS)
        assert server.seen_agents == ["packsync-test/9"]

    def test_sink_streams_whole_body(self, server) -> None:
        chunks = []

        class _Sink:
            def write(self, chunk: bytes) -> None:
                chunks.append(chunk)

        with ContentFetcher(chunk_size=4096) as f:
            written = f.fetch_to_sink(_url(server, "/big.bin"), _Sink(), CancelToken.never(), TIMEOUTS)
        assert written == len(BIG)
        assert b"".join(chunks) == BIG
        assert len(chunks) > 1

    def test_hashing_sink(self, server, tmp_path) -> None:
        with open(tmp_path / "big.bin", "wb") as fh, ContentFetcher() as f:
            sink = HashingFileSink(fh)
            f.fetch_to_sink(_url(server, "/big.bin"), sink, CancelToken.never(), TIMEOUTS)
        assert sink.hexdigest() == sha256_bytes(BIG)

    def test_status_error(self, server) -> None:
        with ContentFetcher() as f:
            with pytest.raises(FetchError) as exc_info:
                f.fetch_to_buffer(_url(server, "/missing"), CancelToken.never(), 1024, TIMEOUTS)
        assert exc_info.value.status == 404

    def test_redirect_is_an_error(self, server) -> None:
        with ContentFetcher() as f:
            with pytest.raises(FetchError) as exc_info:
                f.fetch_to_buffer(_url(server, "/moved"), CancelToken.never(), 1024, TIMEOUTS)
        assert exc_info.value.status == 302
        assert "redirect" in str(exc_info.value)
        assert len(server.seen_agents) == 1

    def test_size_cap(self, server) -> None:
        with ContentFetcher() as f:
            with pytest.raises(FetchError):
                f.fetch_to_buffer(_url(server, "/big.bin"), CancelToken.never(), 1000, TIMEOUTS)

    def test_canceled_before_request(self, server) -> None:
        source = CancelSource()
        source.cancel()
        with ContentFetcher() as f:
            with pytest.raises(FetchCanceled):
                f.fetch_to_buffer(_url(server, "/manifest.json"), source.token(), 1024, TIMEOUTS)
        assert server.seen_agents == []

    def test_canceled_mid_stream(self, server) -> None:
        source = CancelSource()

        class _CancelingSink:
            def write(self, chunk: bytes) -> None:
                source.cancel()

        with ContentFetcher(chunk_size=1024) as f:
            with pytest.raises(FetchCanceled):
                f.fetch_to_sink(_url(server, "/big.bin"), _CancelingSink(), source.token(), TIMEOUTS)

    def test_connection_refused(self) -> None:
        with ContentFetcher() as f:
            with pytest.raises(FetchError):
                f.fetch_to_buffer("http://127.0.0.1:1/x", CancelToken.never(), 1024, TIMEOUTS)

    def test_bad_scheme_never_sent(self) -> None:
        with ContentFetcher() as f:
            with pytest.raises(FetchError):
                f.fetch_to_buffer("file:///etc/passwd", CancelToken.never(), 1024, TIMEOUTS)
