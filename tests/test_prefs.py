"""Tests for the client prefs patch."""

from __future__ import annotations

from pathlib import Path

from packsync.sync.prefs import PrefsPatchStatus, ensure_prefs_value

KEY = "string mapPath"
SYNC_VALUE = "resources_override/mappack/resources/interface/maps"
OLD_VALUE = "resources/mappack/resources/interface/maps"


def _prefs(tmp_path: Path, content: bytes) -> Path:
    path = tmp_path / "ClientPrefs_Common.def"
    path.write_bytes(content)
    return path


class TestEnsurePrefsValue:
    """Tests for ensure_prefs_value()."""

    def test_updates_value(self, tmp_path: Path) -> None:
        path = _prefs(tmp_path, f'int width = 800\nstring mapPath = "{OLD_VALUE}"\n'.encode())
        result = ensure_prefs_value(path, KEY, SYNC_VALUE)
        assert result.status == PrefsPatchStatus.UPDATED
        assert result.changed
        assert result.old_value == OLD_VALUE
        assert path.read_bytes() == f'int width = 800\nstring mapPath = "{SYNC_VALUE}"\n'.encode()

    def test_crlf_and_indentation_preserved(self, tmp_path: Path) -> None:
        before = f'a = 1\r\n\t  string mapPath = "{OLD_VALUE}" // maps\r\nb = 2\r\n'.encode()
        path = _prefs(tmp_path, before)
        ensure_prefs_value(path, KEY, SYNC_VALUE)
        assert path.read_bytes() == before.replace(OLD_VALUE.encode(), SYNC_VALUE.encode())

    def test_idempotent(self, tmp_path: Path) -> None:
        path = _prefs(tmp_path, f'string mapPath = "{OLD_VALUE}"'.encode())
        ensure_prefs_value(path, KEY, SYNC_VALUE)
        after_first = path.read_bytes()
        mtime = path.stat().st_mtime_ns
        result = ensure_prefs_value(path, KEY, SYNC_VALUE)
        assert result.status == PrefsPatchStatus.UNCHANGED
        assert path.read_bytes() == after_first
        assert path.stat().st_mtime_ns == mtime

    def test_only_first_line_changed(self, tmp_path: Path) -> None:
        path = _prefs(tmp_path, b'string mapPath = "x"\nstring mapPath = "y"\n')
        ensure_prefs_value(path, KEY, "z")
        assert path.read_bytes() == b'string mapPath = "z"\nstring mapPath = "y"\n'

    def test_longer_key_does_not_match(self, tmp_path: Path) -> None:
        path = _prefs(tmp_path, b'string mapPathOld = "x"\n')
        result = ensure_prefs_value(path, KEY, "z")
        assert result.status == PrefsPatchStatus.MISSING_KEY
        assert path.read_bytes() == b'string mapPathOld = "x"\n'

    def test_missing_file(self, tmp_path: Path) -> None:
        result = ensure_prefs_value(tmp_path / "nope.def", KEY, "z")
        assert result.status == PrefsPatchStatus.MISSING_FILE

    def test_unquoted_value(self, tmp_path: Path) -> None:
        path = _prefs(tmp_path, b"string mapPath = x\n")
        result = ensure_prefs_value(path, KEY, "z")
        assert result.status == PrefsPatchStatus.MALFORMED
        assert path.read_bytes() == b"string mapPath = x\n"

    def test_non_utf8_bytes_survive(self, tmp_path: Path) -> None:
        before = b'title = "caf\xe9"\nstring mapPath = "x"\n'
        path = _prefs(tmp_path, before)
        ensure_prefs_value(path, KEY, "z")
        assert path.read_bytes() == b'title = "caf\xe9"\nstring mapPath = "z"\n'
