"""Tests for manifest path normalization and root containment."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from packsync.manifest.paths import (
    UnsafePathError,
    join_under_root,
    normalize_manifest_path,
    remote_path_of,
    resolve_segments,
)


class TestResolveSegments:
    """Tests for resolve_segments()."""

    def test_plain(self) -> None:
        assert resolve_segments("a/b/c.png") == ["a", "b", "c.png"]

    def test_backslashes_and_repeats(self) -> None:
        """Backslashes become slashes and empty segments vanish."""
        assert resolve_segments("a\\\\b//c.png") == ["a", "b", "c.png"]

    def test_single_leading_slash(self) -> None:
        assert resolve_segments("/a/b") == ["a", "b"]

    def test_dot_and_inner_dotdot(self) -> None:
        assert resolve_segments("a/./x/../b") == ["a", "b"]

    @pytest.mark.parametrize(
        "raw",
        ["../etc/passwd", "a/../../b", "C:/Windows/x", "c:x", "//server/share/x",
         "\\\\server\\share", "a/b:c", "a\x00b"],
    )
    def test_rejected(self, raw: str) -> None:
        with pytest.raises(UnsafePathError):
            resolve_segments(raw)


class TestNormalizeManifestPath:
    """Tests for normalize_manifest_path()."""

    def test_strips_longest_listed_prefix_first(self) -> None:
        assert normalize_manifest_path("resources_override/mappack/a/b.png") == "a/b.png"

    def test_strips_short_prefix(self) -> None:
        assert normalize_manifest_path("mappack/a.png") == "a.png"

    def test_prefix_stripped_once(self) -> None:
        assert normalize_manifest_path("mappack/mappack/a.png") == "mappack/a.png"

    def test_prefix_must_match_whole_segments(self) -> None:
        assert normalize_manifest_path("mappackx/a.png") == "mappackx/a.png"

    def test_no_prefixes(self) -> None:
        assert normalize_manifest_path("mappack/a.png", ()) == "mappack/a.png"

    def test_empty_after_strip(self) -> None:
        with pytest.raises(UnsafePathError) as exc_info:
            normalize_manifest_path("mappack/")
        assert "empty" in exc_info.value.reason

    def test_only_dots(self) -> None:
        with pytest.raises(UnsafePathError):
            normalize_manifest_path("./.")

    def test_remote_path_keeps_prefix(self) -> None:
        assert remote_path_of("\\mappack\\a.png") == "mappack/a.png"


class TestJoinUnderRoot:
    """Tests for join_under_root()."""

    def test_inside(self, tmp_path: Path) -> None:
        assert join_under_root(tmp_path, "a/b.png") == tmp_path / "a" / "b.png"

    def test_rejects_unnormalized(self, tmp_path: Path) -> None:
        with pytest.raises(UnsafePathError):
            join_under_root(tmp_path, "a/../b")

    @pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
    def test_symlink_escape_rejected(self, tmp_path: Path) -> None:
        """A directory link pointing outside the root cannot carry a write out."""
        root = tmp_path / "root"
        outside = tmp_path / "outside"
        root.mkdir()
        outside.mkdir()
        (root / "link").symlink_to(outside, target_is_directory=True)
        with pytest.raises(UnsafePathError):
            join_under_root(root, "link/evil.txt")
