"""Tests for virtual path normalization."""

from __future__ import annotations

import pytest

from copyparty_bridge import paths


class TestNormalize:
    """Tests for normalize()."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (None, "/"),
            ("", "/"),
            ("/", "/"),
            ("a/b", "/a/b"),
            ("//a///b//", "/a/b"),
            ("/a/./b/../c", "/a/c"),
            ("../../x", "/x"),
            ("a\\b\\c", "/a/b/c"),
            ("  /docs / notes  ", "/docs/notes"),
        ],
    )
    def test_normalize(self, raw: str | None, expected: str) -> None:
        """Test that raw paths normalize to absolute virtual paths."""
        assert paths.normalize(raw) == expected

    def test_normalize_is_idempotent(self) -> None:
        """Test that normalizing twice changes nothing."""
        once = paths.normalize("x/../y//z/./")
        assert paths.normalize(once) == once

    def test_normalize_relative(self) -> None:
        """Test that relative normalization drops the leading slash."""
        assert paths.normalize_relative("/photos/./2024/a.jpg") == "photos/2024/a.jpg"
        assert paths.normalize_relative("..") == ""


class TestParentAndLeaf:
    """Tests for parent(), leaf_name() and join()."""

    def test_parent_of_root_is_none(self) -> None:
        """Test that root has no parent."""
        assert paths.parent("/") is None

    def test_parent(self) -> None:
        """Test parents of nested and top-level paths."""
        assert paths.parent("/a/b/c") == "/a/b"
        assert paths.parent("/a") == "/"

    def test_leaf_name(self) -> None:
        """Test that leaf_name returns the last segment or None for root."""
        assert paths.leaf_name("/a/b.txt") == "b.txt"
        assert paths.leaf_name("/") is None

    def test_join(self) -> None:
        """Test that join normalizes the combined path."""
        assert paths.join("/a", "b/c") == "/a/b/c"
        assert paths.join("/", "/x/") == "/x"
        assert paths.join("/a/b", "../c") == "/a/c"


class TestAncestors:
    """Tests for ancestors() and is_within()."""

    def test_ancestors_outermost_first(self) -> None:
        """Test that ancestors lists every non-root prefix including the path."""
        assert paths.ancestors("/a/b/c") == ["/a", "/a/b", "/a/b/c"]
        assert paths.ancestors("/") == []

    def test_is_within(self) -> None:
        """Test containment checks on whole segments."""
        assert paths.is_within("/a/b", "/a")
        assert paths.is_within("/a", "/a")
        assert paths.is_within("/anything", "/")
        assert not paths.is_within("/ab", "/a")
        assert not paths.is_within("/a", "/a/b")

    @pytest.mark.parametrize("raw", ["/a/b/c", "x//y/", "/docs/./notes.txt", "a\\b"])
    def test_join_parent_and_leaf_round_trip(self, raw: str) -> None:
        """Test that a non-root path is rebuilt from its parent and leaf."""
        parent = paths.parent(raw)
        leaf = paths.leaf_name(raw)
        assert parent is not None and leaf is not None
        assert paths.join(parent, leaf) == paths.normalize(raw)
