"""Tests for name validation and ingestion path helpers."""

from __future__ import annotations

import pytest

from drivetree.store.exceptions import InvalidNameError
from drivetree.store.utils import join_entry_path, path_depth, require_valid_name, validate_name


class TestValidateName:
    @pytest.mark.parametrize("name", ["a.txt", "My Documents", "ümlaut", "x" * 255, ".hidden"])
    def test_valid(self, name: str):
        assert validate_name(name) == (True, "")

    @pytest.mark.parametrize(
        ("name", "fragment"),
        [
            ("", "empty"),
            ("   ", "empty"),
            ("a\x00b", "null"),
            ("a\nb", "control"),
            ("a/b", "separator"),
            (".", "Reserved"),
            ("..", "Reserved"),
            ("x" * 256, "too long"),
        ],
    )
    def test_invalid(self, name: str, fragment: str):
        valid, error = validate_name(name)
        assert not valid
        assert fragment in error

    def test_require_raises(self):
        with pytest.raises(InvalidNameError):
            require_valid_name("a/b")

    def test_require_returns_name(self):
        assert require_valid_name("ok") == "ok"


class TestPaths:
    def test_join(self):
        assert join_entry_path("", "docs") == "docs"
        assert join_entry_path("docs", "a.txt") == "docs/a.txt"
        assert join_entry_path("/docs/", "a.txt") == "docs/a.txt"

    def test_depth(self):
        assert path_depth("") == 0
        assert path_depth("docs") == 1
        assert path_depth("docs/deep/") == 2
