"""Unit tests for utility functions."""

import pytest

from davsync.utils import (
    ensure_trailing_slash,
    format_oc_mtime,
    format_size,
    is_hidden,
    normalize_remote_folder,
    parse_http_date,
)


class TestEnsureTrailingSlash:
    """Tests for ensure_trailing_slash function."""

    def test_adds_slash(self):
        assert ensure_trailing_slash("foo/bar") == "foo/bar/"

    def test_keeps_existing_slash(self):
        assert ensure_trailing_slash("foo/bar/") == "foo/bar/"

    def test_root_is_untouched(self):
        """Test that the root folder is never modified."""
        assert ensure_trailing_slash("/") == "/"

    @pytest.mark.parametrize("path", ["baz", "foo/bar", "/", "a/b/c/", "/abs"])
    def test_idempotent(self, path):
        """Test that applying the rule twice equals applying it once."""
        once = ensure_trailing_slash(path)
        assert ensure_trailing_slash(once) == once


class TestNormalizeRemoteFolder:
    """Tests for normalize_remote_folder function."""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("", "/"),
            ("/", "/"),
            ("Photos", "/Photos"),
            ("Photos/", "/Photos"),
            ("/Photos/2024/", "/Photos/2024"),
        ],
    )
    def test_normalization(self, path, expected):
        assert normalize_remote_folder(path) == expected


class TestIsHidden:
    """Tests for is_hidden function."""

    def test_dot_file(self):
        assert is_hidden(".bashrc")
        assert is_hidden("docs/.git")

    def test_regular_file(self):
        assert not is_hidden("docs/readme.txt")

    def test_only_last_component_counts(self):
        """Test that a hidden parent does not make the child hidden."""
        assert not is_hidden(".config/app.conf")


class TestHttpDates:
    """Tests for HTTP date parsing and mtime formatting."""

    def test_parse_http_date(self):
        assert parse_http_date("Wed, 15 Jan 2025 10:30:00 GMT") == 1736937000.0

    def test_parse_invalid_date(self):
        assert parse_http_date("yesterday") is None
        assert parse_http_date(None) is None
        assert parse_http_date("") is None

    def test_format_oc_mtime_truncates(self):
        assert format_oc_mtime(1700000000.75) == "1700000000"


class TestFormatSize:
    """Tests for format_size function."""

    def test_bytes(self):
        assert format_size(256) == "256 B"

    def test_kilobytes(self):
        assert format_size(1536) == "1.5 KB"

    def test_megabytes(self):
        assert format_size(10 * 1024 * 1024) == "10.0 MB"
