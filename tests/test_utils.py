"""Unit tests for utility functions."""

from datetime import datetime, timezone

import pytest

from drivesync.utils import (
    format_size,
    format_timestamp,
    hash_bytes,
    hash_file,
    normalize_path,
    parse_iso_timestamp,
    short_hash,
)

HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


class TestHashing:
    """Tests for hash_bytes and hash_file."""

    def test_hash_bytes_known_value(self):
        assert hash_bytes(b"hello") == HELLO_SHA256

    def test_hash_file_matches_hash_bytes(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_bytes(b"hello")
        assert hash_file(str(path)) == HELLO_SHA256

    def test_hash_file_small_chunks(self, tmp_path):
        """Chunked reads produce the same digest."""
        path = tmp_path / "a.txt"
        path.write_bytes(b"hello")
        assert hash_file(str(path), chunk_size=2) == HELLO_SHA256

    def test_hash_file_missing(self, tmp_path):
        with pytest.raises(OSError):
            hash_file(str(tmp_path / "missing"))


class TestParseIsoTimestamp:
    """Tests for parse_iso_timestamp function."""

    def test_z_suffix(self):
        dt = parse_iso_timestamp("2025-01-15T10:30:00.000000Z")
        assert dt == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_offset(self):
        dt = parse_iso_timestamp("2025-01-15T10:30:00+00:00")
        assert dt is not None
        assert dt.tzinfo is not None

    def test_naive_is_utc(self):
        dt = parse_iso_timestamp("2025-01-15T10:30:00")
        assert dt is not None
        assert dt.tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_invalid(self, value):
        assert parse_iso_timestamp(value) is None


class TestFormatting:
    """Tests for display helpers."""

    def test_format_size(self):
        assert format_size(256) == "256 B"
        assert format_size(1536) == "1.5 KB"
        assert format_size(5 * 1024 * 1024) == "5.0 MB"
        assert format_size(2 * 1024 * 1024 * 1024) == "2.0 GB"

    def test_format_timestamp_never(self):
        assert format_timestamp(None) == "never"

    def test_format_timestamp(self):
        dt = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert format_timestamp(dt).startswith("2025-01-1")

    def test_short_hash(self):
        assert short_hash(HELLO_SHA256) == HELLO_SHA256[:12]
        assert short_hash(None) == "-"


class TestNormalizePath:
    """Tests for normalize_path function."""

    def test_removes_dot_segments(self):
        assert normalize_path("/tmp/../tmp/./a.txt") == "/tmp/a.txt"

    def test_relative_becomes_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert normalize_path("a.txt") == str(tmp_path / "a.txt")

    def test_does_not_resolve_symlinks(self, tmp_path):
        target = tmp_path / "target.txt"
        target.write_text("x")
        link = tmp_path / "link.txt"
        link.symlink_to(target)
        assert normalize_path(str(link)) == str(link)
