"""Unit tests for the utils module."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

pytestmark = pytest.mark.unit


class TestHashing:
    """Test file and payload hashing."""

    def test_Should_MatchBytesHash_When_FileHashed(self, tmp_path: Path):
        """file_hash and bytes_hash agree on the same content."""
        from csv_sentinel.utils import bytes_hash, file_hash

        path = tmp_path / "a.csv"
        path.write_bytes(b"name\nx\n")

        assert file_hash(path) == bytes_hash(b"name\nx\n")
        assert file_hash(path, "md5") == bytes_hash(b"name\nx\n", "md5")

    def test_Should_RaiseValueError_When_AlgorithmUnsupported(self):
        """Only md5 and sha256 are supported."""
        from csv_sentinel.utils import bytes_hash

        with pytest.raises(ValueError, match="Unsupported hash algorithm"):
            bytes_hash(b"x", "sha1")


class TestAtomicWrites:
    """Test atomic text and JSON writes."""

    def test_Should_ReplaceContent_When_WrittenTwice(self, tmp_path: Path):
        """The target holds the latest content and no temp file is left."""
        from csv_sentinel.utils import write_text_atomic

        target = tmp_path / "nested" / "out.txt"
        write_text_atomic(target, "first")
        write_text_atomic(target, "second")

        assert target.read_text(encoding="utf-8") == "second"
        assert [p.name for p in target.parent.iterdir()] == ["out.txt"]

    def test_Should_SerializePathsAndDates_When_WritingJson(self, tmp_path: Path):
        """write_json converts Path and datetime values."""
        from csv_sentinel.utils import read_json, write_json

        target = tmp_path / "doc.json"
        write_json(target, {"path": Path("/tmp/x"), "at": datetime(2024, 1, 2, tzinfo=timezone.utc)})

        document = read_json(target)
        assert document == {"path": "/tmp/x", "at": "2024-01-02T00:00:00+00:00"}


class TestTimestamps:
    """Test ISO helpers."""

    def test_Should_AssumeUtc_When_NaiveParsed(self):
        """Naive ISO strings are treated as UTC."""
        from csv_sentinel.utils import from_iso

        assert from_iso("2024-05-01T10:00:00").tzinfo is not None

    def test_Should_AcceptZuluSuffix_When_Parsing(self):
        """A trailing Z parses as UTC."""
        from csv_sentinel.utils import from_iso, to_iso

        assert to_iso(from_iso("2024-05-01T10:00:00Z")) == "2024-05-01T10:00:00+00:00"


class TestLogging:
    """Test configure_logging."""

    def test_Should_RaiseValueError_When_LevelUnknown(self):
        from csv_sentinel.utils import configure_logging

        with pytest.raises(ValueError):
            configure_logging("LOUD")
