"""Foundation utilities for csv-sentinel.

Provides reusable primitives for file I/O, hashing, timing, and logging.
This module must not import any other project module except exceptions.

Key Functions:
--------------
- file_hash, bytes_hash: Chunked content digests (md5 / sha256)
- read_json, write_json: JSON persistence; write_json is atomic (temp + replace)
- csv_text: Delimited rendering with explicit field ordering
- time_block: Timing context manager
- configure_logging: Root logger setup (plain or JSON-shaped)
- utc_now, to_iso, from_iso: Timestamp helpers (timezone-aware UTC)

Example:
--------
>>> from csv_sentinel.utils import file_hash, write_json
>>> digest = file_hash("data/bookstores.csv", algorithm="sha256")
>>> write_json("backups/backup-metadata.json", {"backups": []})
"""

from __future__ import annotations

import csv
from contextlib import contextmanager
from datetime import datetime, timezone
import hashlib
import io
import json
import logging
import os
from pathlib import Path
import tempfile
import time
from typing import Any, Iterator

__all__ = [
    "SUPPORTED_ALGORITHMS",
    "read_json",
    "write_json",
    "write_text_atomic",
    "csv_text",
    "file_hash",
    "bytes_hash",
    "time_block",
    "configure_logging",
    "utc_now",
    "to_iso",
    "from_iso",
]

SUPPORTED_ALGORITHMS = ("md5", "sha256")


# ============================================================================
# Timestamps
# ============================================================================


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize datetime to ISO-8601, assuming UTC for naive values."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def from_iso(value: str) -> datetime:
    """Parse an ISO-8601 string back to a timezone-aware datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ============================================================================
# JSON I/O
# ============================================================================


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, datetime):
        return to_iso(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def read_json(path: Path | str) -> Any:
    """Read JSON file and return the parsed document.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON document

    Raises:
        FileNotFoundError: If file does not exist
        JSONDecodeError: If file contains invalid JSON
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"JSON file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_text_atomic(path: Path | str, text: str) -> None:
    """Write text so that readers see either the old or the new content.

    The content goes to a temporary file in the target directory which then
    replaces the target with os.replace.

    Raises:
        OSError: If the write or the replace fails (target left untouched)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def write_json(path: Path | str, obj: Any, indent: int = 2) -> None:
    """Write JSON document atomically with pretty formatting.

    Args:
        path: Target file path
        obj: Document to serialize (Path and datetime values are converted)
        indent: Indentation level (default: 2)

    Raises:
        OSError: If write operation fails
    """
    text = json.dumps(obj, indent=indent, ensure_ascii=False, default=_json_default)
    write_text_atomic(path, text + "\n")


# ============================================================================
# CSV I/O
# ============================================================================


def csv_text(rows: list[dict[str, Any]], fieldnames: list[str]) -> str:
    """Render rows as delimited text with a header line."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fieldnames, extrasaction="ignore")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


# ============================================================================
# Hashing
# ============================================================================


def _new_hasher(algorithm: str):
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}. Must be one of {SUPPORTED_ALGORITHMS}")
    return hashlib.new(algorithm)


def file_hash(
    path: Path | str,
    algorithm: str = "sha256",
    chunk_size: int = 65536,
) -> str:
    """Compute content hash of a file.

    Args:
        path: File to hash
        algorithm: Hash algorithm, md5 or sha256 (default: sha256)
        chunk_size: Read chunk size in bytes

    Returns:
        Hexadecimal hash digest

    Raises:
        FileNotFoundError: If file does not exist
        ValueError: If algorithm not supported
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    hasher = _new_hasher(algorithm)

    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)

    return hasher.hexdigest()


def bytes_hash(data: bytes, algorithm: str = "sha256") -> str:
    """Compute hash of an in-memory payload."""
    hasher = _new_hasher(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


# ============================================================================
# Timing
# ============================================================================


@contextmanager
def time_block(label: str, logger: logging.Logger | None = None) -> Iterator[dict[str, float]]:
    """Context manager for timing code blocks.

    Yields a dict whose ``elapsed_ms`` key is filled in on exit, so callers
    can record the duration as well as log it.

    Example:
        with time_block("Validation", logger) as timing:
            run()
        print(timing["elapsed_ms"])
    """
    timing: dict[str, float] = {"elapsed_ms": 0.0}
    start = time.perf_counter()

    try:
        yield timing
    finally:
        timing["elapsed_ms"] = (time.perf_counter() - start) * 1000.0
        if logger is not None:
            logger.debug(f"{label} completed in {timing['elapsed_ms']:.1f}ms")


# ============================================================================
# Logging Configuration
# ============================================================================


def configure_logging(level: str = "INFO", structured: bool = False) -> None:
    """Configure root logger with standardized format.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        structured: Enable JSON-shaped log lines (default: False)

    Raises:
        ValueError: If level is not a known logging level
    """
    numeric_level = getattr(logging, level.upper(), None)

    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(numeric_level)

    if structured:
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"name": "%(name)s", "message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
