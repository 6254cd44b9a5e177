"""Pytest configuration and shared fixtures for csv-sentinel tests.

Provides:
- Settings rooted in a temporary directory (no observer, no debounce wait)
- Small contact-sheet files written on demand
- ChangeEvent builders for driving the orchestrator without a watcher
"""

from pathlib import Path
from typing import Callable

import pytest

from csv_sentinel.config import (
    BackupConfig,
    ChangeLogConfig,
    DiffConfig,
    MonitorConfig,
    Settings,
)
from csv_sentinel.monitor import ChangeEvent, ChangeKind, normalize_path
from csv_sentinel.utils import file_hash, utc_now

# ============================================================================
# Sample Content
# ============================================================================

CONTACTS_HEADER = "name,email,phone,website,latitude,longitude"

VALID_CONTACTS = (
    f"{CONTACTS_HEADER}\n"
    "Paper Reads,hello@paperreads.example.com,+1 503-555-0100,https://paperreads.example.com,45.52,-122.68\n"
    "Quiet Pages,hi@quietpages.example.com,(512) 555-0101,https://quietpages.example.com,30.27,-97.74\n"
    "Lantern Books,info@lantern.example.com,617.555.0102,https://lantern.example.com,42.36,-71.06\n"
)


# ============================================================================
# Temporary Working Directories
# ============================================================================


@pytest.fixture
def tmp_work_dir(tmp_path: Path) -> Path:
    """Temporary working directory for test outputs.

    Structure:
        tmp_path/
        ├── data/
        ├── backups/
        ├── logs/
        └── reports/
    """
    for name in ("data", "backups", "logs", "reports"):
        (tmp_path / name).mkdir(exist_ok=True)
    return tmp_path


@pytest.fixture
def settings(tmp_work_dir: Path) -> Settings:
    """Settings with every directory under tmp_work_dir and the observer off."""
    return Settings(
        monitor=MonitorConfig(debounce_ms=20, use_observer=False),
        backup=BackupConfig(directory=tmp_work_dir / "backups"),
        diff=DiffConfig(report_dir=tmp_work_dir / "reports", key_columns=["name"]),
        changelog=ChangeLogConfig(directory=tmp_work_dir / "logs"),
    )


# ============================================================================
# File Builders
# ============================================================================


@pytest.fixture
def write_file(tmp_work_dir: Path) -> Callable[[str, str], Path]:
    """Write text to ``data/<name>`` and return the path."""

    def _write(name: str, text: str) -> Path:
        path = tmp_work_dir / "data" / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def contacts_csv(write_file) -> Path:
    """Valid three-row contact sheet."""
    return write_file("contacts.csv", VALID_CONTACTS)


@pytest.fixture
def make_event() -> Callable[..., ChangeEvent]:
    """Build a ChangeEvent for a path as the monitor would."""

    def _make(path: Path, kind: ChangeKind = ChangeKind.CHANGED, destination: str | None = None) -> ChangeEvent:
        exists = Path(path).exists()
        return ChangeEvent(
            kind=kind,
            path=normalize_path(path),
            timestamp=utc_now(),
            current_digest=file_hash(path) if exists else None,
            size=Path(path).stat().st_size if exists else 0,
            destination=destination,
        )

    return _make
