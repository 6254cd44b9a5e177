"""Exception hierarchy for csv-sentinel.

Internal layers raise these; public boundaries of the backup store and the
update orchestrator convert them into explicit result objects so that nothing
propagates into the hosting process.

Hierarchy:
----------
SentinelError
├── ConfigError
├── WatchError
├── BackupError
│   ├── BackupNotFoundError
│   ├── ChecksumMismatchError
│   └── IndexPersistenceError
├── RestoreError
├── TabularReadError
├── DiffError
├── ReportError
├── ChangeLogError
└── HookError
"""

from __future__ import annotations

__all__ = [
    "SentinelError",
    "ConfigError",
    "WatchError",
    "BackupError",
    "BackupNotFoundError",
    "ChecksumMismatchError",
    "IndexPersistenceError",
    "RestoreError",
    "TabularReadError",
    "DiffError",
    "ReportError",
    "ChangeLogError",
    "HookError",
]


class SentinelError(Exception):
    """Base exception for all csv-sentinel errors."""

    pass


class ConfigError(SentinelError):
    """Invalid or unreadable configuration."""

    pass


class WatchError(SentinelError):
    """Path cannot be observed (unreachable parent, permission denied)."""

    pass


class BackupError(SentinelError):
    """Error while creating, listing or deleting backups."""

    pass


class BackupNotFoundError(BackupError):
    """No backup record with the requested id."""

    pass


class ChecksumMismatchError(BackupError):
    """Recomputed checksum does not match the recorded checksum."""

    def __init__(self, expected: str, actual: str, path: str | None = None):
        self.expected = expected
        self.actual = actual
        self.path = path
        where = f" for {path}" if path else ""
        super().__init__(f"Checksum mismatch{where}: expected {expected}, got {actual}")


class IndexPersistenceError(BackupError):
    """Backup index could not be written; in-memory state was left unchanged."""

    pass


class RestoreError(SentinelError):
    """Restore failed.

    Carries the rollback failure, if the rollback to the safety backup was
    attempted and also failed.
    """

    def __init__(self, message: str, rollback_error: str | None = None):
        self.rollback_error = rollback_error
        super().__init__(message)


class TabularReadError(SentinelError):
    """Delimited file could not be read or parsed."""

    pass


class DiffError(SentinelError):
    """Comparison aborted (unreadable or unparseable input)."""

    pass


class ReportError(SentinelError):
    """Diff report could not be rendered or written."""

    pass


class ChangeLogError(SentinelError):
    """Change log could not be read or appended."""

    pass


class HookError(SentinelError):
    """No rebuild hook registered under the requested name."""

    pass
