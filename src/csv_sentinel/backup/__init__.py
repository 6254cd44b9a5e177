"""Versioned, checksummed backups with retention.

Public API:
-----------
    from csv_sentinel.backup import (
        BackupStore,
        BackupIndex,
        BackupRecord,
        BackupResult,
        RestoreResult,
        BackupFilter,
        BackupStats,
        format_backup_record,
        format_backup_stats,
    )

See core, index and models modules for detailed documentation.
"""

from .core import BackupStore, format_backup_record, format_backup_stats, format_size
from .index import BackupIndex
from .models import BackupFilter, BackupRecord, BackupResult, BackupStats, RestoreResult

__all__ = [
    "BackupStore",
    "BackupIndex",
    "BackupRecord",
    "BackupResult",
    "RestoreResult",
    "BackupFilter",
    "BackupStats",
    "format_backup_record",
    "format_backup_stats",
    "format_size",
]
