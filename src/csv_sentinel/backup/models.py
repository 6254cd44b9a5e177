"""Backup module-local models.

BackupRecord mirrors one entry of ``backup-metadata.json``; timestamps are
serialized as ISO-8601 strings and parsed back to aware datetimes on load.
Result objects (BackupResult, RestoreResult) are what the store returns at
its public boundary instead of raising.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "BackupRecord",
    "BackupResult",
    "RestoreResult",
    "BackupFilter",
    "BackupStats",
]


class BackupRecord(BaseModel):
    """Metadata describing one versioned, checksummed snapshot.

    Attributes:
        id: ``<stem>_<epoch-ms>_<8 hex>``
        original_path: Absolute path of the file that was backed up
        backup_path: Absolute path of the stored payload
        timestamp: Backup creation time (UTC)
        file_size: Size of the original content in bytes
        checksum: Digest of the original (uncompressed) content
        checksum_algorithm: md5 or sha256
        compressed: Payload is gzip-compressed
        version: Per-original-path counter, strictly increasing, never reused
        context: Free-text reason for the backup
        tags: Labels used for filtering (auto-backup, pre-restore, ...)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Unique backup id")
    original_path: str = Field(..., description="Absolute path of the backed-up file")
    backup_path: str = Field(..., description="Absolute path of the stored payload")
    timestamp: datetime = Field(..., description="Creation time (UTC)")
    file_size: int = Field(..., ge=0, description="Original content size in bytes")
    checksum: str = Field(..., description="Digest of the original content")
    checksum_algorithm: Literal["md5", "sha256"] = Field(..., description="Digest algorithm")
    compressed: bool = Field(..., description="Payload is gzip-compressed")
    version: int = Field(..., ge=1, description="Per-path version number")
    context: Optional[str] = Field(default=None, description="Reason for the backup")
    tags: List[str] = Field(default_factory=list, description="Filter labels")


class BackupResult(BaseModel):
    """Outcome of create_backup; never raised past the store boundary."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool
    record: Optional[BackupRecord] = None
    error: Optional[str] = None
    retention_deleted: List[str] = Field(default_factory=list, description="Ids removed by the retention sweep")
    retention_error: Optional[str] = Field(default=None, description="Set when the sweep after a successful backup failed")

    @property
    def backup_id(self) -> Optional[str]:
        return self.record.id if self.record else None


class RestoreResult(BaseModel):
    """Outcome of restore_from_backup.

    ``rollback_error`` is reported alongside ``error``, never instead of it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool
    backup_id: str
    target_path: Optional[str] = None
    safety_backup_id: Optional[str] = None
    restored_checksum: Optional[str] = None
    error: Optional[str] = None
    rollback_attempted: bool = False
    rollback_error: Optional[str] = None


class BackupFilter(BaseModel):
    """Query for list_backups."""

    model_config = ConfigDict(extra="forbid")

    original_path: Optional[str] = Field(default=None, description="Only backups of this file")
    from_date: Optional[datetime] = Field(default=None, description="Inclusive lower bound")
    to_date: Optional[datetime] = Field(default=None, description="Inclusive upper bound")
    tags: List[str] = Field(default_factory=list, description="Match records carrying any of these tags")
    limit: Optional[int] = Field(default=None, ge=0)
    sort_by: Literal["timestamp", "size", "version"] = Field(default="timestamp")
    sort_order: Literal["asc", "desc"] = Field(default="desc")


class BackupStats(BaseModel):
    """Aggregate view of the backup index."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_backups: int = 0
    total_size: int = Field(default=0, description="Sum of original content sizes")
    stored_size: int = Field(default=0, description="Sum of payload sizes on disk")
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None
    by_original_path: Dict[str, int] = Field(default_factory=dict)
