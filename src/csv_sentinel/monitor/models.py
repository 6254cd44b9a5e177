"""Monitor module-local models.

ChangeEvent is the one value that leaves the monitor: an immutable record of
a coalesced filesystem disturbance, classified against the path's baseline.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = ["ChangeKind", "RawKind", "ChangeEvent", "FileBaseline"]

RawKind = Literal["created", "modified", "deleted", "moved"]


class ChangeKind(str, Enum):
    """Classification of a coalesced change."""

    ADDED = "added"
    CHANGED = "changed"
    RENAMED = "renamed"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileBaseline:
    """Last observed state of a watched path."""

    size: int
    mtime_ns: int
    digest: Optional[str] = None

    def differs_from(self, other: "FileBaseline", use_checksum: bool) -> bool:
        if use_checksum and self.digest is not None and other.digest is not None:
            return self.digest != other.digest
        return self.size != other.size or self.mtime_ns != other.mtime_ns


class ChangeEvent(BaseModel):
    """One coalesced change to a watched file.

    Attributes:
        kind: added | changed | renamed | deleted
        path: Absolute path of the watched file
        timestamp: When the change was classified (UTC)
        previous_digest: Digest from the baseline, if one existed
        current_digest: Digest of the current content (None when deleted)
        size: Current size in bytes (0 when deleted)
        modified_at: Current modification time (None when deleted)
        destination: New location for a rename that moved the file away
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ChangeKind = Field(..., description="Change classification")
    path: str = Field(..., description="Absolute path of the watched file")
    timestamp: datetime = Field(..., description="Classification time (UTC)")
    previous_digest: Optional[str] = Field(default=None)
    current_digest: Optional[str] = Field(default=None)
    size: int = Field(default=0, ge=0)
    modified_at: Optional[datetime] = Field(default=None)
    destination: Optional[str] = Field(default=None)
