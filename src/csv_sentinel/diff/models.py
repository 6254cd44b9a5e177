"""Diff module-local models.

All diff structures are immutable snapshots of one comparison. Filtering
produces a new DiffResult via ``model_copy``; the original is never touched,
so the same result can be re-filtered with different options.

Row indexes are 0-based positions among data records (header excluded).
``row_index`` is the position in the new file for added, modified, moved
and unchanged rows, and the position in the old file for removed rows.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "DiffMode",
    "ChangeType",
    "CellChange",
    "RowChange",
    "SchemaChange",
    "ColumnChangeCount",
    "ChangeCounts",
    "DiffStatistics",
    "SourceFiles",
    "DiffResult",
    "DiffFilter",
]

DiffMode = Literal["text", "schema", "structured", "hybrid"]


class ChangeType(str, Enum):
    """Classification of a row, cell or column across two versions."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    MOVED = "moved"
    UNCHANGED = "unchanged"


class CellChange(BaseModel):
    """One differing column of a modified row."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    column: str
    old_value: str
    new_value: str
    change_type: ChangeType = ChangeType.MODIFIED


class RowChange(BaseModel):
    """Classification of one row (or matched row pair)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    row_index: int = Field(..., ge=0)
    change_type: ChangeType
    row_id: Optional[str] = Field(default=None, description="Pipe-joined key column values")
    old_index: Optional[int] = None
    new_index: Optional[int] = None
    cell_changes: List[CellChange] = Field(default_factory=list)
    old_row: Optional[Dict[str, str]] = None
    new_row: Optional[Dict[str, str]] = None
    similarity: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class SchemaChange(BaseModel):
    """A column added, removed or moved between header rows."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    change_type: ChangeType
    column_name: str
    old_index: Optional[int] = None
    new_index: Optional[int] = None


class ColumnChangeCount(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    column: str
    change_count: int
    change_percentage: float


class ChangeCounts(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    added: int = 0
    removed: int = 0
    modified: int = 0
    moved: int = 0
    unchanged: int = 0

    @property
    def total_changed(self) -> int:
        return self.added + self.removed + self.modified + self.moved


class DiffStatistics(BaseModel):
    """Aggregate counts of one comparison.

    ``change_percentage`` is ``total changed / max(old_rows, new_rows) * 100``
    (0 when both files are empty). ``most_changed_columns`` ranks columns by
    the number of cell changes they appear in.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    old_rows: int = 0
    new_rows: int = 0
    old_columns: int = 0
    new_columns: int = 0
    changes: ChangeCounts = Field(default_factory=ChangeCounts)
    affected_columns: List[str] = Field(default_factory=list)
    change_percentage: float = 0.0
    most_changed_columns: List[ColumnChangeCount] = Field(default_factory=list)


class SourceFiles(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    old: str
    new: str


class DiffResult(BaseModel):
    """Outcome of one comparison.

    ``truncated`` is set when the row ceiling cut either input short; the
    result then covers only the rows that were read.
    ``statistics`` always describes the whole comparison, also on a copy
    narrowed by ``DiffEngine.apply_filters``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: DiffMode
    timestamp: datetime
    source_files: SourceFiles
    statistics: DiffStatistics
    schema_changes: List[SchemaChange] = Field(default_factory=list)
    row_changes: List[RowChange] = Field(default_factory=list)
    text_diff: Optional[str] = None
    truncated: bool = False
    key_columns: List[str] = Field(default_factory=list)
    processing_ms: float = 0.0
    filters: Optional[Dict[str, Any]] = Field(default=None, description="Filter applied to this result, if any")

    def rows_of(self, change_type: ChangeType) -> List[RowChange]:
        return [change for change in self.row_changes if change.change_type is change_type]

    @property
    def has_changes(self) -> bool:
        return bool(self.schema_changes) or self.statistics.changes.total_changed > 0


class DiffFilter(BaseModel):
    """Post-processing filter over a completed DiffResult.

    ``ignore_case`` and ``ignore_whitespace`` drop cell changes whose values
    compare equal once normalized; a modified row left with no cell changes
    is dropped.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    include_columns: List[str] = Field(default_factory=list)
    exclude_columns: List[str] = Field(default_factory=list)
    change_types: List[ChangeType] = Field(default_factory=list)
    ignore_case: bool = False
    ignore_whitespace: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.include_columns or self.exclude_columns or self.change_types or self.ignore_case or self.ignore_whitespace
        )
