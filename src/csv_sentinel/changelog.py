"""Append-only change log.

One JSON document per line (``logs/csv-changes.jsonl`` by default). Each
line is a ChangeLogEntry: the ChangeEvent that triggered a pipeline cycle,
the metadata the cycle produced (backup id, validation summary, diff report
paths) and a processing sequence number.

Entries are never rewritten or trimmed. ``sequence`` is the total order of
processing; queries return newest first by sequence, not by event time.

A line that fails to parse is skipped with a warning so one damaged line
does not hide the rest of the history.

Example:
--------
>>> log = ChangeLog(Path("logs"))
>>> log.initialize()
>>> entry = log.append(event, ChangeLogMetadata(backup_id="books_1700000000000_ab12cd34"))
>>> [e.event.kind for e in log.recent(5)]
"""

from __future__ import annotations

from datetime import datetime
import json
import logging
import os
from pathlib import Path
import threading
from typing import Any, Dict, List, Literal, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ChangeLogError
from .monitor.models import ChangeEvent, ChangeKind
from .utils import csv_text, to_iso, utc_now

__all__ = [
    "ChangeLog",
    "ChangeLogEntry",
    "ChangeLogMetadata",
    "ChangeLogQuery",
    "ChangeLogSummary",
    "describe_event",
    "format_change_log_entry",
    "format_change_log_summary",
]

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "id",
    "sequence",
    "timestamp",
    "path",
    "kind",
    "size",
    "previous_digest",
    "current_digest",
    "backup_id",
    "is_valid",
    "description",
]


# =============================================================================
# Models
# =============================================================================


class ChangeLogMetadata(BaseModel):
    """What one pipeline cycle produced for its ChangeEvent."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_id: Optional[str] = None
    validation: Optional[Dict[str, Any]] = Field(default=None, description="ValidationResult.summary()")
    validation_errors: List[str] = Field(default_factory=list)
    validation_warnings: List[str] = Field(default_factory=list)
    row_count: Optional[int] = None
    column_count: Optional[int] = None
    headers: Optional[List[str]] = None
    diff_reports: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list, description="Step failures during the cycle")


class ChangeLogEntry(BaseModel):
    """One persisted line of the change log."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    sequence: int = Field(..., ge=1)
    logged_at: datetime
    event: ChangeEvent
    metadata: ChangeLogMetadata = Field(default_factory=ChangeLogMetadata)
    description: str = ""


class ChangeLogQuery(BaseModel):
    """Filter over log entries.

    ``file`` matches entries whose path contains it; ``start``/``end`` bound
    the event timestamp inclusively.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    file: Optional[str] = None
    kind: Optional[ChangeKind] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)


class ChangeLogSummary(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    total_changes: int = 0
    by_kind: Dict[str, int] = Field(default_factory=dict)
    by_file: Dict[str, int] = Field(default_factory=dict)
    first_change: Optional[datetime] = None
    last_change: Optional[datetime] = None


def describe_event(event: ChangeEvent) -> str:
    """Human-readable one-liner for an event."""
    name = Path(event.path).name
    when = to_iso(event.timestamp)
    if event.kind is ChangeKind.ADDED:
        return f"File {name} was created at {when} ({event.size} bytes)"
    if event.kind is ChangeKind.CHANGED:
        return f"File {name} was modified at {when} ({event.size} bytes)"
    if event.kind is ChangeKind.RENAMED:
        target = f" to {Path(event.destination).name}" if event.destination else ""
        return f"File {name} was renamed{target} at {when}"
    return f"File {name} was deleted at {when}"


# =============================================================================
# Log
# =============================================================================


class ChangeLog:
    """JSON-lines audit trail of processed change events."""

    def __init__(self, directory: Path | str = "logs", file_name: str = "csv-changes.jsonl"):
        self.directory = Path(directory)
        self.path = self.directory / file_name
        self._lock = threading.Lock()
        self._sequence: Optional[int] = None

    def initialize(self) -> None:
        """Create the log directory and read the current sequence.

        Raises:
            ChangeLogError: If the directory cannot be created or the log read
        """
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ChangeLogError(f"Failed to initialize change log: {e}") from e

        entries = self._read_entries()
        self._sequence = max((entry.sequence for entry in entries), default=0)
        logger.debug(f"Change log ready: {self.path} ({len(entries)} entries)")

    def append(self, event: ChangeEvent, metadata: ChangeLogMetadata | None = None) -> ChangeLogEntry:
        """Persist one entry and return it.

        Raises:
            ChangeLogError: If the line cannot be written
        """
        with self._lock:
            if self._sequence is None:
                self.initialize()

            entry = ChangeLogEntry(
                id=f"{int(utc_now().timestamp() * 1000)}-{uuid.uuid4().hex[:9]}",
                sequence=self._sequence + 1,
                logged_at=utc_now(),
                event=event,
                metadata=metadata or ChangeLogMetadata(),
                description=describe_event(event),
            )
            line = entry.model_dump_json() + "\n"

            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise ChangeLogError(f"Cannot append to change log {self.path}: {e}") from e

            self._sequence = entry.sequence

        logger.debug(f"Logged {event.kind.value} for {event.path} (#{entry.sequence})")
        return entry

    def _read_entries(self) -> list[ChangeLogEntry]:
        if not self.path.exists():
            return []

        entries: list[ChangeLogEntry] = []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        entries.append(ChangeLogEntry.model_validate_json(line))
                    except ValidationError as e:
                        logger.warning(f"Skipping unreadable change log line {line_number} in {self.path}: {e}")
        except OSError as e:
            raise ChangeLogError(f"Cannot read change log {self.path}: {e}") from e

        return entries

    # =========================================================================
    # Queries
    # =========================================================================

    def query(self, query: ChangeLogQuery | None = None, **kwargs: Any) -> list[ChangeLogEntry]:
        """Entries matching ``query``, newest first."""
        query = query or ChangeLogQuery(**kwargs)
        entries = self._read_entries()

        if query.file:
            entries = [e for e in entries if query.file in e.event.path]
        if query.kind is not None:
            entries = [e for e in entries if e.event.kind is query.kind]
        if query.start is not None:
            entries = [e for e in entries if e.event.timestamp >= query.start]
        if query.end is not None:
            entries = [e for e in entries if e.event.timestamp <= query.end]

        entries.sort(key=lambda e: e.sequence, reverse=True)
        end = None if query.limit is None else query.offset + query.limit
        return entries[query.offset : end]

    def recent(self, limit: int = 10) -> list[ChangeLogEntry]:
        return self.query(ChangeLogQuery(limit=limit))

    def for_file(self, path: Path | str, limit: Optional[int] = None) -> list[ChangeLogEntry]:
        return self.query(ChangeLogQuery(file=str(path), limit=limit))

    def summary(self) -> ChangeLogSummary:
        entries = self._read_entries()
        if not entries:
            return ChangeLogSummary()

        by_kind: dict[str, int] = {}
        by_file: dict[str, int] = {}
        for entry in entries:
            by_kind[entry.event.kind.value] = by_kind.get(entry.event.kind.value, 0) + 1
            name = Path(entry.event.path).name
            by_file[name] = by_file.get(name, 0) + 1

        timestamps = [entry.event.timestamp for entry in entries]
        return ChangeLogSummary(
            total_changes=len(entries),
            by_kind=by_kind,
            by_file=by_file,
            first_change=min(timestamps),
            last_change=max(timestamps),
        )

    def export(self, format: Literal["json", "csv"] = "json") -> str:
        """Whole log, oldest first, as a JSON array or CSV text."""
        entries = sorted(self._read_entries(), key=lambda e: e.sequence)

        if format == "csv":
            rows = [
                {
                    "id": e.id,
                    "sequence": e.sequence,
                    "timestamp": to_iso(e.event.timestamp),
                    "path": e.event.path,
                    "kind": e.event.kind.value,
                    "size": e.event.size,
                    "previous_digest": e.event.previous_digest or "",
                    "current_digest": e.event.current_digest or "",
                    "backup_id": e.metadata.backup_id or "",
                    "is_valid": "" if e.metadata.validation is None else e.metadata.validation.get("is_valid"),
                    "description": e.description,
                }
                for e in entries
            ]
            return csv_text(rows, EXPORT_COLUMNS)

        if format != "json":
            raise ChangeLogError(f"Unsupported export format: {format}")

        return json.dumps([e.model_dump(mode="json") for e in entries], indent=2, ensure_ascii=False) + "\n"


# =============================================================================
# Display helpers
# =============================================================================


def format_change_log_entry(entry: ChangeLogEntry) -> str:
    """``[time] KIND: name (size) [rows]`` one-liner."""
    details = ""
    if entry.event.size:
        details += f" ({entry.event.size / 1024:.1f}KB)"
    if entry.metadata.row_count:
        details += f" [{entry.metadata.row_count} rows]"
    if entry.metadata.validation is not None and not entry.metadata.validation.get("is_valid", True):
        details += " INVALID"
    return f"[{to_iso(entry.event.timestamp)}] {entry.event.kind.value.upper()}: {Path(entry.event.path).name}{details}"


def format_change_log_summary(summary: ChangeLogSummary) -> str:
    lines = [f"Total Changes: {summary.total_changes}", "", "Changes by Type:"]
    lines += [f"  {kind}: {count}" for kind, count in summary.by_kind.items()]
    lines += ["", "Changes by File:"]
    lines += [f"  {name}: {count}" for name, count in summary.by_file.items()]
    if summary.first_change and summary.last_change:
        lines += ["", f"First Change: {to_iso(summary.first_change)}", f"Last Change: {to_iso(summary.last_change)}"]
    return "\n".join(lines)
