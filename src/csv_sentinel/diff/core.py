"""Diff engine: explainable differences between two versions of a file.

Modes:
    text        unified line patch plus coarse added/removed/modified line counts
    schema      column additions, removals and moves only
    structured  schema changes plus row and cell changes from row matching
    hybrid      structured, with the text patch attached for display

Row matching is described in ``diff.matching``. Cell changes are recorded
only for modified rows and only over columns present in both versions;
column additions and removals surface as SchemaChanges.

Large-file guard: at most ``max_rows`` data rows (or lines, in text mode)
are read from each side. A result computed from cut-short input has
``truncated=True``.

Example:
--------
>>> engine = DiffEngine(DiffConfig(mode="structured", key_columns=["name"]))
>>> result = await engine.compare_files("old.csv", "new.csv")
>>> result.statistics.changes.modified
1
"""

from __future__ import annotations

import asyncio
import difflib
import logging
from pathlib import Path
from typing import Any, Sequence

from ..config import DialectConfig, DiffConfig
from ..exceptions import DiffError, TabularReadError
from ..notifier import Notifier
from ..tabular import TabularData, parse_table, read_text
from ..utils import time_block, utc_now
from .matching import identity_of, match_rows
from .models import (
    CellChange,
    ChangeCounts,
    ChangeType,
    ColumnChangeCount,
    DiffFilter,
    DiffMode,
    DiffResult,
    DiffStatistics,
    RowChange,
    SchemaChange,
    SourceFiles,
)

__all__ = ["DiffEngine", "analyze_schema_changes", "text_patch"]

logger = logging.getLogger(__name__)


# =============================================================================
# Pure helpers
# =============================================================================


def analyze_schema_changes(old_headers: Sequence[str], new_headers: Sequence[str]) -> list[SchemaChange]:
    """Added (new order), then removed (old order), then moved (old order)."""
    old_set = set(old_headers)
    new_set = set(new_headers)
    changes: list[SchemaChange] = []

    for index, header in enumerate(new_headers):
        if header not in old_set:
            changes.append(SchemaChange(change_type=ChangeType.ADDED, column_name=header, new_index=index))

    for index, header in enumerate(old_headers):
        if header not in new_set:
            changes.append(SchemaChange(change_type=ChangeType.REMOVED, column_name=header, old_index=index))

    for header in old_headers:
        if header in new_set:
            old_index = old_headers.index(header)
            new_index = new_headers.index(header)
            if old_index != new_index:
                changes.append(
                    SchemaChange(
                        change_type=ChangeType.MOVED,
                        column_name=header,
                        old_index=old_index,
                        new_index=new_index,
                    )
                )

    return changes


def text_patch(old_text: str, new_text: str, old_name: str, new_name: str) -> tuple[str, ChangeCounts, int, int]:
    """Unified patch and line counts between two texts.

    Replaced line blocks count as modified up to the shorter side; the
    excess counts as added or removed.

    Returns:
        (patch, counts, old_line_count, new_line_count)
    """
    old_lines = old_text.splitlines(keepends=True)
    new_lines = new_text.splitlines(keepends=True)
    patch = "".join(difflib.unified_diff(old_lines, new_lines, fromfile=old_name, tofile=new_name))

    added = removed = modified = unchanged = 0
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            unchanged += i2 - i1
        elif tag == "insert":
            added += j2 - j1
        elif tag == "delete":
            removed += i2 - i1
        elif tag == "replace":
            paired = min(i2 - i1, j2 - j1)
            modified += paired
            removed += (i2 - i1) - paired
            added += (j2 - j1) - paired

    counts = ChangeCounts(
        added=added,
        removed=removed,
        modified=modified,
        unchanged=unchanged,
    )
    return patch, counts, len(old_lines), len(new_lines)


def _percentage(part: int, whole: int) -> float:
    return (part / whole) * 100.0 if whole > 0 else 0.0


def _first_lines(text: str, limit: int) -> tuple[str, bool]:
    lines = text.splitlines(keepends=True)
    if len(lines) <= limit:
        return text, False
    return "".join(lines[:limit]), True


# =============================================================================
# Engine
# =============================================================================


class DiffEngine:
    """Compares two versions of a delimited file."""

    def __init__(
        self,
        config: DiffConfig | None = None,
        dialect: DialectConfig | None = None,
        notifier: Notifier | None = None,
    ):
        self.config = config or DiffConfig()
        self.dialect = dialect or DialectConfig()
        self.notifier = notifier or Notifier()

    async def compare_files(
        self,
        old_path: Path | str,
        new_path: Path | str,
        mode: DiffMode | None = None,
        key_columns: Sequence[str] | None = None,
        old_label: str | None = None,
        new_label: str | None = None,
    ) -> DiffResult:
        """Compare two files without blocking the event loop.

        Raises:
            DiffError: If either file is unreadable or unparseable
        """
        mode = mode or self.config.mode
        await self.notifier.publish("diff.started", old=str(old_path), new=str(new_path), mode=mode)
        try:
            result = await asyncio.to_thread(
                self.compare_paths, old_path, new_path, mode, key_columns, old_label, new_label
            )
        except DiffError as e:
            await self.notifier.publish("diff.failed", old=str(old_path), new=str(new_path), error=str(e))
            raise

        await self.notifier.publish(
            "diff.completed",
            old=result.source_files.old,
            new=result.source_files.new,
            mode=result.mode,
            changes=result.statistics.changes.total_changed,
            truncated=result.truncated,
        )
        return result

    def compare_paths(
        self,
        old_path: Path | str,
        new_path: Path | str,
        mode: DiffMode | None = None,
        key_columns: Sequence[str] | None = None,
        old_label: str | None = None,
        new_label: str | None = None,
    ) -> DiffResult:
        """Synchronous comparison of two files on disk.

        Raises:
            DiffError: If either file is unreadable or unparseable
        """
        mode = mode or self.config.mode
        old_label = old_label or str(old_path)
        new_label = new_label or str(new_path)

        try:
            old_text = read_text(old_path, self.dialect)
            new_text = read_text(new_path, self.dialect)
        except TabularReadError as e:
            raise DiffError(f"CSV diff failed: {e}") from e

        return self.compare_texts(old_text, new_text, mode, key_columns, old_label, new_label)

    def compare_texts(
        self,
        old_text: str,
        new_text: str,
        mode: DiffMode | None = None,
        key_columns: Sequence[str] | None = None,
        old_label: str = "old",
        new_label: str = "new",
    ) -> DiffResult:
        """Compare two in-memory file contents.

        Raises:
            DiffError: If either text is not parseable delimited data
        """
        mode = mode or self.config.mode

        with time_block(f"Diff {old_label} -> {new_label} ({mode})", logger) as timing:
            if mode == "text":
                result = self._text_diff(old_text, new_text, old_label, new_label)
            else:
                try:
                    old_table = parse_table(old_text, self.dialect, max_rows=self.config.max_rows)
                    new_table = parse_table(new_text, self.dialect, max_rows=self.config.max_rows)
                except TabularReadError as e:
                    raise DiffError(f"CSV diff failed: {e}") from e

                result = self.compare_tables(old_table, new_table, mode, key_columns, old_label, new_label)
                if mode == "hybrid":
                    old_cut, _ = _first_lines(old_text, self.config.max_rows + 1)
                    new_cut, _ = _first_lines(new_text, self.config.max_rows + 1)
                    patch, _, _, _ = text_patch(old_cut, new_cut, Path(old_label).name, Path(new_label).name)
                    result = result.model_copy(update={"text_diff": patch})

        if result.truncated:
            logger.warning(f"Diff of {old_label} -> {new_label} is partial: row ceiling {self.config.max_rows} reached")

        return result.model_copy(update={"processing_ms": timing["elapsed_ms"]})

    def compare_tables(
        self,
        old_table: TabularData,
        new_table: TabularData,
        mode: DiffMode | None = None,
        key_columns: Sequence[str] | None = None,
        old_label: str = "old",
        new_label: str = "new",
    ) -> DiffResult:
        """Schema or structured comparison of parsed tables.

        ``text`` mode needs raw contents; use compare_texts for it.
        """
        mode = mode or self.config.mode
        if mode == "text":
            raise DiffError("Text mode compares raw contents; use compare_texts")

        keys = list(key_columns if key_columns is not None else self.config.key_columns)
        schema_changes = analyze_schema_changes(old_table.headers, new_table.headers)
        truncated = old_table.truncated or new_table.truncated
        sources = SourceFiles(old=old_label, new=new_label)

        if mode == "schema":
            statistics = DiffStatistics(
                old_rows=old_table.row_count,
                new_rows=new_table.row_count,
                old_columns=len(old_table.headers),
                new_columns=len(new_table.headers),
                changes=ChangeCounts(unchanged=min(old_table.row_count, new_table.row_count)),
                affected_columns=[change.column_name for change in schema_changes],
                change_percentage=_percentage(
                    len(schema_changes), max(len(old_table.headers), len(new_table.headers))
                ),
            )
            return DiffResult(
                mode="schema",
                timestamp=utc_now(),
                source_files=sources,
                statistics=statistics,
                schema_changes=schema_changes,
                truncated=truncated,
                key_columns=keys,
            )

        row_changes, unchanged = self._row_changes(old_table, new_table, keys)
        statistics = self._statistics(old_table, new_table, row_changes, schema_changes, unchanged)
        return DiffResult(
            mode=mode,
            timestamp=utc_now(),
            source_files=sources,
            statistics=statistics,
            schema_changes=schema_changes,
            row_changes=row_changes,
            truncated=truncated,
            key_columns=keys,
        )

    # =========================================================================
    # Modes
    # =========================================================================

    def _text_diff(self, old_text: str, new_text: str, old_label: str, new_label: str) -> DiffResult:
        # Header line plus max_rows data lines
        old_text, old_cut = _first_lines(old_text, self.config.max_rows + 1)
        new_text, new_cut = _first_lines(new_text, self.config.max_rows + 1)
        patch, counts, old_lines, new_lines = text_patch(old_text, new_text, Path(old_label).name, Path(new_label).name)

        statistics = DiffStatistics(
            old_rows=old_lines,
            new_rows=new_lines,
            changes=counts,
            change_percentage=_percentage(counts.total_changed, max(old_lines, new_lines)),
        )
        return DiffResult(
            mode="text",
            timestamp=utc_now(),
            source_files=SourceFiles(old=old_label, new=new_label),
            statistics=statistics,
            text_diff=patch,
            truncated=old_cut or new_cut,
        )

    def _row_changes(
        self,
        old_table: TabularData,
        new_table: TabularData,
        keys: list[str],
    ) -> tuple[list[RowChange], int]:
        new_headers = set(new_table.headers)
        common = [header for header in dict.fromkeys(old_table.headers) if header in new_headers]
        # Compare in the new file's column order
        common.sort(key=new_table.headers.index)

        match = match_rows(
            old_table.records,
            new_table.records,
            common,
            key_columns=keys,
            min_similarity=self.config.min_similarity,
            detect_moves=self.config.enable_move_detection,
        )

        changes: list[RowChange] = []
        unchanged = 0
        for pair in match.pairs:
            old_row = old_table.records[pair.old_index]
            new_row = new_table.records[pair.new_index]
            cells = [
                CellChange(column=column, old_value=old_row.get(column, ""), new_value=new_row.get(column, ""))
                for column in common
                if old_row.get(column, "") != new_row.get(column, "")
            ]

            if cells:
                change_type = ChangeType.MODIFIED
            elif (pair.old_index, pair.new_index) in match.moved:
                change_type = ChangeType.MOVED
            else:
                unchanged += 1
                continue

            changes.append(
                RowChange(
                    row_index=pair.new_index,
                    change_type=change_type,
                    row_id=pair.row_id,
                    old_index=pair.old_index,
                    new_index=pair.new_index,
                    cell_changes=cells,
                    old_row=dict(old_row),
                    new_row=dict(new_row),
                    similarity=pair.similarity,
                )
            )

        for index in match.removed:
            record = old_table.records[index]
            changes.append(
                RowChange(
                    row_index=index,
                    change_type=ChangeType.REMOVED,
                    row_id=identity_of(record, keys),
                    old_index=index,
                    old_row=dict(record),
                )
            )

        for index in match.added:
            record = new_table.records[index]
            changes.append(
                RowChange(
                    row_index=index,
                    change_type=ChangeType.ADDED,
                    row_id=identity_of(record, keys),
                    new_index=index,
                    new_row=dict(record),
                )
            )

        return changes, unchanged

    def _statistics(
        self,
        old_table: TabularData,
        new_table: TabularData,
        row_changes: list[RowChange],
        schema_changes: list[SchemaChange],
        unchanged: int,
    ) -> DiffStatistics:
        by_type = {change_type: 0 for change_type in ChangeType}
        column_counts: dict[str, int] = {}
        for change in row_changes:
            by_type[change.change_type] += 1
            for cell in change.cell_changes:
                column_counts[cell.column] = column_counts.get(cell.column, 0) + 1

        counts = ChangeCounts(
            added=by_type[ChangeType.ADDED],
            removed=by_type[ChangeType.REMOVED],
            modified=by_type[ChangeType.MODIFIED],
            moved=by_type[ChangeType.MOVED],
            unchanged=unchanged,
        )
        total_rows = max(old_table.row_count, new_table.row_count)

        ranked = sorted(column_counts.items(), key=lambda item: (-item[1], item[0]))[: self.config.top_columns]
        affected = list(dict.fromkeys([*column_counts, *(change.column_name for change in schema_changes)]))

        return DiffStatistics(
            old_rows=old_table.row_count,
            new_rows=new_table.row_count,
            old_columns=len(old_table.headers),
            new_columns=len(new_table.headers),
            changes=counts,
            affected_columns=affected,
            change_percentage=_percentage(counts.total_changed, total_rows),
            most_changed_columns=[
                ColumnChangeCount(column=column, change_count=count, change_percentage=_percentage(count, total_rows))
                for column, count in ranked
            ],
        )

    # =========================================================================
    # Filtering
    # =========================================================================

    def apply_filters(self, result: DiffResult, filters: DiffFilter) -> DiffResult:
        """Filtered copy of ``result``; the input is left unchanged.

        Only ``row_changes`` and ``schema_changes`` are filtered. ``statistics``
        keeps describing the full comparison, so report headers and
        ``has_changes`` still reflect the unfiltered counts; ``filters`` records
        what was hidden.
        """
        if filters.is_empty:
            return result

        def normalize(value: str) -> str:
            if filters.ignore_whitespace:
                value = "".join(value.split())
            if filters.ignore_case:
                value = value.casefold()
            return value

        def keep_column(column: str) -> bool:
            if filters.include_columns and column not in filters.include_columns:
                return False
            return column not in filters.exclude_columns

        rows: list[RowChange] = []
        for change in result.row_changes:
            if filters.change_types and change.change_type not in filters.change_types:
                continue
            if change.change_type is not ChangeType.MODIFIED:
                rows.append(change)
                continue

            cells = [
                cell
                for cell in change.cell_changes
                if keep_column(cell.column) and normalize(cell.old_value) != normalize(cell.new_value)
            ]
            if cells:
                rows.append(change.model_copy(update={"cell_changes": cells}))

        schema = [change for change in result.schema_changes if keep_column(change.column_name)]

        return result.model_copy(
            update={
                "row_changes": rows,
                "schema_changes": schema,
                "filters": filters.model_dump(mode="json"),
            }
        )

    def get_engine_stats(self) -> dict[str, Any]:
        return {
            "mode": self.config.mode,
            "key_columns": list(self.config.key_columns),
            "move_detection": self.config.enable_move_detection,
            "min_similarity": self.config.min_similarity,
            "max_rows": self.config.max_rows,
        }

