"""Differences between two versions of a delimited file.

Public API:
-----------
    from csv_sentinel.diff import (
        DiffEngine,
        DiffResult,
        DiffFilter,
        ReportGenerator,
        ReportOptions,
    )

See core, matching, models and report modules for detailed documentation.
"""

from .core import DiffEngine, analyze_schema_changes, text_patch
from .matching import MatchResult, RowPair, identity_of, longest_increasing_subsequence, match_rows, similarity
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
from .report import REPORT_EXTENSIONS, ReportFormat, ReportGenerator, ReportOptions, format_diff_statistics, format_row_change

__all__ = [
    "DiffEngine",
    "analyze_schema_changes",
    "text_patch",
    "match_rows",
    "MatchResult",
    "RowPair",
    "identity_of",
    "similarity",
    "longest_increasing_subsequence",
    "DiffMode",
    "ChangeType",
    "CellChange",
    "RowChange",
    "SchemaChange",
    "ChangeCounts",
    "ColumnChangeCount",
    "DiffStatistics",
    "SourceFiles",
    "DiffResult",
    "DiffFilter",
    "ReportGenerator",
    "ReportOptions",
    "ReportFormat",
    "REPORT_EXTENSIONS",
    "format_diff_statistics",
    "format_row_change",
]
