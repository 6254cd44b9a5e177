"""Diff report rendering.

``ReportGenerator.render(result, format)`` is a pure function of the
DiffResult and the ReportOptions: the "generated" time printed in every
format is the DiffResult timestamp, and nothing else varies between runs,
so rendering the same result twice yields byte-identical text.

Formats:
    console   plain text for terminals
    html      self-contained styled document (all values escaped)
    json      the DiffResult plus report metadata
    markdown  tables for statistics, schema changes and row changes
"""

from __future__ import annotations

import html
import json
import logging
from pathlib import Path
from typing import Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ReportError
from ..utils import to_iso, write_text_atomic
from .models import ChangeType, DiffResult, DiffStatistics, RowChange

__all__ = [
    "ReportFormat",
    "ReportOptions",
    "ReportGenerator",
    "REPORT_EXTENSIONS",
    "format_diff_statistics",
    "format_row_change",
]

logger = logging.getLogger(__name__)

ReportFormat = Literal["console", "html", "json", "markdown"]

REPORT_EXTENSIONS: dict[str, str] = {"console": "txt", "html": "html", "json": "json", "markdown": "md"}

GENERATOR_NAME = "csv-sentinel diff report"
REPORT_VERSION = "1.0"

_MARKERS = {
    ChangeType.ADDED: "+",
    ChangeType.REMOVED: "-",
    ChangeType.MODIFIED: "~",
    ChangeType.MOVED: ">",
    ChangeType.UNCHANGED: "=",
}


class ReportOptions(BaseModel):
    """Rendering options; part of the report's identity."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = "CSV Diff Report"
    description: str = "Comparison between CSV file versions"
    include_statistics: bool = True
    include_schema_changes: bool = True
    include_row_details: bool = True
    max_rows_to_show: int = Field(default=100, ge=0)
    theme: Literal["light", "dark"] = "light"


# =============================================================================
# Shared text helpers
# =============================================================================


def format_diff_statistics(stats: DiffStatistics, top: int = 5) -> str:
    """Multi-line plain-text summary of diff statistics."""
    lines = [
        f"Total Rows: {stats.old_rows} -> {stats.new_rows}",
        f"Total Columns: {stats.old_columns} -> {stats.new_columns}",
        f"Changes: {stats.change_percentage:.1f}%",
        f"  Added: {stats.changes.added}",
        f"  Removed: {stats.changes.removed}",
        f"  Modified: {stats.changes.modified}",
        f"  Moved: {stats.changes.moved}",
        f"  Unchanged: {stats.changes.unchanged}",
        f"Affected Columns: {len(stats.affected_columns)}",
    ]
    if stats.most_changed_columns:
        lines.append("")
        lines.append("Most Changed Columns:")
        for col in stats.most_changed_columns[:top]:
            lines.append(f"  {col.column}: {col.change_count} changes ({col.change_percentage:.1f}%)")
    return "\n".join(lines)


def format_row_change(change: RowChange, max_cells: int = 3) -> str:
    """One row change with its first few cell changes."""
    summary = f"{_MARKERS[change.change_type]} Row {change.row_index} ({change.change_type.value})"
    if change.row_id:
        summary += f" [ID: {change.row_id}]"
    if change.change_type is ChangeType.MOVED and change.old_index is not None:
        summary += f" from {change.old_index}"

    if change.cell_changes:
        summary += f"\n  Cell changes: {len(change.cell_changes)}"
        for cell in change.cell_changes[:max_cells]:
            summary += f'\n    {cell.column}: "{cell.old_value}" -> "{cell.new_value}"'
        if len(change.cell_changes) > max_cells:
            summary += f"\n    ... and {len(change.cell_changes) - max_cells} more"

    return summary


def _display_name(label: str) -> str:
    return Path(label).name or label


# =============================================================================
# Generator
# =============================================================================


class ReportGenerator:
    """Renders DiffResults in the supported formats."""

    def __init__(self, options: ReportOptions | None = None):
        self.options = options or ReportOptions()
        self._renderers: dict[str, Callable[[DiffResult], str]] = {
            "console": self._console,
            "html": self._html,
            "json": self._json,
            "markdown": self._markdown,
        }

    def render(self, result: DiffResult, format: ReportFormat, output_path: Optional[Path | str] = None) -> str:
        """Render ``result``; optionally write the text to ``output_path``.

        Raises:
            ReportError: Unknown format or the output file cannot be written
        """
        renderer = self._renderers.get(format)
        if renderer is None:
            raise ReportError(f"Unsupported report format: {format}")

        text = renderer(result)

        if output_path is not None:
            try:
                write_text_atomic(output_path, text)
            except OSError as e:
                raise ReportError(f"Cannot write report to {output_path}: {e}") from e
            logger.info(f"Diff report written: {output_path}")

        return text

    def _shown_rows(self, result: DiffResult) -> list[RowChange]:
        return result.row_changes[: self.options.max_rows_to_show]

    def _metadata(self, result: DiffResult) -> dict:
        return {
            "generated_at": to_iso(result.timestamp),
            "generator": GENERATOR_NAME,
            "version": REPORT_VERSION,
            "mode": result.mode,
            "processing_ms": round(result.processing_ms, 3),
            "truncated": result.truncated,
        }

    # =========================================================================
    # Console
    # =========================================================================

    def _console(self, result: DiffResult) -> str:
        opts = self.options
        stats = result.statistics
        lines = [
            "=" * 80,
            opts.title,
            "=" * 80,
            f"{_display_name(result.source_files.old)} -> {_display_name(result.source_files.new)}",
            f"Mode: {result.mode}",
            f"Generated: {to_iso(result.timestamp)}",
        ]
        if result.truncated:
            lines.append("WARNING: row ceiling reached; this comparison is partial")
        lines.append("")

        if opts.include_statistics:
            lines.append("STATISTICS")
            lines.append("-" * 40)
            lines.append(format_diff_statistics(stats))
            lines.append("")

        if opts.include_schema_changes and result.schema_changes:
            lines.append("SCHEMA CHANGES")
            lines.append("-" * 40)
            for change in result.schema_changes:
                lines.append(f"{_MARKERS[change.change_type]} {change.change_type.value.upper()}: {change.column_name}")
                if change.old_index is not None:
                    lines.append(f"    Previous position: {change.old_index}")
                if change.new_index is not None:
                    lines.append(f"    New position: {change.new_index}")
            lines.append("")

        if opts.include_row_details and result.row_changes:
            shown = self._shown_rows(result)
            lines.append("ROW CHANGES")
            lines.append("-" * 40)
            lines.append(f"Showing {len(shown)} of {len(result.row_changes)} changes")
            lines.append("")
            for change in shown:
                lines.append(format_row_change(change))
                lines.append("")
            hidden = len(result.row_changes) - len(shown)
            if hidden > 0:
                lines.append(f"... and {hidden} more changes")
                lines.append("")

        if result.text_diff and result.mode == "text":
            lines.append("PATCH")
            lines.append("-" * 40)
            lines.append(result.text_diff.rstrip("\n"))
            lines.append("")

        lines.append("METADATA")
        lines.append("-" * 40)
        lines.append(f"Processing Time: {result.processing_ms:.1f}ms")
        lines.append(f"Generator: {GENERATOR_NAME} v{REPORT_VERSION}")
        return "\n".join(lines) + "\n"

    # =========================================================================
    # JSON
    # =========================================================================

    def _json(self, result: DiffResult) -> str:
        opts = self.options
        body = result.model_dump(mode="json")
        body["row_changes"] = body["row_changes"][: opts.max_rows_to_show] if opts.include_row_details else []
        if not opts.include_schema_changes:
            body["schema_changes"] = []
        if not opts.include_statistics:
            body.pop("statistics")

        report = {
            "metadata": self._metadata(result),
            "options": opts.model_dump(mode="json"),
            "diff_result": body,
        }
        return json.dumps(report, indent=2, sort_keys=True, ensure_ascii=False) + "\n"

    # =========================================================================
    # Markdown
    # =========================================================================

    def _markdown(self, result: DiffResult) -> str:
        opts = self.options
        stats = result.statistics
        old_name = _display_name(result.source_files.old)
        new_name = _display_name(result.source_files.new)

        lines = [
            f"# {opts.title}",
            "",
            opts.description,
            "",
            f"**Comparison:** `{old_name}` -> `{new_name}`",
            f"**Mode:** {result.mode}",
            f"**Generated:** {to_iso(result.timestamp)}",
            "",
        ]
        if result.truncated:
            lines += ["> **Partial result:** the row ceiling was reached.", ""]

        if opts.include_statistics:
            lines += [
                "## Statistics",
                "",
                "| Metric | Value |",
                "|--------|-------|",
                f"| Change Rate | {stats.change_percentage:.1f}% |",
                f"| Total Rows | {stats.old_rows} -> {stats.new_rows} |",
                f"| Total Columns | {stats.old_columns} -> {stats.new_columns} |",
                f"| Added Rows | {stats.changes.added} |",
                f"| Removed Rows | {stats.changes.removed} |",
                f"| Modified Rows | {stats.changes.modified} |",
                f"| Moved Rows | {stats.changes.moved} |",
                f"| Unchanged Rows | {stats.changes.unchanged} |",
                f"| Affected Columns | {len(stats.affected_columns)} |",
                "",
            ]
            if stats.most_changed_columns:
                lines += ["### Most Changed Columns", "", "| Column | Changes | Percentage |", "|--------|---------|------------|"]
                for col in stats.most_changed_columns:
                    lines.append(f"| {_md(col.column)} | {col.change_count} | {col.change_percentage:.1f}% |")
                lines.append("")

        if opts.include_schema_changes and result.schema_changes:
            lines += ["## Schema Changes", "", "| Change | Column | Old Position | New Position |", "|--------|--------|--------------|--------------|"]
            for change in result.schema_changes:
                old = "" if change.old_index is None else str(change.old_index)
                new = "" if change.new_index is None else str(change.new_index)
                lines.append(f"| {change.change_type.value} | {_md(change.column_name)} | {old} | {new} |")
            lines.append("")

        if opts.include_row_details and result.row_changes:
            shown = self._shown_rows(result)
            lines += [
                "## Row Changes",
                "",
                f"Showing {len(shown)} of {len(result.row_changes)} changes.",
                "",
                "| Row | Change | ID | Cell Changes |",
                "|-----|--------|----|--------------|",
            ]
            for change in shown:
                cells = "<br>".join(
                    f"{_md(cell.column)}: `{_md(cell.old_value)}` -> `{_md(cell.new_value)}`" for cell in change.cell_changes
                )
                lines.append(f"| {change.row_index} | {change.change_type.value} | {_md(change.row_id or '')} | {cells} |")
            hidden = len(result.row_changes) - len(shown)
            if hidden > 0:
                lines += ["", f"_... and {hidden} more changes_"]
            lines.append("")

        if result.text_diff:
            lines += ["## Patch", "", "```diff", result.text_diff.rstrip("\n"), "```", ""]

        lines += ["---", "", f"_Generated by {GENERATOR_NAME} v{REPORT_VERSION}_"]
        return "\n".join(lines) + "\n"

    # =========================================================================
    # HTML
    # =========================================================================

    def _html(self, result: DiffResult) -> str:
        opts = self.options
        stats = result.statistics
        dark = opts.theme == "dark"
        esc = html.escape

        palette = {
            "bg": "#1a1a1a" if dark else "#ffffff",
            "fg": "#e0e0e0" if dark else "#333333",
            "accent": "#4a9eff" if dark else "#2563eb",
            "panel": "#2a2a2a" if dark else "#f8f9fa",
            "rule": "#333333" if dark else "#dddddd",
            "muted": "#888888" if dark else "#666666",
            "added": "#1a3d1a" if dark else "#d4edda",
            "removed": "#3d1a1a" if dark else "#f8d7da",
            "modified": "#3d3d1a" if dark else "#fff3cd",
            "moved": "#1a1a3d" if dark else "#d1ecf1",
        }
        css = f"""
body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; margin: 0; padding: 20px; background: {palette['bg']}; color: {palette['fg']}; }}
.container {{ max-width: 1200px; margin: 0 auto; }}
h1, h2 {{ color: {palette['accent']}; }}
.file-info, .metadata, .stat-card {{ background: {palette['panel']}; padding: 12px; border-radius: 6px; }}
.stats-grid {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(180px, 1fr)); gap: 12px; }}
.stat-value {{ font-size: 1.8em; font-weight: bold; color: {palette['accent']}; }}
.stat-label, .muted {{ color: {palette['muted']}; }}
.change-item {{ margin: 8px 0; padding: 8px; border-radius: 4px; }}
.change-added {{ background: {palette['added']}; border-left: 4px solid #28a745; }}
.change-removed {{ background: {palette['removed']}; border-left: 4px solid #dc3545; }}
.change-modified {{ background: {palette['modified']}; border-left: 4px solid #ffc107; }}
.change-moved {{ background: {palette['moved']}; border-left: 4px solid #17a2b8; }}
.change-type {{ font-weight: bold; text-transform: uppercase; font-size: 0.8em; }}
.old-value {{ color: #dc3545; text-decoration: line-through; }}
.new-value {{ color: #28a745; font-weight: bold; }}
table {{ width: 100%; border-collapse: collapse; }}
th, td {{ padding: 6px 10px; text-align: left; border-bottom: 1px solid {palette['rule']}; }}
pre {{ background: {palette['panel']}; padding: 12px; overflow-x: auto; }}
""".strip()

        parts = [
            "<!DOCTYPE html>",
            '<html lang="en">',
            "<head>",
            '<meta charset="UTF-8">',
            f"<title>{esc(opts.title)}</title>",
            f"<style>\n{css}\n</style>",
            "</head>",
            "<body>",
            '<div class="container">',
            f"<h1>{esc(opts.title)}</h1>",
            f'<p class="muted">{esc(opts.description)}</p>',
            '<div class="file-info">',
            f"<strong>Comparison:</strong> {esc(_display_name(result.source_files.old))} &rarr; "
            f"{esc(_display_name(result.source_files.new))}<br>",
            f"<strong>Mode:</strong> {esc(result.mode)}<br>",
            f"<strong>Generated:</strong> {esc(to_iso(result.timestamp))}",
            "</div>",
        ]
        if result.truncated:
            parts.append('<p class="change-item change-modified">Partial result: the row ceiling was reached.</p>')

        if opts.include_statistics:
            cards = [
                (f"{stats.change_percentage:.1f}%", "Change Rate"),
                (str(stats.changes.added), "Added Rows"),
                (str(stats.changes.removed), "Removed Rows"),
                (str(stats.changes.modified), "Modified Rows"),
                (str(stats.changes.moved), "Moved Rows"),
                (f"{stats.old_rows} &rarr; {stats.new_rows}", "Total Rows"),
                (str(len(stats.affected_columns)), "Affected Columns"),
            ]
            parts.append("<h2>Statistics</h2>")
            parts.append('<div class="stats-grid">')
            for value, label in cards:
                parts.append(f'<div class="stat-card"><div class="stat-value">{value}</div><div class="stat-label">{label}</div></div>')
            parts.append("</div>")
            if stats.most_changed_columns:
                parts.append("<h3>Most Changed Columns</h3>")
                parts.append("<table><thead><tr><th>Column</th><th>Changes</th><th>Percentage</th></tr></thead><tbody>")
                for col in stats.most_changed_columns:
                    parts.append(
                        f"<tr><td>{esc(col.column)}</td><td>{col.change_count}</td><td>{col.change_percentage:.1f}%</td></tr>"
                    )
                parts.append("</tbody></table>")

        if opts.include_schema_changes and result.schema_changes:
            parts.append("<h2>Schema Changes</h2>")
            for change in result.schema_changes:
                where = ""
                if change.old_index is not None:
                    where += f" (was at position {change.old_index})"
                if change.new_index is not None:
                    where += f" (now at position {change.new_index})"
                parts.append(
                    f'<div class="change-item change-{change.change_type.value}">'
                    f'<span class="change-type">{change.change_type.value}</span> '
                    f"<strong>{esc(change.column_name)}</strong>{where}</div>"
                )

        if opts.include_row_details and result.row_changes:
            shown = self._shown_rows(result)
            parts.append("<h2>Row Changes</h2>")
            parts.append(f'<p class="muted">Showing {len(shown)} of {len(result.row_changes)} changes</p>')
            for change in shown:
                row_id = f" [ID: {esc(change.row_id)}]" if change.row_id else ""
                parts.append(f'<div class="change-item change-{change.change_type.value}">')
                parts.append(
                    f'<div><span class="change-type">{change.change_type.value}</span> '
                    f"<strong>Row {change.row_index}</strong>{row_id}</div>"
                )
                for cell in change.cell_changes:
                    parts.append(
                        f"<div><strong>{esc(cell.column)}:</strong> "
                        f'<span class="old-value">{esc(cell.old_value)}</span> &rarr; '
                        f'<span class="new-value">{esc(cell.new_value)}</span></div>'
                    )
                parts.append("</div>")
            hidden = len(result.row_changes) - len(shown)
            if hidden > 0:
                parts.append(f'<p class="muted">... and {hidden} more changes</p>')

        if result.text_diff:
            parts.append("<h2>Patch</h2>")
            parts.append(f"<pre>{esc(result.text_diff)}</pre>")

        parts += [
            '<div class="metadata">',
            f"<p><strong>Processing Time:</strong> {result.processing_ms:.1f}ms</p>",
            f"<p><strong>Generator:</strong> {esc(GENERATOR_NAME)} v{REPORT_VERSION}</p>",
            "</div>",
            "</div>",
            "</body>",
            "</html>",
        ]
        return "\n".join(parts) + "\n"


def _md(value: str) -> str:
    """Escape table-breaking characters for Markdown cells."""
    return value.replace("|", "\\|").replace("\n", " ")
