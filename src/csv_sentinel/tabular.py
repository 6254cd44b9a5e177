"""Delimited-file reading shared by validation and diffing.

Parses a file into a header row plus record rows with the stdlib csv module.
Undecodable bytes are replaced with U+FFFD rather than failing the read so the
validation pipeline can report them as an encoding warning.

Rows shorter than the header are padded with empty strings and longer rows
are cut to the header width in ``records``; the original widths are kept in
``row_widths`` so callers can flag the mismatch.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
import io
import logging
from pathlib import Path

from .config import DialectConfig
from .exceptions import TabularReadError

__all__ = ["TabularData", "read_table", "read_text", "parse_table"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TabularData:
    """Parsed delimited file.

    Attributes:
        headers: Header row, in file order
        records: One header->value mapping per data row
        row_widths: Field count of each data row as it appeared in the file
        truncated: True when a row ceiling cut the read short
        file_size: Size of the source in bytes (0 for in-memory text)
    """

    headers: list[str]
    records: list[dict[str, str]] = field(default_factory=list)
    row_widths: list[int] = field(default_factory=list)
    truncated: bool = False
    file_size: int = 0

    @property
    def row_count(self) -> int:
        return len(self.records)

    def column(self, name: str) -> list[str]:
        return [record.get(name, "") for record in self.records]


def _reader_kwargs(dialect: DialectConfig) -> dict:
    kwargs = {"delimiter": dialect.delimiter, "quotechar": dialect.quote_char}
    if dialect.escape_char and dialect.escape_char != dialect.quote_char:
        kwargs["escapechar"] = dialect.escape_char
        kwargs["doublequote"] = False
    else:
        kwargs["doublequote"] = True
    return kwargs


def _is_blank_line(row: list[str]) -> bool:
    return not row or (len(row) == 1 and not row[0].strip())


def parse_table(text: str, dialect: DialectConfig | None = None, max_rows: int | None = None) -> TabularData:
    """Parse delimited text into TabularData.

    Args:
        text: Full file contents
        dialect: Delimiter/quote/escape settings (default: comma, double quote)
        max_rows: Optional ceiling on data rows; extra rows set ``truncated``

    Raises:
        TabularReadError: If the csv module rejects the input
    """
    dialect = dialect or DialectConfig()
    reader = csv.reader(io.StringIO(text, newline=""), **_reader_kwargs(dialect))

    headers: list[str] | None = None
    records: list[dict[str, str]] = []
    widths: list[int] = []
    truncated = False

    try:
        for row in reader:
            if dialect.skip_empty_lines and _is_blank_line(row):
                continue
            if dialect.trim_values:
                row = [value.strip() for value in row]

            if headers is None:
                headers = row
                continue

            if max_rows is not None and len(records) >= max_rows:
                truncated = True
                break

            widths.append(len(row))
            padded = row + [""] * (len(headers) - len(row))
            records.append(dict(zip(headers, padded[: len(headers)])))
    except csv.Error as e:
        raise TabularReadError(f"Malformed delimited data at line {reader.line_num}: {e}") from e

    if truncated:
        logger.warning(f"Row ceiling of {max_rows} reached; remaining rows were not read")

    return TabularData(headers=headers or [], records=records, row_widths=widths, truncated=truncated)


def read_text(path: Path | str, dialect: DialectConfig | None = None) -> str:
    """Read a file's text with the dialect encoding, replacing undecodable bytes.

    Raises:
        TabularReadError: If the file cannot be read
    """
    dialect = dialect or DialectConfig()
    path = Path(path)
    try:
        with open(path, "r", encoding=dialect.encoding, errors="replace", newline="") as f:
            text = f.read()
    except (OSError, LookupError) as e:
        raise TabularReadError(f"Cannot read {path}: {e}") from e
    # Byte order mark
    return text.removeprefix("\ufeff")


def read_table(path: Path | str, dialect: DialectConfig | None = None, max_rows: int | None = None) -> TabularData:
    """Read and parse a delimited file.

    Args:
        path: File to read
        dialect: Delimiter/quote/escape/encoding settings
        max_rows: Optional ceiling on data rows

    Returns:
        TabularData with ``file_size`` set from the file on disk

    Raises:
        TabularReadError: If the file cannot be read or parsed
    """
    path = Path(path)
    text = read_text(path, dialect)
    table = parse_table(text, dialect, max_rows=max_rows)
    try:
        size = path.stat().st_size
    except OSError:
        size = len(text.encode("utf-8"))
    return TabularData(
        headers=table.headers,
        records=table.records,
        row_widths=table.row_widths,
        truncated=table.truncated,
        file_size=size,
    )
