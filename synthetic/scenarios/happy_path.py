"""Happy path scenario: a valid contact sheet.

Every row carries a well-formed email, phone, website and in-range
coordinates, so validation reports no errors and no warnings.
"""

from pathlib import Path
from typing import Union

from synthetic import CONTACT_COLUMNS, BookstoreSynthOptions, build_rows, write_csv_file


def make_file(
    root: Union[str, Path],
    *,
    n_rows: int = 10,
    seed: int = 42,
    name: str = "stores.csv",
) -> Path:
    """Write a valid contact sheet under ``root`` and return its path."""
    rows = build_rows(BookstoreSynthOptions(n_rows=n_rows, seed=seed))
    return write_csv_file(Path(root) / name, rows, CONTACT_COLUMNS)
