"""Invalid rows scenario: a contact sheet with known defects.

Defects (file line numbers, header is line 1):
- line 2: email "not-an-email"       -> INVALID_EMAIL_FORMAT
- line 3: latitude "95.0"            -> LATITUDE_OUT_OF_RANGE
- line 4: one field short            -> COLUMN_COUNT_MISMATCH
"""

from pathlib import Path
from typing import Union

from synthetic import CONTACT_COLUMNS, BookstoreSynthOptions, build_rows, render_csv


def make_file(
    root: Union[str, Path],
    *,
    seed: int = 42,
    name: str = "broken.csv",
) -> Path:
    """Write the defective contact sheet under ``root`` and return its path."""
    rows = build_rows(BookstoreSynthOptions(n_rows=4, seed=seed))
    rows[0]["email"] = "not-an-email"
    rows[1]["latitude"] = "95.0"

    lines = render_csv(rows, CONTACT_COLUMNS).splitlines()
    # Drop the trailing longitude field of the third data row
    lines[3] = lines[3].rsplit(",", 1)[0]

    path = Path(root) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path
