"""Synthetic data helpers for csv-sentinel.

Public API to generate small, deterministic tabular inputs:
- Bookstore directory rows (bookstore_synth)
- Delimited file writer honouring a dialect (bookstore_synth)
- Scenario builders under ``synthetic.scenarios``

These utilities are intended for demos, tests, and quick E2E exercises.
"""

from __future__ import annotations

from .bookstore_synth import (
    BOOKSTORE_COLUMNS,
    CONTACT_COLUMNS,
    BookstoreSynthOptions,
    build_rows,
    render_csv,
    write_csv_file,
)

__all__ = [
    "BOOKSTORE_COLUMNS",
    "CONTACT_COLUMNS",
    "BookstoreSynthOptions",
    "build_rows",
    "render_csv",
    "write_csv_file",
]
