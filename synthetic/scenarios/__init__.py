"""Scenario builders for synthetic tabular files.

Pre-configured files for common test cases:

- happy_path: Valid contact sheet, passes every default validator
- invalid_rows: Contact sheet with a bad email, an out-of-range latitude and
  a short row
- schema_drift: Old/new pair where columns were reordered and one added

Example:
    >>> from synthetic.scenarios import happy_path
    >>> path = happy_path.make_file(root=tmp_path, n_rows=20)
"""

from . import happy_path, invalid_rows, schema_drift

__all__ = [
    "happy_path",
    "invalid_rows",
    "schema_drift",
]
