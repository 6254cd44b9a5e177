"""Schema drift scenario: an old/new pair with reordered and added columns.

Old header: name,address,phone
New header: name,phone,address,website

Relative to the old file, ``address`` moves from index 1 to 2, ``phone``
from 2 to 1, and ``website`` is added at index 3. Rows keep their values so
a structured diff keyed on ``name`` reports no modified rows.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Union


@dataclass(frozen=True)
class DriftPair:
    old_path: Path
    new_path: Path


def make_pair(root: Union[str, Path]) -> DriftPair:
    """Write ``old.csv`` and ``new.csv`` under ``root``."""
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)

    old_path = root / "old.csv"
    old_path.write_text(
        "name,address,phone\n"
        "Paper Reads,1 Main St,555-0100\n"
        "Quiet Pages,2 Oak Ave,555-0101\n",
        encoding="utf-8",
    )

    new_path = root / "new.csv"
    new_path.write_text(
        "name,phone,address,website\n"
        "Paper Reads,555-0100,1 Main St,\n"
        "Quiet Pages,555-0101,2 Oak Ave,\n",
        encoding="utf-8",
    )
    return DriftPair(old_path=old_path, new_path=new_path)
