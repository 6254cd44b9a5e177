"""Deterministic bookstore directory rows.

Rows are generated from a seeded ``random.Random`` so the same options always
produce the same file. Two column layouts are provided:

- BOOKSTORE_COLUMNS: a subset of the bookstore directory shape that passes
  ``bookstore_schema()``
- CONTACT_COLUMNS: a small contact sheet (name, email, phone, website,
  latitude, longitude) exercising the default field validators

Example:
    >>> rows = build_rows(BookstoreSynthOptions(n_rows=3, seed=7))
    >>> write_csv_file(tmp_path / "stores.csv", rows, CONTACT_COLUMNS)
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
import io
from pathlib import Path
import random
from typing import Dict, List, Optional, Sequence, Union

BOOKSTORE_COLUMNS: List[str] = [
    "name",
    "site",
    "category",
    "phone",
    "full_address",
    "city",
    "postal_code",
    "latitude",
    "longitude",
    "rating",
    "reviews",
]

CONTACT_COLUMNS: List[str] = ["name", "email", "phone", "website", "latitude", "longitude"]

_PREFIXES = ["Old", "Blue", "Corner", "Paper", "Quiet", "North", "Little", "Lantern"]
_SUFFIXES = ["Books", "Pages", "Bookshop", "Reads", "Library Cafe", "Book Barn"]
_CITIES = [
    ("Portland", 45.5152, -122.6784),
    ("Austin", 30.2672, -97.7431),
    ("Boston", 42.3601, -71.0589),
    ("Denver", 39.7392, -104.9903),
]
_STREETS = ["Main St", "Oak Ave", "Elm St", "River Rd", "Market St"]


@dataclass(frozen=True)
class BookstoreSynthOptions:
    """Options for synthetic row generation.

    Attributes:
        n_rows: Number of rows to generate
        seed: Random seed for deterministic output
        city: Restrict rows to one city (default: cycle through all)
    """

    n_rows: int = 10
    seed: int = 42
    city: Optional[str] = None


def build_rows(options: BookstoreSynthOptions = BookstoreSynthOptions()) -> List[Dict[str, str]]:
    """Generate rows carrying every column of both layouts.

    Names are unique within one call.
    """
    rng = random.Random(options.seed)
    cities = [c for c in _CITIES if options.city is None or c[0] == options.city] or _CITIES

    rows: List[Dict[str, str]] = []
    used: set[str] = set()
    for i in range(options.n_rows):
        city, lat, lon = cities[i % len(cities)]
        name = f"{rng.choice(_PREFIXES)} {rng.choice(_SUFFIXES)}"
        if name in used:
            name = f"{name} {i + 1}"
        used.add(name)

        slug = name.lower().replace(" ", "")
        street = f"{rng.randint(1, 999)} {rng.choice(_STREETS)}"
        postal = f"{rng.randint(10000, 99999)}"
        rows.append(
            {
                "name": name,
                "site": f"https://{slug}.example.com",
                "website": f"https://{slug}.example.com",
                "email": f"hello@{slug}.example.com",
                "category": "Book store",
                "phone": f"+1 {rng.randint(200, 999)}-{rng.randint(200, 999)}-{rng.randint(1000, 9999)}",
                "full_address": f"{street}, {city}, {postal}",
                "city": city,
                "postal_code": postal,
                "latitude": f"{lat + rng.uniform(-0.05, 0.05):.4f}",
                "longitude": f"{lon + rng.uniform(-0.05, 0.05):.4f}",
                "rating": f"{rng.uniform(3.0, 5.0):.1f}",
                "reviews": str(rng.randint(0, 900)),
            }
        )
    return rows


def render_csv(
    rows: Sequence[Dict[str, str]],
    columns: Sequence[str],
    delimiter: str = ",",
) -> str:
    """Render rows as delimited text with a header line (``\\n`` line endings)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([row.get(column, "") for column in columns])
    return buffer.getvalue()


def write_csv_file(
    path: Union[str, Path],
    rows: Sequence[Dict[str, str]],
    columns: Sequence[str],
    delimiter: str = ",",
) -> Path:
    """Write rows to ``path``, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_csv(rows, columns, delimiter), encoding="utf-8")
    return path
