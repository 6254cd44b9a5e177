"""Declared table shapes and schema conformance checks.

A TableSchema names the columns a file may carry, which of them are
required, and per-column value rules (regex pattern, minimum length, uri or
email format). Header-level problems (missing required column, undeclared
column) are reported once; value problems once per offending cell.
"""

from __future__ import annotations

import re
from typing import Dict, Iterator, List, Literal, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Severity, ValidationIssue
from .validators import EMAIL_PATTERN

__all__ = ["ColumnRule", "TableSchema", "check_headers", "check_record", "bookstore_schema"]


class ColumnRule(BaseModel):
    """Value rule for one column."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pattern: Optional[str] = Field(default=None, description="Full-match regular expression")
    min_length: Optional[int] = Field(default=None, ge=0)
    format: Optional[Literal["uri", "email"]] = None
    allow_empty: bool = Field(default=False, description="Empty values skip pattern and format checks")

    @field_validator("pattern")
    @classmethod
    def compile_pattern(cls, v: Optional[str]) -> Optional[str]:
        """Reject patterns that do not compile."""
        if v is not None:
            re.compile(v)
        return v


class TableSchema(BaseModel):
    """Declared shape of a delimited file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    columns: Dict[str, ColumnRule] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)
    allow_extra_columns: bool = True


def _is_uri(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


def check_headers(schema: TableSchema, headers: List[str]) -> Iterator[ValidationIssue]:
    """Header-level conformance: required columns present, no undeclared columns."""
    present = set(headers)
    for column in schema.required:
        if column not in present:
            yield ValidationIssue(
                type="schema",
                severity=Severity.ERROR,
                message=f'Schema validation failed: missing required column "{column}"',
                column=column,
                code="SCHEMA_VALIDATION_FAILED",
            )

    if not schema.allow_extra_columns:
        for column in headers:
            if column and column not in schema.columns:
                yield ValidationIssue(
                    type="schema",
                    severity=Severity.ERROR,
                    message=f'Schema validation failed: column "{column}" is not declared',
                    column=column,
                    code="SCHEMA_VALIDATION_FAILED",
                )


def check_record(schema: TableSchema, record: Mapping[str, str], row_number: int) -> Iterator[ValidationIssue]:
    """Value-level conformance for one record."""
    for column, rule in schema.columns.items():
        if column not in record:
            continue
        value = record[column]
        if value == "" and rule.allow_empty:
            continue

        problem: Optional[str] = None
        expected: Optional[str] = None
        if rule.min_length is not None and len(value) < rule.min_length:
            problem = f"must have at least {rule.min_length} character(s)"
            expected = f"minLength {rule.min_length}"
        elif rule.pattern is not None and not re.fullmatch(rule.pattern, value):
            problem = f'must match pattern "{rule.pattern}"'
            expected = rule.pattern
        elif rule.format == "uri" and not _is_uri(value):
            problem = 'must match format "uri"'
            expected = "uri"
        elif rule.format == "email" and not EMAIL_PATTERN.match(value):
            problem = 'must match format "email"'
            expected = "email"

        if problem is not None:
            yield ValidationIssue(
                type="schema",
                severity=Severity.ERROR,
                message=f"Schema validation failed: {column} {problem}",
                row=row_number,
                column=column,
                value=value,
                expected=expected,
                code="SCHEMA_VALIDATION_FAILED",
            )


# =============================================================================
# Bookstore shape
# =============================================================================

_DECIMAL = r"-?\d+(\.\d+)?"
_OPTIONAL_REVIEW_RATING = r"([1-5](\.\d+)?)?"


def bookstore_schema() -> TableSchema:
    """Shape of the bookstore directory file.

    Name, category, city and full address are required and non-empty;
    coordinates are decimal strings; rating is 0-5 and reviews a count; the
    per-review ratings may be empty. Undeclared columns are rejected.
    """
    uri = ColumnRule(format="uri", allow_empty=True)
    text = ColumnRule()
    non_empty = ColumnRule(min_length=1)

    columns: Dict[str, ColumnRule] = {
        "name": non_empty,
        "site": uri,
        "category": non_empty,
        "description": text,
        "phone": text,
        "full_address": non_empty,
        "street": text,
        "city": non_empty,
        "postal_code": text,
        "state": text,
        "latitude": ColumnRule(pattern=_DECIMAL),
        "longitude": ColumnRule(pattern=_DECIMAL),
        "rating": ColumnRule(pattern=r"[0-5](\.\d+)?", allow_empty=True),
        "reviews": ColumnRule(pattern=r"\d+", allow_empty=True),
        "photo": uri,
        "street_view": uri,
        "working_hours": text,
        "business_status": text,
        "location_link": uri,
        "place_id": text,
    }
    for day in ("mon", "tues", "wed", "thur", "fri", "sat", "sun"):
        columns[f"{day}_hours"] = text
    for n in range(1, 6):
        columns[f"review_{n}_author"] = text
        columns[f"review_{n}_rating"] = ColumnRule(pattern=_OPTIONAL_REVIEW_RATING)
        columns[f"review_{n}_time"] = text
        columns[f"review_{n}_text"] = text

    return TableSchema(
        columns=columns,
        required=["name", "category", "city", "full_address"],
        allow_extra_columns=False,
    )
