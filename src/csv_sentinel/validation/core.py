"""Validation pipeline: is a file fit for downstream use?

Stages, in order:
    1. Read and parse (failure -> critical FILE_READ_ERROR)
    2. Zero data records -> critical NO_DATA, stop
    3. Structural checks: empty headers, duplicate headers, column-count
       mismatches, suspicious encoding
    4. Schema conformance against a declared TableSchema (optional)
    5. Registered field validators, one call per (cell, validator in scope)
    6. Metadata: inferred column types, empty and duplicate rows (pandas)

An error cap stops *collecting* errors once reached; the rest of the file is
still read and a warning records that the cap was hit. A validator that
raises is reported as a warning naming it and never aborts validation.

Validation holds no state between calls, so two runs over an unchanged file
yield identical errors and warnings.

Example:
--------
>>> pipeline = ValidationPipeline(ValidationConfig(max_errors=50))
>>> result = await pipeline.validate_file("data/bookstores.csv")
>>> result.is_valid, len(result.errors)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import re
from typing import Any, Optional

import pandas as pd

from ..config import DialectConfig, ValidationConfig
from ..exceptions import TabularReadError
from ..notifier import Notifier
from ..tabular import TabularData, read_table
from ..utils import time_block
from .models import (
    Severity,
    ValidationIssue,
    ValidationMetadata,
    ValidationPerformance,
    ValidationResult,
    ValidationWarning,
)
from .schema import TableSchema, bookstore_schema, check_headers, check_record
from .validators import EMAIL_PATTERN, FieldValidator, ValidatorRegistry, default_validators

__all__ = ["ValidationPipeline", "infer_column_type", "classify_value", "TYPE_ORDER"]

logger = logging.getLogger(__name__)

# Classification precedence; also breaks ties in the majority vote.
TYPE_ORDER = ("number", "boolean", "date", "email", "url", "string")

_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_BOOLEAN = re.compile(r"^(true|false|yes|no|y|n)$", re.IGNORECASE)
_DATE = re.compile(r"^(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4})")
_URL = re.compile(r"^https?://", re.IGNORECASE)
# Replacement character from undecodable bytes, or UTF-8 read as Latin-1
_SUSPECT_ENCODING = re.compile("\ufffd|[\u00c2\u00c3][\u0080-\u00bf]")


def classify_value(value: str) -> str:
    """Classify one non-empty value by pattern precedence."""
    text = value.strip()
    if _NUMBER.match(text):
        return "number"
    if _BOOLEAN.match(text):
        return "boolean"
    if _DATE.match(text):
        return "date"
    if EMAIL_PATTERN.match(text):
        return "email"
    if _URL.match(text):
        return "url"
    return "string"


def infer_column_type(values: pd.Series, sample_size: int = 100) -> str:
    """Majority type over the first ``sample_size`` non-empty values; "empty" if none."""
    sample = values[values.str.strip() != ""].head(sample_size)
    if sample.empty:
        return "empty"
    counts = sample.map(classify_value).value_counts()
    return max(TYPE_ORDER, key=lambda t: (int(counts.get(t, 0)), -TYPE_ORDER.index(t)))


class _FindingCollector:
    """Accumulates findings and enforces the error cap."""

    def __init__(self, max_errors: int, enable_warnings: bool, strict: bool):
        self.max_errors = max_errors
        self.enable_warnings = enable_warnings
        self.strict = strict
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationWarning] = []
        # Set once a finding is dropped or rows are left unchecked at the cap
        self.capped = False

    @property
    def full(self) -> bool:
        return len(self.errors) >= self.max_errors

    def stop(self) -> bool:
        """True when the cap is reached; remaining rows are then skipped."""
        if self.full:
            self.capped = True
        return self.full

    def add(self, issue: ValidationIssue) -> None:
        if self.full:
            self.capped = True
            return
        if self.strict and issue.severity is Severity.WARNING:
            issue = issue.model_copy(update={"severity": Severity.ERROR})
        self.errors.append(issue)

    def warn(self, warning: ValidationWarning) -> None:
        if self.enable_warnings:
            self.warnings.append(warning)


class ValidationPipeline:
    """Structural, schema and field-level validation of delimited files."""

    def __init__(
        self,
        config: ValidationConfig | None = None,
        dialect: DialectConfig | None = None,
        schema: TableSchema | None = None,
        notifier: Notifier | None = None,
    ):
        self.config = config or ValidationConfig()
        self.dialect = dialect or DialectConfig()
        self.notifier = notifier or Notifier()
        if schema is None and self.config.bookstore_schema:
            schema = bookstore_schema()
        self.schema = schema
        self.validators = ValidatorRegistry()
        self._runs = 0
        self._last_result: ValidationResult | None = None

        if self.config.default_validators:
            for validator in default_validators():
                self.validators.register(validator)

    # =========================================================================
    # Validator registry
    # =========================================================================

    def register_custom_validator(self, validator: FieldValidator) -> None:
        """Add or replace a validator by name."""
        self.validators.register(validator)
        logger.debug(f"Validator registered: {validator.name}")

    def unregister_custom_validator(self, name: str) -> bool:
        removed = self.validators.unregister(name)
        if removed:
            logger.debug(f"Validator unregistered: {name}")
        return removed

    def get_validator_stats(self) -> list[dict[str, Any]]:
        """Name, description and column scope of each registered validator."""
        return [
            {
                "name": v.name,
                "description": v.description,
                "columns": sorted(v.columns) if v.columns is not None else None,
            }
            for v in self.validators
        ]

    # =========================================================================
    # Entry points
    # =========================================================================

    async def validate_file(self, path: Path | str) -> ValidationResult:
        """Validate a file without blocking the event loop."""
        await self.notifier.publish("validation.started", path=str(path))
        result = await asyncio.to_thread(self.validate_path, path)
        topic = "validation.completed" if result.is_valid else "validation.failed"
        await self.notifier.publish(topic, path=str(path), summary=result.summary())
        return result

    def validate_path(self, path: Path | str) -> ValidationResult:
        """Synchronous validation of a file on disk."""
        path = Path(path)
        with time_block(f"Parsing {path.name}", logger) as parse_timing:
            try:
                table = read_table(path, self.dialect)
            except TabularReadError as e:
                logger.warning(f"Validation of {path} could not read the file: {e}")
                result = ValidationResult(
                    is_valid=False,
                    file_path=str(path),
                    errors=[
                        ValidationIssue(
                            type="structure",
                            severity=Severity.CRITICAL,
                            message=f"Failed to validate file: {e}",
                            code="FILE_READ_ERROR",
                        )
                    ],
                )
                self._record(result)
                return result

        return self.validate_table(table, file_path=str(path), parse_ms=parse_timing["elapsed_ms"])

    def validate_table(self, table: TabularData, file_path: str | None = None, parse_ms: float = 0.0) -> ValidationResult:
        """Validate already-parsed data."""
        if not table.headers or table.row_count == 0:
            result = ValidationResult(
                is_valid=False,
                file_path=file_path,
                headers=table.headers or None,
                row_count=0,
                errors=[
                    ValidationIssue(
                        type="structure",
                        severity=Severity.CRITICAL,
                        message="No data records found",
                        code="NO_DATA",
                    )
                ],
            )
            self._record(result)
            return result

        collector = _FindingCollector(self.config.max_errors, self.config.enable_warnings, self.config.strict_mode)

        with time_block("Validation", logger) as timing:
            self._check_structure(table, collector)
            if self.schema is not None:
                self._check_schema(table, collector)
            self._run_validators(table, collector)
            metadata = self._build_metadata(table)

        if collector.capped:
            # Recorded even when other warnings are disabled
            collector.warnings.append(
                ValidationWarning(
                    type="performance",
                    message=f"Validation stopped after {self.config.max_errors} errors. There may be additional issues.",
                    suggestion="Fix current errors and re-validate",
                )
            )

        performance = None
        if self.config.performance_tracking:
            performance = ValidationPerformance(
                parse_ms=parse_ms,
                validation_ms=timing["elapsed_ms"],
                total_ms=parse_ms + timing["elapsed_ms"],
            )

        result = ValidationResult(
            is_valid=not any(issue.blocks_validity for issue in collector.errors),
            file_path=file_path,
            headers=list(table.headers),
            row_count=table.row_count,
            errors=collector.errors,
            warnings=collector.warnings,
            metadata=metadata,
            performance=performance,
        )
        self._record(result)
        return result

    def _record(self, result: ValidationResult) -> None:
        self._runs += 1
        self._last_result = result
        level = logging.INFO if result.is_valid else logging.WARNING
        logger.log(level, f"Validated {result.file_path}: valid={result.is_valid}, errors={result.error_count}, warnings={len(result.warnings)}")

    # =========================================================================
    # Stages
    # =========================================================================

    def _check_structure(self, table: TabularData, collector: _FindingCollector) -> None:
        for index, header in enumerate(table.headers):
            if not header.strip():
                collector.add(
                    ValidationIssue(
                        type="structure",
                        severity=Severity.ERROR,
                        message=f"Empty header at column {index + 1}",
                        column=str(index + 1),
                        code="EMPTY_HEADER",
                    )
                )

        counts: dict[str, int] = {}
        for header in table.headers:
            counts[header] = counts.get(header, 0) + 1
        for header, count in counts.items():
            if count > 1 and header.strip():
                collector.add(
                    ValidationIssue(
                        type="structure",
                        severity=Severity.ERROR,
                        message=f'Duplicate header: "{header}" appears {count} times',
                        column=header,
                        code="DUPLICATE_HEADER",
                    )
                )

        expected = len(table.headers)
        for index, width in enumerate(table.row_widths):
            if width != expected:
                collector.add(
                    ValidationIssue(
                        type="structure",
                        severity=Severity.ERROR,
                        message=f"Row has {width} fields, expected {expected}",
                        row=index + 2,
                        value=str(width),
                        expected=str(expected),
                        code="COLUMN_COUNT_MISMATCH",
                    )
                )

        for index, record in enumerate(table.records):
            for column, value in record.items():
                if _SUSPECT_ENCODING.search(value):
                    collector.warn(
                        ValidationWarning(
                            type="data_quality",
                            message=f'Potential encoding issue in field "{column}"',
                            row=index + 2,
                            column=column,
                            value=value,
                            suggestion="Check file encoding",
                        )
                    )

    def _check_schema(self, table: TabularData, collector: _FindingCollector) -> None:
        for issue in check_headers(self.schema, table.headers):
            collector.add(issue)
        for index, record in enumerate(table.records):
            if collector.stop():
                return
            for issue in check_record(self.schema, record, index + 2):
                collector.add(issue)

    def _run_validators(self, table: TabularData, collector: _FindingCollector) -> None:
        if not len(self.validators):
            return

        columns = list(dict.fromkeys(table.headers))
        scoped = {column: self.validators.for_column(column) for column in columns}

        for index, record in enumerate(table.records):
            if collector.stop():
                return
            row_number = index + 2
            for column in columns:
                value = record.get(column, "")
                for validator in scoped[column]:
                    try:
                        issue: Optional[ValidationIssue] = validator.validate(value, record, index, column)
                    except Exception as e:
                        collector.warn(
                            ValidationWarning(
                                type="performance",
                                message=f'Custom validator "{validator.name}" failed: {e}',
                                row=row_number,
                                column=column,
                            )
                        )
                        continue
                    if issue is not None:
                        collector.add(issue.model_copy(update={"row": row_number, "column": column}))

    def _build_metadata(self, table: TabularData) -> ValidationMetadata:
        frame = pd.DataFrame(
            [[record.get(header, "") for header in table.headers] for record in table.records],
            columns=range(len(table.headers)),
            dtype=str,
        )
        stripped = frame.apply(lambda column: column.str.strip())
        empty_rows = int(stripped.eq("").all(axis=1).sum())
        duplicate_rows = int(frame.duplicated().sum())

        data_types: dict[str, str] = {}
        for position, header in enumerate(table.headers):
            if header in data_types:
                continue
            data_types[header] = infer_column_type(frame[position], self.config.type_sample_size)

        return ValidationMetadata(
            file_size=table.file_size,
            encoding=self.dialect.encoding,
            delimiter=self.dialect.delimiter,
            quote_char=self.dialect.quote_char,
            has_headers=True,
            column_count=len(table.headers),
            empty_rows=empty_rows,
            duplicate_rows=duplicate_rows,
            data_types=data_types,
        )

    # =========================================================================
    # Status
    # =========================================================================

    def summary(self) -> dict[str, Any]:
        """Registered validators and the most recent outcome."""
        return {
            "validators": self.validators.names(),
            "schema": self.schema is not None,
            "runs": self._runs,
            "last_result": self._last_result.summary() if self._last_result else None,
        }
