"""Validation of delimited files.

Structural checks, optional schema conformance, pluggable field validators
and derived metadata, reported as data rather than exceptions.

Public API:
-----------
    from csv_sentinel.validation import (
        ValidationPipeline,
        ValidationResult,
        ValidationIssue,
        FieldValidator,
        TableSchema,
    )

See core, models, schema and validators modules for detailed documentation.
"""

from .core import TYPE_ORDER, ValidationPipeline, classify_value, infer_column_type
from .models import (
    IssueType,
    Severity,
    ValidationIssue,
    ValidationMetadata,
    ValidationPerformance,
    ValidationResult,
    ValidationWarning,
    WarningType,
)
from .schema import ColumnRule, TableSchema, bookstore_schema, check_headers, check_record
from .validators import FieldValidator, FunctionValidator, ValidatorRegistry, default_validators

__all__ = [
    "ValidationPipeline",
    "classify_value",
    "infer_column_type",
    "TYPE_ORDER",
    "Severity",
    "IssueType",
    "WarningType",
    "ValidationIssue",
    "ValidationWarning",
    "ValidationMetadata",
    "ValidationPerformance",
    "ValidationResult",
    "ColumnRule",
    "TableSchema",
    "bookstore_schema",
    "check_headers",
    "check_record",
    "FieldValidator",
    "FunctionValidator",
    "ValidatorRegistry",
    "default_validators",
]
