"""Validation module-local models.

Findings are data, not exceptions. ``errors`` carry a severity of
critical, error or warning; a result is valid iff none of its errors is
critical or error. ``warnings`` are advisory data-quality notes.

Row numbers are file line numbers of the record (the header is line 1, the
first record line 2) when no multi-line quoted fields precede it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "Severity",
    "IssueType",
    "ValidationIssue",
    "ValidationWarning",
    "ValidationMetadata",
    "ValidationPerformance",
    "ValidationResult",
]


class Severity(str, Enum):
    """Severity of a validation finding."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


IssueType = Literal["structure", "schema", "data", "format"]
WarningType = Literal["data_quality", "performance", "format"]


class ValidationIssue(BaseModel):
    """One finding in ``ValidationResult.errors``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: IssueType = Field(..., description="structure | schema | data | format")
    severity: Severity = Field(..., description="critical | error | warning")
    message: str
    code: Optional[str] = Field(default=None, description="Stable machine-readable code")
    row: Optional[int] = Field(default=None, description="File line number of the record")
    column: Optional[str] = None
    value: Optional[str] = None
    expected: Optional[str] = None

    @property
    def blocks_validity(self) -> bool:
        return self.severity is not Severity.WARNING


class ValidationWarning(BaseModel):
    """One advisory note in ``ValidationResult.warnings``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: WarningType
    message: str
    row: Optional[int] = None
    column: Optional[str] = None
    value: Optional[str] = None
    suggestion: Optional[str] = None


class ValidationMetadata(BaseModel):
    """Derived file statistics."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    file_size: int = 0
    encoding: str = "utf-8"
    delimiter: str = ","
    quote_char: str = '"'
    has_headers: bool = True
    column_count: int = 0
    empty_rows: int = 0
    duplicate_rows: int = 0
    data_types: Dict[str, str] = Field(default_factory=dict, description="Inferred type per column")


class ValidationPerformance(BaseModel):
    """Timing of one validation run; excluded from determinism comparisons."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    parse_ms: float = 0.0
    validation_ms: float = 0.0
    total_ms: float = 0.0


class ValidationResult(BaseModel):
    """Outcome of validate_file; derived fresh on every call."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    is_valid: bool
    file_path: Optional[str] = None
    headers: Optional[List[str]] = None
    row_count: Optional[int] = None
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)
    metadata: Optional[ValidationMetadata] = None
    performance: Optional[ValidationPerformance] = None

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.errors if issue.blocks_validity)

    def summary(self) -> Dict[str, Any]:
        """Compact form embedded in change log entries."""
        return {
            "is_valid": self.is_valid,
            "row_count": self.row_count,
            "errors": self.error_count,
            "warnings": len(self.warnings) + sum(1 for issue in self.errors if not issue.blocks_validity),
            "codes": sorted({issue.code for issue in self.errors if issue.code}),
        }
