"""Pluggable per-cell field validators.

A validator is any object with ``name``, ``description``, ``columns`` and
``validate(value, row, row_index, column)``. ``columns`` scopes it to named
columns (None means every column). ``validate`` returns a ValidationIssue
or None; the pipeline fills in row and column.

The registry is a plain name -> validator mapping kept in registration
order; registering an existing name replaces it in place.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import re
from typing import Callable, Iterator, Mapping, Optional, Protocol, runtime_checkable

from .models import Severity, ValidationIssue

__all__ = [
    "FieldValidator",
    "FunctionValidator",
    "ValidatorRegistry",
    "default_validators",
    "EMAIL_PATTERN",
    "PHONE_PATTERN",
]

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[\d\s\-\(\)\+\.]+$")
URL_PREFIX = re.compile(r"^https?://", re.IGNORECASE)

ValidateFn = Callable[[str, Mapping[str, str], int, str], Optional[ValidationIssue]]


@runtime_checkable
class FieldValidator(Protocol):
    """Interface every custom validator implements."""

    name: str
    description: str
    columns: Optional[frozenset[str]]

    def validate(self, value: str, row: Mapping[str, str], row_index: int, column: str) -> Optional[ValidationIssue]: ...


@dataclass(frozen=True)
class FunctionValidator:
    """Adapts a plain function to the FieldValidator interface."""

    name: str
    description: str
    func: ValidateFn
    columns: Optional[frozenset[str]] = None

    def validate(self, value: str, row: Mapping[str, str], row_index: int, column: str) -> Optional[ValidationIssue]:
        return self.func(value, row, row_index, column)


class ValidatorRegistry:
    """Ordered name -> FieldValidator table."""

    def __init__(self):
        self._validators: dict[str, FieldValidator] = {}

    def register(self, validator: FieldValidator) -> None:
        if not isinstance(validator, FieldValidator):
            raise TypeError(f"{validator!r} does not implement FieldValidator")
        self._validators[validator.name] = validator

    def unregister(self, name: str) -> bool:
        return self._validators.pop(name, None) is not None

    def for_column(self, column: str) -> list[FieldValidator]:
        return [v for v in self._validators.values() if v.columns is None or column in v.columns]

    def names(self) -> list[str]:
        return list(self._validators)

    def __iter__(self) -> Iterator[FieldValidator]:
        return iter(list(self._validators.values()))

    def __len__(self) -> int:
        return len(self._validators)

    def __contains__(self, name: str) -> bool:
        return name in self._validators


# =============================================================================
# Default validators
# =============================================================================


def _email_format(value: str, row: Mapping[str, str], row_index: int, column: str) -> Optional[ValidationIssue]:
    if value and not EMAIL_PATTERN.match(value):
        return ValidationIssue(
            type="format",
            severity=Severity.ERROR,
            message=f'Invalid email format: "{value}"',
            value=value,
            code="INVALID_EMAIL_FORMAT",
        )
    return None


def _phone_format(value: str, row: Mapping[str, str], row_index: int, column: str) -> Optional[ValidationIssue]:
    if value and not PHONE_PATTERN.match(value):
        return ValidationIssue(
            type="format",
            severity=Severity.WARNING,
            message=f'Unusual phone number format: "{value}"',
            value=value,
            code="UNUSUAL_PHONE_FORMAT",
        )
    return None


def _url_format(value: str, row: Mapping[str, str], row_index: int, column: str) -> Optional[ValidationIssue]:
    if value and not URL_PREFIX.match(value):
        return ValidationIssue(
            type="format",
            severity=Severity.WARNING,
            message=f'URL should start with http:// or https://: "{value}"',
            value=value,
            code="INVALID_URL_FORMAT",
        )
    return None


def _coordinate_range(value: str, row: Mapping[str, str], row_index: int, column: str) -> Optional[ValidationIssue]:
    if not value:
        return None

    try:
        number = float(value)
    except ValueError:
        number = math.nan

    if not math.isfinite(number):
        return ValidationIssue(
            type="data",
            severity=Severity.ERROR,
            message=f'Invalid coordinate value: "{value}"',
            value=value,
            code="INVALID_COORDINATE",
        )

    if column == "latitude" and not -90 <= number <= 90:
        return ValidationIssue(
            type="data",
            severity=Severity.ERROR,
            message=f"Latitude out of range (-90 to 90): {number}",
            value=value,
            expected="-90..90",
            code="LATITUDE_OUT_OF_RANGE",
        )

    if column == "longitude" and not -180 <= number <= 180:
        return ValidationIssue(
            type="data",
            severity=Severity.ERROR,
            message=f"Longitude out of range (-180 to 180): {number}",
            value=value,
            expected="-180..180",
            code="LONGITUDE_OUT_OF_RANGE",
        )

    return None


def default_validators() -> list[FieldValidator]:
    """Email, phone, URL and coordinate checks for contact/location columns."""
    return [
        FunctionValidator("email-format", "Validate email format", _email_format, frozenset({"email"})),
        FunctionValidator("phone-format", "Validate phone number format", _phone_format, frozenset({"phone"})),
        FunctionValidator("url-format", "Validate URL format", _url_format, frozenset({"website"})),
        FunctionValidator(
            "coordinate-range",
            "Validate latitude/longitude ranges",
            _coordinate_range,
            frozenset({"latitude", "longitude"}),
        ),
    ]
