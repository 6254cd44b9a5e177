"""Configuration module for csv-sentinel.

Load and validate TOML configuration with Pydantic models and environment
overrides. May import: exceptions.

Sources, lowest precedence first:
    1. Model defaults
    2. TOML file passed to load_settings()
    3. Environment variables ``CSV_SENTINEL_<SECTION>__<KEY>``

Example:
--------
>>> from csv_sentinel.config import load_settings
>>> settings = load_settings("sentinel.toml")
>>> settings.backup.retention.max_backups
50

    $ CSV_SENTINEL_MONITOR__DEBOUNCE_MS=250 csv-sentinel watch data/bookstores.csv
"""

from __future__ import annotations

import os
from pathlib import Path
import tomllib
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigError

__all__ = [
    "Settings",
    "MonitorConfig",
    "DialectConfig",
    "CompressionConfig",
    "RetentionConfig",
    "BackupConfig",
    "ValidationConfig",
    "DiffConfig",
    "ChangeLogConfig",
    "OrchestratorConfig",
    "LoggingConfig",
    "load_settings",
    "ENV_PREFIX",
]

ENV_PREFIX = "CSV_SENTINEL_"

ChecksumAlgorithm = Literal["md5", "sha256"]
DiffModeName = Literal["text", "schema", "structured", "hybrid"]
ReportFormatName = Literal["console", "html", "json", "markdown"]


def _expand_path(v: Any) -> Any:
    if isinstance(v, str):
        return Path(os.path.expandvars(os.path.expanduser(v)))
    return v


# ============================================================================
# Configuration Models
# ============================================================================


class MonitorConfig(BaseModel):
    """Change monitor configuration."""

    model_config = {"extra": "forbid"}

    debounce_ms: int = Field(default=500, ge=0, description="Coalescing window per path")
    use_checksum: bool = Field(default=True, description="Compare content digests, not just size/mtime")
    checksum_algorithm: ChecksumAlgorithm = Field(default="sha256")
    use_observer: bool = Field(default=True, description="Attach a watchdog observer to watched paths")


class DialectConfig(BaseModel):
    """Delimited-file dialect."""

    model_config = {"extra": "forbid"}

    delimiter: str = Field(default=",", min_length=1, max_length=1)
    quote_char: str = Field(default='"', min_length=1, max_length=1)
    escape_char: str | None = Field(default=None)
    encoding: str = Field(default="utf-8")
    skip_empty_lines: bool = Field(default=True)
    trim_values: bool = Field(default=True)

    @field_validator("delimiter", mode="before")
    @classmethod
    def unescape_tab(cls, v: Any) -> Any:
        """Accept the two-character ``\\t`` spelling for tab-delimited files."""
        if v == "\\t":
            return "\t"
        return v


class CompressionConfig(BaseModel):
    """Backup payload compression."""

    model_config = {"extra": "forbid"}

    enabled: bool = Field(default=True)
    level: int = Field(default=6, ge=1, le=9)


class RetentionConfig(BaseModel):
    """Retention policy applied per original path after every backup."""

    model_config = {"extra": "forbid"}

    max_backups: int = Field(default=50, ge=1)
    max_age_days: float = Field(default=30.0, gt=0)
    min_backups: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "RetentionConfig":
        """min_backups may not exceed max_backups."""
        if self.min_backups > self.max_backups:
            raise ValueError(f"min_backups ({self.min_backups}) must be <= max_backups ({self.max_backups})")
        return self


class BackupConfig(BaseModel):
    """Backup store configuration."""

    model_config = {"extra": "forbid"}

    enabled: bool = Field(default=True)
    directory: Path = Field(default=Path("backups"))
    metadata_file: str = Field(default="backup-metadata.json")
    checksum_algorithm: ChecksumAlgorithm = Field(default="sha256")
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    auto_backup: bool = Field(default=True, description="Back up every added/changed file")
    backup_on_validation_failure: bool = Field(default=True)

    @field_validator("directory", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        """Expand environment variables and user home in paths."""
        return _expand_path(v)


class ValidationConfig(BaseModel):
    """Validation pipeline configuration."""

    model_config = {"extra": "forbid"}

    enabled: bool = Field(default=True, description="Auto-validate added/changed files")
    strict_mode: bool = Field(default=False, description="Promote warnings to errors")
    max_errors: int = Field(default=100, ge=1)
    enable_warnings: bool = Field(default=True)
    performance_tracking: bool = Field(default=True)
    default_validators: bool = Field(default=True, description="Register email/phone/url/coordinate validators")
    bookstore_schema: bool = Field(default=False, description="Check rows against the bookstore shape")
    type_sample_size: int = Field(default=100, ge=1)


class DiffConfig(BaseModel):
    """Diff engine and report configuration."""

    model_config = {"extra": "forbid"}

    enabled: bool = Field(default=True)
    mode: DiffModeName = Field(default="hybrid")
    key_columns: list[str] = Field(default_factory=list)
    enable_move_detection: bool = Field(default=True)
    min_similarity: float = Field(default=0.5, ge=0.0, le=1.0)
    max_rows: int = Field(default=100_000, ge=1)
    top_columns: int = Field(default=10, ge=1)
    compare_with_backups: bool = Field(default=True)
    auto_generate_reports: bool = Field(default=True)
    report_formats: list[ReportFormatName] = Field(default_factory=lambda: ["html", "json"])
    report_dir: Path = Field(default=Path("reports"))
    max_rows_in_report: int = Field(default=100, ge=0)
    report_theme: Literal["light", "dark"] = Field(default="light")

    @field_validator("report_dir", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        """Expand environment variables and user home in paths."""
        return _expand_path(v)


class ChangeLogConfig(BaseModel):
    """Change log configuration."""

    model_config = {"extra": "forbid"}

    directory: Path = Field(default=Path("logs"))
    file_name: str = Field(default="csv-changes.jsonl")

    @field_validator("directory", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        """Expand environment variables and user home in paths."""
        return _expand_path(v)


class OrchestratorConfig(BaseModel):
    """Update orchestrator configuration."""

    model_config = {"extra": "forbid"}

    error_buffer_size: int = Field(default=50, ge=1)
    bookstore_hooks: bool = Field(default=False, description="Register the default bookstore rebuild hooks")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = {"extra": "forbid"}

    level: str = Field(default="INFO")
    structured: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}, got '{v}'")
        return v_upper


class Settings(BaseModel):
    """Complete csv-sentinel settings."""

    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    dialect: DialectConfig = Field(default_factory=DialectConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)
    changelog: ChangeLogConfig = Field(default_factory=ChangeLogConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}  # Reject unknown keys


# ============================================================================
# Loading Functions
# ============================================================================


def load_settings(
    toml_path: Path | str | None = None,
    env_prefix: str = ENV_PREFIX,
) -> Settings:
    """Load and validate settings from TOML and environment.

    Args:
        toml_path: Path to TOML configuration file (optional)
        env_prefix: Environment variable prefix (default: CSV_SENTINEL_)

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If toml_path specified but doesn't exist
        ConfigError: If the file is not valid TOML or values fail validation
    """
    config_dict: dict[str, Any] = {}

    if toml_path is not None:
        toml_path = Path(toml_path)
        if not toml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {toml_path}")

        try:
            with open(toml_path, "rb") as f:
                config_dict = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {toml_path}: {e}") from e

    config_dict = _apply_env_overrides(config_dict, env_prefix)

    try:
        return Settings(**config_dict)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def _apply_env_overrides(config: dict[str, Any], prefix: str) -> dict[str, Any]:
    """Apply environment variable overrides to config dict.

    Supports nested keys with double underscore notation:
    CSV_SENTINEL_MONITOR__DEBOUNCE_MS=250
    CSV_SENTINEL_BACKUP__RETENTION__MAX_BACKUPS=10
    """
    for key, value in sorted(os.environ.items()):
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = config
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = _parse_env_value(value)

    return config


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to bool, int, float, list or str.

    Comma-separated values become lists (``html,json``).
    """
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    if "," in value:
        return [item.strip() for item in value.split(",") if item.strip()]

    return value
