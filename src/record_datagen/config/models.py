"""
Configuration models for the record data generator.

These models define the structure and validation for the record_datagen.json file
consumed by a generation session.
"""

import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class GenerationSettings(BaseModel):
    """Configuration for per-record value generation and repair."""

    max_repair_attempts: int = Field(
        10, ge=1, description="Repair attempts before falling back to a minimal record"
    )
    null_probability: float = Field(
        0.1,
        ge=0.0,
        le=1.0,
        description="Chance that a non-required field is left empty",
    )
    multi_select_delimiter: str = Field(
        ";", min_length=1, description="Delimiter joining multi-select values"
    )
    multi_select_max: int = Field(
        3, ge=1, description="Maximum number of values chosen for a multi-select"
    )
    advisory_value_probability: float = Field(
        0.5,
        ge=0.0,
        le=1.0,
        description="Chance that advisory candidates join the candidate pool for a field",
    )
    faker_locale: str = Field(
        "en_US", min_length=2, description="Locale used for unconstrained fake values"
    )

    @field_validator("multi_select_delimiter")
    @classmethod
    def validate_delimiter(cls, v: str) -> str:
        """Reject delimiters made only of whitespace."""
        if not v.strip():
            raise ValueError("Multi-select delimiter cannot be whitespace only")
        return v


class PreValidationSettings(BaseModel):
    """Configuration for batch pre-validation."""

    max_records: int = Field(
        1000, gt=0, description="Records validated by the standard path"
    )
    timeout_ms: int = Field(
        30000, gt=0, description="Wall-clock budget for the standard path"
    )
    large_max_records: int = Field(
        10000, gt=0, description="Records considered by the large-dataset path"
    )
    large_timeout_ms: int = Field(
        120000, gt=0, description="Wall-clock budget for the large-dataset path"
    )
    chunk_count: int = Field(
        4, gt=0, description="Number of chunks a large batch is split into"
    )
    max_workers: int = Field(
        4, gt=0, description="Worker threads used to validate chunks"
    )
    sampling_threshold: int = Field(
        1000, gt=0, description="Record count above which sampling is used"
    )
    max_sample_size: int = Field(
        100, gt=0, description="Upper bound on the sampled record count"
    )
    sample_fraction: float = Field(
        0.1, gt=0.0, le=1.0, description="Fraction of records drawn into a sample"
    )
    include_warnings: bool = Field(True, description="Report warnings")
    include_suggestions: bool = Field(True, description="Report repair suggestions")
    skip_unsupported_rules: bool = Field(
        True, description="Exclude rules using unsupported formula functions"
    )

    @model_validator(mode="after")
    def validate_limits(self):
        """The large path must be able to see at least the standard path's records."""
        if self.large_max_records < self.max_records:
            raise ValueError("large_max_records must be >= max_records")
        return self


class CacheSettings(BaseModel):
    """Configuration for session-owned caches."""

    evaluation_cache_size: int = Field(
        10000, gt=0, description="Maximum cached (rule, fingerprint) outcomes"
    )
    evaluation_cache_ttl_seconds: float | None = Field(
        None, gt=0.0, description="Expiry for cached outcomes; None keeps them for the run"
    )
    picklist_cache_size: int = Field(
        50, gt=0, description="Maximum decoded picklist field pairs kept"
    )
    plan_cache_size: int = Field(64, gt=0, description="Maximum cached generation plans")
    parse_cache_size: int = Field(512, gt=0, description="Maximum cached formula ASTs")


class LoggingSettings(BaseModel):
    """Configuration for log output."""

    level: str = Field("INFO", description="Root log level")
    structured: bool = Field(True, description="Emit JSON structured log lines")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate the level against the standard logging names."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class DataGenConfig(BaseModel):
    """Main configuration model for the record data generator."""

    seed: int | None = Field(
        42,
        ge=0,
        le=2**32 - 1,
        description="Random seed for reproducible generation; None for nondeterministic runs",
    )
    generation: GenerationSettings = Field(
        default_factory=GenerationSettings,
        description="Value generation and repair settings",
    )
    prevalidation: PreValidationSettings = Field(
        default_factory=PreValidationSettings,
        description="Batch pre-validation settings",
    )
    cache: CacheSettings = Field(
        default_factory=CacheSettings, description="Cache sizing settings"
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings, description="Logging settings"
    )

    @classmethod
    def from_file(cls, file_path: str | Path) -> "DataGenConfig":
        """
        Read one JSON config file, without environment overrides.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not valid JSON or fails validation
        """
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        return cls.model_validate_json(path.read_bytes())

    def to_file(self, file_path: str | Path) -> None:
        """Write the configuration as indented JSON, creating parent folders."""
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2) + "\n", encoding="utf-8")
