"""
Result models for violation detection and batch pre-validation.
"""

from enum import Enum
from typing import Any

import pandas as pd
from pydantic import BaseModel, Field

from ..shared.models import Diagnostic

VIOLATION_COLUMNS = ["record_index", "rule_id", "field", "severity", "message", "formula"]


class Severity(str, Enum):
    """Severity of a rule violation."""

    ERROR = "error"
    WARNING = "warning"


class Violation(BaseModel):
    """A rule whose error condition held for one record."""

    rule_id: str = Field(..., description="Violated rule identifier")
    rule_name: str = Field(..., description="Rule display name")
    field: str | None = Field(None, description="Field the violation is attributed to")
    message: str = Field("", description="Rule error message")
    formula: str = Field("", description="Rule error condition formula")
    severity: Severity = Field(Severity.ERROR, description="Violation severity")
    record_index: int | None = Field(None, ge=0, description="Position of the record in its batch")


class Suggestion(BaseModel):
    """Proposed value change that should clear a violation."""

    field: str
    current_value: Any = None
    suggested_value: Any = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""


class WarningType(str, Enum):
    """Kinds of pre-validation warnings."""

    UNSUPPORTED_FORMULA = "unsupported_formula"
    COMPLEX_LOGIC = "complex_logic"
    PERFORMANCE = "performance"


class ValidationWarning(BaseModel):
    """Non-fatal condition noticed while validating a batch."""

    type: WarningType
    message: str
    rule_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class PerformanceStats(BaseModel):
    """Counters for one validation call."""

    evaluation_time_ms: float = Field(0.0, ge=0.0, description="Wall-clock time spent")
    rules_evaluated: int = Field(0, ge=0, description="Rule evaluations performed")
    records_processed: int = Field(0, ge=0, description="Records actually validated")
    cache_hits: int = Field(0, ge=0, description="Evaluations answered from the cache")
    timed_out: bool = Field(False, description="Processing stopped at the time budget")


class ValidationResult(BaseModel):
    """Outcome of validating a batch of candidate records."""

    is_valid: bool = True
    violations: list[Violation] = Field(default_factory=list)
    warnings: list[ValidationWarning] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    performance: PerformanceStats = Field(default_factory=PerformanceStats)
    estimated: bool = Field(False, description="Violation count was extrapolated from a sample")
    estimated_violation_count: int | None = Field(None, ge=0)
    sample_size: int | None = Field(None, ge=0)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for v in self.violations if v.severity is Severity.ERROR)

    def warnings_of(self, warning_type: WarningType) -> list[ValidationWarning]:
        return [w for w in self.warnings if w.type is warning_type]

    def violations_frame(self) -> pd.DataFrame:
        """Violations as a DataFrame, one row per violation."""
        rows = [
            {
                "record_index": v.record_index,
                "rule_id": v.rule_id,
                "field": v.field,
                "severity": v.severity.value,
                "message": v.message,
                "formula": v.formula,
            }
            for v in self.violations
        ]
        return pd.DataFrame(rows, columns=VIOLATION_COLUMNS)

    def summary_by_rule(self) -> pd.DataFrame:
        """
        Violation counts per rule.

        Returns:
            DataFrame with columns rule_id, violations and records, sorted by
            violation count descending
        """
        frame = self.violations_frame()
        if frame.empty:
            return pd.DataFrame(columns=["rule_id", "violations", "records"])

        summary = (
            frame.groupby("rule_id")
            .agg(violations=("rule_id", "size"), records=("record_index", "nunique"))
            .reset_index()
            .sort_values(["violations", "rule_id"], ascending=[False, True])
            .reset_index(drop=True)
        )
        return summary


class PreValidationOptions(BaseModel):
    """Per-call options for pre-validation."""

    include_warnings: bool = True
    include_suggestions: bool = True
    max_records: int = Field(1000, gt=0)
    timeout_ms: int = Field(30000, gt=0)
    skip_unsupported_rules: bool = True


class ValidationCoverage(BaseModel):
    """How many rules the local evaluator can check."""

    total: int = 0
    supported: int = 0
    unsupported: int = 0
    coverage: float = Field(0.0, description="Supported share in percent")
    unsupported_reasons: dict[str, int] = Field(default_factory=dict)


class PatternAssessment(BaseModel):
    """Risk assessment of a generation pattern from a few sample records."""

    can_generate: bool
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    risk_score: int = Field(0, ge=0, le=100)
