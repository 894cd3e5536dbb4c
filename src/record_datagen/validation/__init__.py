"""Violation detection, repair and batch pre-validation."""

from .pre_validator import PreValidator
from .repairer import RecordRepairer, RecordState, RepairOutcome, ViolationDetector, infer_violation_field
from .results import (
    PatternAssessment,
    PerformanceStats,
    PreValidationOptions,
    Severity,
    Suggestion,
    ValidationCoverage,
    ValidationResult,
    ValidationWarning,
    Violation,
    WarningType,
)
from .suggestions import SuggestionEngine, apply_suggestions

__all__ = [
    "PatternAssessment",
    "PerformanceStats",
    "PreValidationOptions",
    "PreValidator",
    "RecordRepairer",
    "RecordState",
    "RepairOutcome",
    "Severity",
    "Suggestion",
    "SuggestionEngine",
    "ValidationCoverage",
    "ValidationResult",
    "ValidationWarning",
    "Violation",
    "ViolationDetector",
    "WarningType",
    "apply_suggestions",
    "infer_violation_field",
]
