"""
Repair suggestions for common violation shapes.

Blank checks, length checks, picklist checks and numeric comparisons each
map to a proposed value with a fixed confidence. Anything else gets no
suggestion.
"""

import re
from collections.abc import Callable, Iterable, Mapping
from datetime import date
from decimal import Decimal
from typing import Any

from ..shared.models import FieldDescriptor, FieldMetadata, FieldType, build_field_descriptor_map, build_field_type_map
from ..shared.records import CandidateRecord, lookup_field
from .results import Suggestion, Violation

BLANK_CONFIDENCE = 0.9
LENGTH_CONFIDENCE = 0.8
PICKLIST_CONFIDENCE = 0.7
NUMERIC_CONFIDENCE = 0.8

_LENGTH_CHECK = re.compile(r"LEN\s*\([^)]+\)\s*([<>=!]+)\s*(\d+)", re.IGNORECASE)
_NUMERIC_CHECK = re.compile(r"([A-Za-z_][\w.]*)\s*([<>=!]+)\s*(-?\d+(?:\.\d+)?)")


def blank_fill_value(field_name: str, field_type: FieldType | None, descriptor: FieldDescriptor | None, today: date) -> Any:
    """Plausible non-empty value for a field a blank check complained about."""
    if descriptor is not None and descriptor.is_select and descriptor.active_values:
        return descriptor.active_values[0]

    if field_type is FieldType.EMAIL:
        return "user@example.com"
    if field_type is FieldType.PHONE:
        return "(555) 123-4567"
    if field_type in (FieldType.TEXT, FieldType.LONG_TEXT):
        return f"Sample {field_name}"
    if field_type is not None and field_type.is_numeric:
        return 1
    if field_type is FieldType.BOOLEAN:
        return True
    if field_type is FieldType.DATE:
        return today.isoformat()
    if field_type is FieldType.DATETIME:
        return f"{today.isoformat()}T00:00:00.000Z"
    return "Required Value"


def _length_fix(current: str, operator: str, limit: int) -> str:
    """Adjust text so `LEN(text) <operator> limit` no longer holds."""
    if operator == ">":
        return current[:limit]
    if operator == ">=":
        return current[: max(limit - 1, 0)]
    if operator == "<":
        return current.ljust(limit, "X")
    if operator == "<=":
        return current.ljust(limit + 1, "X")
    if operator in ("=", "=="):
        return current.ljust(limit + 1, "X")
    # <> and !=
    return current[:limit].ljust(limit, "X")


def _numeric_fix(operator: str, limit: Decimal) -> int | float:
    """Smallest step away from `limit` that makes `value <operator> limit` false."""
    if operator in ("<", ">", "<>", "!="):
        fixed = limit
    elif operator == "<=":
        fixed = limit + 1
    elif operator == ">=":
        fixed = limit - 1
    else:
        fixed = limit + 1
    return int(fixed) if fixed == fixed.to_integral_value() else float(fixed)


class SuggestionEngine:
    """Builds suggestions for violations against known field metadata."""

    def __init__(self, clock: Callable[[], date] | None = None):
        self._today = clock or date.today

    def suggest(
        self,
        record: Mapping[str, Any],
        violations: Iterable[Violation],
        field_metadata: FieldMetadata = None,
    ) -> list[Suggestion]:
        types = build_field_type_map(field_metadata)
        descriptors = build_field_descriptor_map(field_metadata)
        suggestions = []
        for violation in violations:
            suggestion = self.suggest_for(record, violation, types, descriptors)
            if suggestion is not None:
                suggestions.append(suggestion)
        return suggestions

    def suggest_for(
        self,
        record: Mapping[str, Any],
        violation: Violation,
        types: Mapping[str, FieldType],
        descriptors: Mapping[str, FieldDescriptor],
    ) -> Suggestion | None:
        """Suggestion for one violation, or None when no shape matches."""
        field = violation.field
        if not field:
            return None

        formula = violation.formula
        upper = formula.upper()
        current = lookup_field(record, field)
        descriptor = descriptors.get(field)

        if "ISBLANK(" in upper:
            return Suggestion(
                field=field,
                current_value=current,
                suggested_value=blank_fill_value(field, types.get(field), descriptor, self._today()),
                confidence=BLANK_CONFIDENCE,
                reason=f"Field is required by validation rule: {violation.rule_name}",
            )

        if "LEN(" in upper:
            match = _LENGTH_CHECK.search(formula)
            if match:
                operator, limit = match.group(1), int(match.group(2))
                return Suggestion(
                    field=field,
                    current_value=current,
                    suggested_value=_length_fix("" if current is None else str(current), operator, limit),
                    confidence=LENGTH_CONFIDENCE,
                    reason="Adjust field length to meet validation requirements",
                )

        if "ISPICKVAL(" in upper and descriptor is not None and descriptor.active_values:
            return Suggestion(
                field=field,
                current_value=current,
                suggested_value=descriptor.active_values[0],
                confidence=PICKLIST_CONFIDENCE,
                reason="Use a valid picklist value",
            )

        match = _NUMERIC_CHECK.search(formula)
        if match and match.group(1).lower() == field.lower():
            return Suggestion(
                field=field,
                current_value=current,
                suggested_value=_numeric_fix(match.group(2), Decimal(match.group(3))),
                confidence=NUMERIC_CONFIDENCE,
                reason="Adjust numeric value to meet validation requirements",
            )

        return None


def apply_suggestions(
    record: Mapping[str, Any],
    suggestions: Iterable[Suggestion],
    threshold: float = 0.5,
) -> CandidateRecord:
    """
    Return a copy of `record` with every suggestion at or above `threshold` applied.

    The input record is not modified.
    """
    fixed = dict(record)
    for suggestion in suggestions:
        if suggestion.confidence >= threshold:
            fixed[suggestion.field] = suggestion.suggested_value
    return fixed
