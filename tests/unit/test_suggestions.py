"""Unit tests for violation repair suggestions."""

from datetime import date
from decimal import Decimal

import pytest

from record_datagen.shared.models import FieldDescriptor, FieldType
from record_datagen.validation.results import Suggestion, Violation
from record_datagen.validation.suggestions import (
    BLANK_CONFIDENCE,
    LENGTH_CONFIDENCE,
    NUMERIC_CONFIDENCE,
    PICKLIST_CONFIDENCE,
    SuggestionEngine,
    _length_fix,
    _numeric_fix,
    apply_suggestions,
    blank_fill_value,
)

TODAY = date(2024, 6, 15)


@pytest.fixture
def engine():
    return SuggestionEngine(clock=lambda: TODAY)


def violation(field: str | None, formula: str, rule_id: str = "R") -> Violation:
    return Violation(rule_id=rule_id, rule_name=rule_id, field=field, formula=formula)


class TestBlankFillValue:
    @pytest.mark.parametrize(
        "field_type,expected",
        [
            (FieldType.EMAIL, "user@example.com"),
            (FieldType.PHONE, "(555) 123-4567"),
            (FieldType.TEXT, "Sample Industry"),
            (FieldType.LONG_TEXT, "Sample Industry"),
            (FieldType.CURRENCY, 1),
            (FieldType.INTEGER, 1),
            (FieldType.BOOLEAN, True),
            (FieldType.DATE, "2024-06-15"),
            (FieldType.DATETIME, "2024-06-15T00:00:00.000Z"),
            (FieldType.REFERENCE, "Required Value"),
            (None, "Required Value"),
        ],
    )
    def test_by_type(self, field_type, expected):
        assert blank_fill_value("Industry", field_type, None, TODAY) == expected

    def test_select_uses_first_active_option(self, country_field):
        assert blank_fill_value("Country", country_field.type, country_field, TODAY) == "AU"


class TestLengthFix:
    @pytest.mark.parametrize(
        "current,operator,limit,expected",
        [
            ("abcdefgh", ">", 5, "abcde"),
            ("abcdefgh", ">=", 5, "abcd"),
            ("ab", "<", 5, "abXXX"),
            ("ab", "<=", 5, "abXXXX"),
            ("ab", "=", 2, "abX"),
            ("abcdef", "<>", 3, "abc"),
            ("a", "!=", 3, "aXX"),
        ],
    )
    def test_operators(self, current, operator, limit, expected):
        assert _length_fix(current, operator, limit) == expected


class TestNumericFix:
    def test_strict_comparisons_use_limit(self):
        assert _numeric_fix("<", Decimal(0)) == 0
        assert _numeric_fix(">", Decimal(100)) == 100

    def test_inclusive_comparisons_step_away(self):
        assert _numeric_fix("<=", Decimal(0)) == 1
        assert _numeric_fix(">=", Decimal(10)) == 9
        assert _numeric_fix("=", Decimal(3)) == 4

    def test_fractional_limit_stays_float(self):
        value = _numeric_fix("<=", Decimal("2.5"))
        assert value == 3.5
        assert isinstance(value, float)


class TestSuggestionEngine:
    """Test suggestion shapes against violations."""

    def test_blank_check(self, engine, account_schema):
        (suggestion,) = engine.suggest(
            {"Industry": None},
            [violation("Industry", "ISBLANK(Industry)", rule_id="Industry_Required")],
            account_schema,
        )

        assert suggestion.suggested_value == "Sample Industry"
        assert suggestion.confidence == BLANK_CONFIDENCE
        assert suggestion.current_value is None
        assert "Industry_Required" in suggestion.reason

    def test_length_check(self, engine):
        (suggestion,) = engine.suggest({"Name": "x" * 70}, [violation("Name", "LEN(Name) > 60")])

        assert suggestion.suggested_value == "x" * 60
        assert suggestion.confidence == LENGTH_CONFIDENCE

    def test_picklist_check(self, engine, account_schema):
        (suggestion,) = engine.suggest(
            {"Type": "Other"}, [violation("Type", 'ISPICKVAL(Type, "Other")')], account_schema
        )

        assert suggestion.suggested_value == "Customer"
        assert suggestion.confidence == PICKLIST_CONFIDENCE

    def test_picklist_check_without_metadata_has_no_suggestion(self, engine):
        assert engine.suggest({"Type": "Other"}, [violation("Type", 'ISPICKVAL(Type, "Other")')]) == []

    def test_numeric_check(self, engine):
        (suggestion,) = engine.suggest(
            {"AnnualRevenue": -3}, [violation("AnnualRevenue", "AnnualRevenue < 0")]
        )

        assert suggestion.suggested_value == 0
        assert suggestion.confidence == NUMERIC_CONFIDENCE

    def test_numeric_check_on_other_field_ignored(self, engine):
        assert engine.suggest({}, [violation("Name", "AnnualRevenue < 0")]) == []

    def test_unattributed_violation_skipped(self, engine):
        assert engine.suggest({}, [violation(None, "ISBLANK(Industry)")]) == []

    def test_field_lookup_is_case_insensitive(self, engine):
        (suggestion,) = engine.suggest({"name": "abcdefgh"}, [violation("Name", "LEN(Name) > 5")])
        assert suggestion.current_value == "abcdefgh"
        assert suggestion.suggested_value == "abcde"


class TestApplySuggestions:
    def test_threshold_and_copy(self):
        record = {"Industry": None, "Name": "x" * 70}
        suggestions = [
            Suggestion(field="Industry", suggested_value="Retail", confidence=0.9),
            Suggestion(field="Name", suggested_value="short", confidence=0.4),
        ]

        fixed = apply_suggestions(record, suggestions)

        assert fixed == {"Industry": "Retail", "Name": "x" * 70}
        assert record["Industry"] is None

    def test_threshold_is_inclusive(self):
        suggestions = [Suggestion(field="Name", suggested_value="short", confidence=0.4)]
        assert apply_suggestions({}, suggestions, threshold=0.4) == {"Name": "short"}
