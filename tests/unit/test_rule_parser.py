"""Unit tests for static rule analysis."""

from decimal import Decimal

import pytest

from record_datagen.analysis.rule_parser import (
    RulePattern,
    analyze_formula,
    analyze_object_rules,
    extract_field_constraints,
    extract_field_dependencies,
    extract_fields,
    extract_operators,
    identify_patterns,
)
from record_datagen.shared.models import (
    Complexity,
    ConstraintKind,
    DependencyKind,
    RiskLevel,
    ValidationRule,
)

CONDITIONAL = 'IF(Type = "Customer", ISBLANK(Industry), false)'


def make_rule(formula: str, rule_id: str = "Rule_1", **kwargs) -> ValidationRule:
    return ValidationRule(fullName=rule_id, errorConditionFormula=formula, **kwargs)


class TestFieldExtraction:
    """Test field and operator extraction."""

    def test_functions_and_constants_are_not_fields(self):
        assert extract_fields(CONDITIONAL) == ["Type", "Industry"]

    def test_string_literal_content_ignored(self):
        assert extract_fields('Name = "Owner.Name"') == ["Name"]

    def test_comment_content_ignored(self):
        assert extract_fields("/* Secret__c */ ISBLANK(Name)") == ["Name"]

    def test_dotted_paths_kept_whole(self):
        assert extract_fields("Account.Owner.Name <> null") == ["Account.Owner.Name"]

    def test_operators_normalized(self):
        operators = extract_operators('AND(Amount > 0, Stage <> "Closed") || NOT(Flag)')
        assert operators == ["AND", "OR", "NOT", ">", "<>"]


class TestPatterns:
    """Test rule shape recognition."""

    def test_conditional_requirement(self):
        assert identify_patterns(CONDITIONAL) == [
            RulePattern.REQUIRED_FIELD_CHECK,
            RulePattern.CONDITIONAL_REQUIREMENT,
        ]

    def test_date_and_range(self):
        patterns = identify_patterns("CloseDate < TODAY() - 30")
        assert RulePattern.DATE_VALIDATION in patterns
        assert RulePattern.RANGE_VALIDATION in patterns

    def test_format_and_picklist(self):
        patterns = identify_patterns(r'ISPICKVAL(Type, "X") && NOT(REGEX(Code, "[A-Z]+"))')
        assert RulePattern.PICKLIST_VALIDATION in patterns
        assert RulePattern.FORMAT_VALIDATION in patterns

    def test_cross_object(self):
        assert RulePattern.CROSS_OBJECT_VALIDATION in identify_patterns("Account.Industry = 'Tech'")


class TestDependencies:
    """Test dependency inference."""

    def test_required_if_from_comparison(self):
        deps = extract_field_dependencies(CONDITIONAL, ["Type", "Industry"])

        assert len(deps) == 1
        dep = deps[0]
        assert dep.source_field == "Type"
        assert dep.target_field == "Industry"
        assert dep.kind is DependencyKind.REQUIRED_IF
        assert dep.operator == "="
        assert dep.value == "Customer"
        assert dep.condition == 'Type = "Customer"'

    def test_required_if_from_pickval(self):
        formula = 'AND(ISPICKVAL(StageName, "Closed Won"), ISBLANK(CloseReason__c))'
        deps = extract_field_dependencies(formula, extract_fields(formula))

        assert len(deps) == 1
        assert deps[0].source_field == "StageName"
        assert deps[0].target_field == "CloseReason__c"
        assert deps[0].value == "Closed Won"
        assert deps[0].condition == 'ISPICKVAL(StageName, "Closed Won")'

    def test_conditional_infix(self):
        deps = extract_field_dependencies("(Amount > 100) && (Discount > 0.2)", ["Amount", "Discount"])

        assert len(deps) == 1
        assert deps[0].kind is DependencyKind.CONDITIONAL
        assert (deps[0].source_field, deps[0].target_field) == ("Amount", "Discount")
        assert deps[0].operator == "AND"

    def test_unknown_fields_produce_no_edges(self):
        assert extract_field_dependencies(CONDITIONAL, ["Type"]) == []

    def test_field_names_matched_case_insensitively(self):
        deps = extract_field_dependencies(CONDITIONAL, ["type", "industry"])
        assert [(d.source_field, d.target_field) for d in deps] == [("type", "industry")]


class TestComplexityAndRisk:
    """Test complexity scoring and risk assessment."""

    def test_simple_low(self):
        analysis = analyze_formula("AnnualRevenue < 0")

        assert analysis.fields == ["AnnualRevenue"]
        assert analysis.complexity is Complexity.SIMPLE
        assert analysis.risk_level is RiskLevel.LOW

    def test_conditional_is_medium_risk(self):
        analysis = analyze_formula(CONDITIONAL)

        assert analysis.complexity is Complexity.MODERATE
        assert analysis.risk_level is RiskLevel.MEDIUM
        assert len(analysis.dependencies) == 1

    def test_date_rules_are_high_risk(self):
        assert analyze_formula("CloseDate < TODAY()").risk_level is RiskLevel.HIGH

    def test_cross_object_rules_are_high_risk(self):
        analysis = analyze_formula("Account.Industry = 'Tech'")
        assert analysis.risk_level is RiskLevel.HIGH
        assert analysis.complexity is Complexity.MODERATE

    def test_prior_value_is_high_risk(self):
        assert analyze_formula("PRIORVALUE(Amount) > Amount").risk_level is RiskLevel.HIGH

    def test_malformed_formula_marked_complex(self):
        analysis = analyze_formula("ISBLANK(Name")

        assert analysis.complexity is Complexity.COMPLEX
        assert analysis.risk_level is RiskLevel.MEDIUM

    @pytest.mark.parametrize("formula", ["", None])
    def test_blank_formula(self, formula):
        analysis = analyze_formula(formula)

        assert analysis.fields == []
        assert analysis.complexity is Complexity.SIMPLE
        assert analysis.risk_level is RiskLevel.LOW


class TestConstraints:
    """Test per-field constraint extraction."""

    def test_less_than_gives_minimum(self):
        (constraint,) = extract_field_constraints(make_rule("AnnualRevenue < 0"))

        assert constraint.kind is ConstraintKind.RANGE
        assert constraint.field == "AnnualRevenue"
        assert constraint.minimum == Decimal(0)
        assert constraint.exclusive_minimum is False
        assert constraint.rule_id == "Rule_1"

    def test_less_or_equal_gives_exclusive_minimum(self):
        (constraint,) = extract_field_constraints(make_rule("Qty <= 0"))
        assert constraint.minimum == Decimal(0)
        assert constraint.exclusive_minimum is True

    def test_greater_than_gives_maximum(self):
        (constraint,) = extract_field_constraints(make_rule("Discount__c > 0.5"))
        assert constraint.maximum == Decimal("0.5")
        assert constraint.exclusive_maximum is False

    def test_greater_or_equal_gives_exclusive_maximum(self):
        (constraint,) = extract_field_constraints(make_rule("Score__c >= 10"))
        assert constraint.maximum == Decimal(10)
        assert constraint.exclusive_maximum is True

    def test_length_limits(self):
        (strict,) = extract_field_constraints(make_rule("LEN(Name) > 60"))
        (inclusive,) = extract_field_constraints(make_rule("LEN(Code) >= 10"))

        assert strict.kind is ConstraintKind.MAX_LENGTH
        assert strict.max_length == 60
        assert inclusive.max_length == 9

    def test_blank_checks_joined_by_or_make_fields_required(self):
        constraints = extract_field_constraints(make_rule("ISBLANK(Email) || ISBLANK(Phone)"))

        assert [c.kind for c in constraints] == [ConstraintKind.REQUIRED, ConstraintKind.REQUIRED]
        assert [c.field for c in constraints] == ["Email", "Phone"]

    def test_conditional_blank_check_is_not_required(self):
        assert extract_field_constraints(make_rule(CONDITIONAL)) == []

    @pytest.mark.parametrize(
        "formula",
        [
            'IF(Type = "Customer", AnnualRevenue < 0, false)',
            'Type = "Customer" && AnnualRevenue < 0',
            'AND(Type = "Customer", LEN(Name) > 10)',
            'CASE(Type, "Customer", Amount, 0) > 100',
        ],
    )
    def test_conditional_formulas_skipped(self, formula):
        assert extract_field_constraints(make_rule(formula)) == []

    @pytest.mark.parametrize("formula", ["NOT(Amount > 0)", "!(Amount > 0)"])
    def test_negated_formulas_skipped(self, formula):
        assert extract_field_constraints(make_rule(formula)) == []

    def test_operators_inside_literals_ignored(self):
        constraints = extract_field_constraints(make_rule('Amount < 0 || Code = "A && !B"'))
        assert [c.field for c in constraints] == ["Amount"]

    def test_not_equal_is_not_negation(self):
        (constraint,) = extract_field_constraints(make_rule('Amount < 0 || Stage != "Closed"'))
        assert constraint.field == "Amount"


class TestObjectAnalysis:
    """Test aggregation across an object's rules."""

    def test_aggregates_rules(self, account_rules):
        result = analyze_object_rules(account_rules, "Account")

        assert result.object_name == "Account"
        assert result.total_rules == 4
        assert result.active_rules == 3
        assert result.all_fields == ["Type", "Industry", "AnnualRevenue", "Name", "Email"]
        assert len(result.all_dependencies) == 1
        assert [a.rule.id for a in result.rules] == [r.id for r in account_rules]
        assert result.overall_complexity is Complexity.SIMPLE
        assert result.overall_risk is RiskLevel.LOW

    def test_constraints_for_ignores_inactive_rules(self, account_rules):
        result = analyze_object_rules(account_rules, "Account")

        revenue = result.constraints_for("annualrevenue")
        assert len(revenue) == 1
        assert revenue[0].minimum == Decimal(0)
        assert result.constraints_for("Email") == []

    def test_no_rules(self):
        result = analyze_object_rules([], "Account")

        assert result.total_rules == 0
        assert result.rules == []
        assert result.overall_complexity is Complexity.SIMPLE
