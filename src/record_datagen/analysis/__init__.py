"""Static analysis of validation rules."""

from .rule_parser import (
    AnalyzedRule,
    ObjectRuleAnalysis,
    RuleAnalysis,
    RulePattern,
    analyze_formula,
    analyze_object_rules,
    assess_risk_level,
    calculate_complexity,
    extract_field_constraints,
    extract_field_dependencies,
    extract_fields,
    extract_operators,
    identify_patterns,
)

__all__ = [
    "AnalyzedRule",
    "ObjectRuleAnalysis",
    "RuleAnalysis",
    "RulePattern",
    "analyze_formula",
    "analyze_object_rules",
    "assess_risk_level",
    "calculate_complexity",
    "extract_field_constraints",
    "extract_field_dependencies",
    "extract_fields",
    "extract_operators",
    "identify_patterns",
]
