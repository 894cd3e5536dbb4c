"""
Static analysis of validation rule formulas.

Scans formula text without evaluating it to find referenced fields, inferred
field dependencies, common rule patterns, per-field generation constraints
and complexity/risk signals. The analysis is regex driven and tolerant: any
text yields a result, and malformed formulas are classified as complex.
"""

import logging
import re
from collections.abc import Iterable
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from ..shared.models import (
    Complexity,
    ConstraintKind,
    DependencyKind,
    FieldConstraint,
    FieldDependency,
    RiskLevel,
    ValidationRule,
)

logger = logging.getLogger(__name__)


class RulePattern(str, Enum):
    """Recognized validation rule shapes."""

    REQUIRED_FIELD_CHECK = "REQUIRED_FIELD_CHECK"
    CONDITIONAL_REQUIREMENT = "CONDITIONAL_REQUIREMENT"
    DATE_VALIDATION = "DATE_VALIDATION"
    PICKLIST_VALIDATION = "PICKLIST_VALIDATION"
    RANGE_VALIDATION = "RANGE_VALIDATION"
    FORMAT_VALIDATION = "FORMAT_VALIDATION"
    CROSS_OBJECT_VALIDATION = "CROSS_OBJECT_VALIDATION"


class RuleAnalysis(BaseModel):
    """Static analysis of a single formula."""

    fields: list[str] = Field(default_factory=list, description="Referenced fields")
    dependencies: list[FieldDependency] = Field(default_factory=list)
    complexity: Complexity = Complexity.SIMPLE
    risk_level: RiskLevel = RiskLevel.LOW
    operators: list[str] = Field(default_factory=list)
    patterns: list[RulePattern] = Field(default_factory=list)


class AnalyzedRule(BaseModel):
    """A rule together with its analysis and derived constraints."""

    rule: ValidationRule
    analysis: RuleAnalysis
    constraints: list[FieldConstraint] = Field(default_factory=list)


class ObjectRuleAnalysis(BaseModel):
    """Rule analysis aggregated across all rules of one object."""

    object_name: str | None = None
    total_rules: int = 0
    active_rules: int = 0
    all_fields: list[str] = Field(default_factory=list)
    all_dependencies: list[FieldDependency] = Field(default_factory=list)
    overall_complexity: Complexity = Complexity.SIMPLE
    overall_risk: RiskLevel = RiskLevel.LOW
    patterns: list[RulePattern] = Field(default_factory=list)
    rules: list[AnalyzedRule] = Field(default_factory=list)

    def active(self) -> list[AnalyzedRule]:
        return [analyzed for analyzed in self.rules if analyzed.rule.active]

    def constraints_for(self, field_name: str) -> list[FieldConstraint]:
        """Constraints from active rules that apply to `field_name`."""
        lowered = field_name.lower()
        return [
            constraint
            for analyzed in self.active()
            for constraint in analyzed.constraints
            if constraint.field.lower() == lowered
        ]


# Function names never reported as fields, even when written without "(".
FORMULA_FUNCTIONS = frozenset(
    {
        "ABS", "ADDMONTHS", "AND", "BEGINS", "BLANKVALUE", "CASE", "CEILING",
        "CONTAINS", "DATE", "DATEVALUE", "DATETIME", "DATETIMEVALUE", "DAY",
        "EXP", "FIND", "FLOOR", "IF", "INCLUDES", "ISBLANK", "ISNOTBLANK",
        "ISNULL", "ISNOTNULL", "ISNUMBER", "ISCHANGED", "ISNEW", "LEFT", "LEN",
        "LN", "LOG", "LOWER", "LPAD", "MAX", "MID", "MIN", "MOD", "MONTH", "NOT",
        "NOW", "NULLVALUE", "OR", "POWER", "RIGHT", "ROUND", "RPAD", "SQRT",
        "SUBSTITUTE", "TEXT", "TODAY", "TRIM", "UPPER", "VALUE", "VLOOKUP",
        "WEEKDAY", "YEAR", "ISPICKVAL", "PRIORVALUE", "REGEX",
    }
)

CONSTANTS = frozenset({"TRUE", "FALSE", "NULL"})

FIELD = r"\$?[A-Za-z][A-Za-z0-9_]*(?:\.[A-Za-z][A-Za-z0-9_]*)*"

_STRING_LITERAL = re.compile(r"\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*'")
_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_FIELD_TOKEN = re.compile(rf"(?<![\w.$])({FIELD})(\s*\()?")

_LOGICAL_OPERATORS = re.compile(r"&&|\|\||\bAND\b|\bOR\b|\bNOT\b", re.IGNORECASE)
_COMPARISON_OPERATORS = re.compile(r"[<>=!]+")
_ARITHMETIC_OPERATORS = re.compile(r"[+\-*/]")
COMPARISON_SET = frozenset({"<", ">", "<=", ">=", "!=", "<>", "=", "=="})

_BLANK_CHECK = r"(?:ISBLANK|ISNULL)\s*\(\s*(" + FIELD + r")\s*\)"

# IF(A op v, ISBLANK(B), ...) and AND(A op v, ISBLANK(B))
_REQUIRED_IF_COMPARISON = re.compile(
    r"\b(?:IF|AND)\s*\(\s*(" + FIELD + r")\s*([<>=!]+)\s*([^,]+),\s*" + _BLANK_CHECK,
    re.IGNORECASE,
)
# IF(ISPICKVAL(A, v), ISBLANK(B), ...) and AND(ISPICKVAL(A, v), ISBLANK(B))
_REQUIRED_IF_PICKVAL = re.compile(
    r"\b(?:IF|AND)\s*\(\s*ISPICKVAL\s*\(\s*(" + FIELD + r")\s*,\s*([^)]+)\)\s*,\s*" + _BLANK_CHECK,
    re.IGNORECASE,
)
# (A ...) AND (B ...) with infix or word operators
_CONDITIONAL_INFIX = re.compile(
    r"\((" + FIELD + r")[^)]*\)\s*(AND|OR|&&|\|\|)\s*\((" + FIELD + r")",
    re.IGNORECASE,
)
# AND(A op v, B op w) and OR(...) in function form
_CONDITIONAL_CALL = re.compile(
    r"\b(AND|OR)\s*\(\s*(" + FIELD + r")\s*[<>=!]+\s*[^,()]+,\s*(" + FIELD + r")\s*[<>=!]+",
    re.IGNORECASE,
)

_DATE_FUNCTIONS = re.compile(
    r"\b(?:DATE|DATEVALUE|DATETIME|DATETIMEVALUE|TODAY|NOW|ADDMONTHS)\s*\(", re.IGNORECASE
)
_FORMAT_FUNCTIONS = re.compile(r"\b(?:REGEX|CONTAINS|BEGINS)\s*\(", re.IGNORECASE)
_IF_CALL = re.compile(r"\bIF\s*\(", re.IGNORECASE)

_NUMBER = r"-?\d+(?:\.\d+)?"
_RANGE_COMPARISON = re.compile(
    r"(?<![\w.$])(" + FIELD + r")\s*(<=|>=|<(?!>)|>)\s*(" + _NUMBER + r")(?![\w.])"
)
_LENGTH_COMPARISON = re.compile(
    r"\bLEN\s*\(\s*(" + FIELD + r")\s*\)\s*(>=|>)\s*(\d+)", re.IGNORECASE
)
_REQUIRED_ONLY_REMAINDER = re.compile(r"^(?:\s|\(|\)|,|\|\||\bOR\b)*$", re.IGNORECASE)
_CONDITIONAL_OR_NEGATED = re.compile(r"\b(?:IF|CASE|AND|NOT)\s*\(|&&|!(?!=)", re.IGNORECASE)


def mask_literals(formula: str) -> str:
    """Blank out string literals and comments so their text is never read as fields."""
    without_comments = _COMMENT.sub(" ", formula)
    return _STRING_LITERAL.sub('""', without_comments)


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def extract_fields(formula: str) -> list[str]:
    """Field references in first-seen order; dotted paths are kept whole."""
    masked = mask_literals(formula)
    seen: dict[str, None] = {}
    for match in _FIELD_TOKEN.finditer(masked):
        token, call_paren = match.group(1), match.group(2)
        if call_paren:
            continue
        upper = token.upper()
        if upper in FORMULA_FUNCTIONS or upper in CONSTANTS:
            continue
        seen.setdefault(token, None)
    return list(seen)


def extract_operators(formula: str) -> list[str]:
    """
    Distinct operators in the formula.

    Logical operators are normalized to AND, OR and NOT.
    """
    masked = mask_literals(formula)
    operators: dict[str, None] = {}

    for match in _LOGICAL_OPERATORS.finditer(masked):
        op = match.group(0).upper()
        operators.setdefault({"&&": "AND", "||": "OR"}.get(op, op), None)
    for match in _COMPARISON_OPERATORS.finditer(masked):
        operators.setdefault(match.group(0), None)
    for match in _ARITHMETIC_OPERATORS.finditer(masked):
        operators.setdefault(match.group(0), None)

    return list(operators)


def identify_patterns(formula: str, fields: Iterable[str] | None = None) -> list[RulePattern]:
    """Recognize the common rule shapes present in a formula."""
    masked = mask_literals(formula)
    fields = list(fields) if fields is not None else extract_fields(formula)
    patterns = []

    has_blank_check = re.search(r"\b(?:ISBLANK|ISNULL)\s*\(", masked, re.IGNORECASE)
    if has_blank_check:
        patterns.append(RulePattern.REQUIRED_FIELD_CHECK)
    if _IF_CALL.search(masked) and has_blank_check:
        patterns.append(RulePattern.CONDITIONAL_REQUIREMENT)
    if _DATE_FUNCTIONS.search(masked):
        patterns.append(RulePattern.DATE_VALIDATION)
    if re.search(r"\bISPICKVAL\s*\(", masked, re.IGNORECASE):
        patterns.append(RulePattern.PICKLIST_VALIDATION)
    if re.search(r"[<>]=?", masked) and re.search(r"\d+", masked):
        patterns.append(RulePattern.RANGE_VALIDATION)
    if _FORMAT_FUNCTIONS.search(masked):
        patterns.append(RulePattern.FORMAT_VALIDATION)
    if any("." in field for field in fields):
        patterns.append(RulePattern.CROSS_OBJECT_VALIDATION)

    return patterns


def extract_field_dependencies(formula: str, fields: Iterable[str]) -> list[FieldDependency]:
    """
    Infer dependency edges from conditional-requirement and logical shapes.

    Two passes run over the comment-stripped text: the required_if pass finds
    "when A matches, B must not be blank" shapes, and the conditional pass
    links fields joined by AND/OR. Only fields in `fields` produce edges.
    """
    text = _COMMENT.sub(" ", formula)
    known = {field.lower(): field for field in fields}
    dependencies: list[FieldDependency] = []
    seen: set[tuple[str, str, DependencyKind]] = set()

    def add(source: str, target: str, kind: DependencyKind, **extra) -> None:
        source_name = known.get(source.lower())
        target_name = known.get(target.lower())
        if not source_name or not target_name or source_name == target_name:
            return
        key = (source_name, target_name, kind)
        if key in seen:
            return
        seen.add(key)
        dependencies.append(
            FieldDependency(source_field=source_name, target_field=target_name, kind=kind, **extra)
        )

    for match in _REQUIRED_IF_COMPARISON.finditer(text):
        source, operator, value, target = match.groups()
        value = value.strip()
        add(
            source,
            target,
            DependencyKind.REQUIRED_IF,
            condition=f"{source} {operator} {value}",
            operator=operator,
            value=_strip_quotes(value),
        )

    for match in _REQUIRED_IF_PICKVAL.finditer(text):
        source, value, target = match.groups()
        value = value.strip()
        add(
            source,
            target,
            DependencyKind.REQUIRED_IF,
            condition=f"ISPICKVAL({source}, {value})",
            operator="=",
            value=_strip_quotes(value),
        )

    for match in _CONDITIONAL_INFIX.finditer(text):
        first, operator, second = match.groups()
        op = {"&&": "AND", "||": "OR"}.get(operator, operator.upper())
        add(first, second, DependencyKind.CONDITIONAL, condition=op, operator=op)

    for match in _CONDITIONAL_CALL.finditer(text):
        operator, first, second = match.groups()
        op = operator.upper()
        add(first, second, DependencyKind.CONDITIONAL, condition=op, operator=op)

    return dependencies


def calculate_complexity(formula: str, operators: list[str], patterns: list[RulePattern]) -> Complexity:
    """
    Weighted complexity score bucketed into simple/moderate/complex.

    Length, logical operators, comparison variety, cross-object, conditional
    and date patterns, parenthesis count and IF calls each add to the score;
    4 or more is complex and 2 or more is moderate.
    """
    score = 0

    if len(formula) > 200:
        score += 2
    elif len(formula) > 100:
        score += 1

    if "AND" in operators or "OR" in operators:
        score += 1
    if "NOT" in operators:
        score += 1
    if len([op for op in operators if op in COMPARISON_SET]) > 2:
        score += 1

    if RulePattern.CROSS_OBJECT_VALIDATION in patterns:
        score += 2
    if RulePattern.CONDITIONAL_REQUIREMENT in patterns:
        score += 1
    if RulePattern.DATE_VALIDATION in patterns:
        score += 1

    parens = formula.count("(")
    if parens > 5:
        score += 2
    elif parens > 3:
        score += 1

    if _IF_CALL.search(formula):
        score += 1

    if score >= 4:
        return Complexity.COMPLEX
    if score >= 2:
        return Complexity.MODERATE
    return Complexity.SIMPLE


def assess_risk_level(formula: str, complexity: Complexity, patterns: list[RulePattern]) -> RiskLevel:
    """High for cross-object or date-dependent rules, medium for complex or conditional ones."""
    if (
        RulePattern.CROSS_OBJECT_VALIDATION in patterns
        or RulePattern.DATE_VALIDATION in patterns
        or "PRIORVALUE" in formula.upper()
    ):
        return RiskLevel.HIGH
    if (
        complexity is Complexity.COMPLEX
        or RulePattern.CONDITIONAL_REQUIREMENT in patterns
        or len(patterns) > 3
    ):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def is_malformed(formula: str) -> bool:
    """Cheap structural check: runaway nesting or an unclosed parenthesis."""
    return "(((" in formula or re.search(r"\([^)]*$", formula) is not None


def analyze_formula(formula: str | None, object_name: str | None = None) -> RuleAnalysis:
    """
    Analyze one formula.

    Args:
        formula: Error condition formula text
        object_name: Object the rule belongs to (used for log context)

    Returns:
        RuleAnalysis; blank input yields an empty simple/low analysis
    """
    if not formula or not isinstance(formula, str):
        return RuleAnalysis()

    fields = extract_fields(formula)
    operators = extract_operators(formula)
    patterns = identify_patterns(formula, fields)
    dependencies = extract_field_dependencies(formula, fields)
    complexity = calculate_complexity(formula, operators, patterns)
    risk = assess_risk_level(formula, complexity, patterns)

    if is_malformed(formula):
        logger.debug(f"Formula on {object_name or 'object'} looks malformed, marking complex")
        complexity = Complexity.COMPLEX
        risk = RiskLevel.MEDIUM

    return RuleAnalysis(
        fields=fields,
        dependencies=dependencies,
        complexity=complexity,
        risk_level=risk,
        operators=operators,
        patterns=patterns,
    )


def extract_field_constraints(rule: ValidationRule) -> list[FieldConstraint]:
    """
    Derive per-field generation constraints from a rule's error condition.

    The formula describes invalid records, so `Amount < 0` yields a minimum
    of 0 and `LEN(Code) > 10` a maximum length of 10. A formula made only of
    blank checks joined by OR makes each checked field required. Conditional
    formulas (IF, CASE, AND or &&) and negated ones (NOT or !) give no
    constraints.
    """
    formula = _COMMENT.sub(" ", rule.formula or "")
    if not formula.strip():
        return []

    masked = mask_literals(formula)
    if _CONDITIONAL_OR_NEGATED.search(masked):
        return []

    constraints: list[FieldConstraint] = []

    for match in _RANGE_COMPARISON.finditer(masked):
        field, operator, number = match.groups()
        if field.upper() in FORMULA_FUNCTIONS or field.upper() in CONSTANTS:
            continue
        bound = Decimal(number)
        if operator in ("<", "<="):
            constraints.append(
                FieldConstraint(
                    field=field,
                    kind=ConstraintKind.RANGE,
                    minimum=bound,
                    exclusive_minimum=operator == "<=",
                    rule_id=rule.id,
                )
            )
        else:
            constraints.append(
                FieldConstraint(
                    field=field,
                    kind=ConstraintKind.RANGE,
                    maximum=bound,
                    exclusive_maximum=operator == ">=",
                    rule_id=rule.id,
                )
            )

    for match in _LENGTH_COMPARISON.finditer(masked):
        field, operator, number = match.groups()
        limit = int(number) if operator == ">" else max(int(number) - 1, 0)
        constraints.append(
            FieldConstraint(field=field, kind=ConstraintKind.MAX_LENGTH, max_length=limit, rule_id=rule.id)
        )

    blank_pattern = re.compile(_BLANK_CHECK, re.IGNORECASE)
    required = blank_pattern.findall(masked)
    if required and _REQUIRED_ONLY_REMAINDER.match(blank_pattern.sub(" ", masked)):
        for field in dict.fromkeys(required):
            constraints.append(FieldConstraint(field=field, kind=ConstraintKind.REQUIRED, rule_id=rule.id))

    return constraints


_COMPLEXITY_SCORES = {Complexity.SIMPLE: 1, Complexity.MODERATE: 2, Complexity.COMPLEX: 3}
_RISK_SCORES = {RiskLevel.LOW: 1, RiskLevel.MEDIUM: 2, RiskLevel.HIGH: 3}


def analyze_object_rules(
    rules: Iterable[ValidationRule] | None, object_name: str | None = None
) -> ObjectRuleAnalysis:
    """
    Analyze every rule of one object and aggregate the results.

    Overall complexity and risk come from the average per-rule score
    (simple/low = 1, moderate/medium = 2, complex/high = 3): 2.5 or more is
    complex/high and 1.5 or more is moderate/medium.

    Args:
        rules: Validation rules of the object, active or not
        object_name: Object API name

    Returns:
        ObjectRuleAnalysis with per-rule entries in input order
    """
    rules = list(rules or [])
    if not rules:
        return ObjectRuleAnalysis(object_name=object_name)

    all_fields: dict[str, None] = {}
    all_patterns: dict[RulePattern, None] = {}
    all_dependencies: list[FieldDependency] = []
    analyzed_rules: list[AnalyzedRule] = []
    complexity_score = 0
    risk_score = 0

    for rule in rules:
        analysis = analyze_formula(rule.formula, object_name)
        for field in analysis.fields:
            all_fields.setdefault(field, None)
        for pattern in analysis.patterns:
            all_patterns.setdefault(pattern, None)
        all_dependencies.extend(analysis.dependencies)
        complexity_score += _COMPLEXITY_SCORES[analysis.complexity]
        risk_score += _RISK_SCORES[analysis.risk_level]

        analyzed_rules.append(
            AnalyzedRule(rule=rule, analysis=analysis, constraints=extract_field_constraints(rule))
        )

    avg_complexity = complexity_score / len(rules)
    avg_risk = risk_score / len(rules)

    result = ObjectRuleAnalysis(
        object_name=object_name,
        total_rules=len(rules),
        active_rules=sum(1 for rule in rules if rule.active),
        all_fields=list(all_fields),
        all_dependencies=all_dependencies,
        overall_complexity=(
            Complexity.COMPLEX
            if avg_complexity >= 2.5
            else Complexity.MODERATE if avg_complexity >= 1.5 else Complexity.SIMPLE
        ),
        overall_risk=(
            RiskLevel.HIGH if avg_risk >= 2.5 else RiskLevel.MEDIUM if avg_risk >= 1.5 else RiskLevel.LOW
        ),
        patterns=list(all_patterns),
        rules=analyzed_rules,
    )

    logger.debug(
        f"Analyzed {result.total_rules} rules for {object_name or 'object'}: "
        f"{len(result.all_dependencies)} dependencies, complexity {result.overall_complexity.value}"
    )
    return result
