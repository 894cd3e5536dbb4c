"""
Formula evaluator for declarative validation rules.

Evaluates a rule's error-condition formula against a candidate record. A
truthy result means the rule is violated. The evaluator is advisory (the
record store stays authoritative), so `evaluate` never raises; callers that
need the failure reason use `evaluate_strict`.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal, DivisionByZero, InvalidOperation
from typing import Any

from ..shared.cache import LRUCache
from ..shared.exceptions import (
    FormulaError,
    FormulaEvaluationError,
    FormulaSyntaxError,
    FormulaUnsupportedError,
)
from ..shared.models import FieldMetadata, FieldType, build_field_type_map
from ..shared.records import lookup_field
from .functions import (
    FUNCTIONS,
    FunctionContext,
    days_between,
    is_truthy,
    parse_date,
    parse_datetime,
    parse_decimal,
    supported_function_names,
    to_text,
)
from .nodes import BinaryOp, Call, FieldRef, Literal, Node, UnaryOp, field_references
from .parser import Parser
from .tokenizer import called_functions, tokenize

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

TIME_FUNCTIONS = frozenset({"TODAY", "NOW"})


def _utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class FormulaEvaluator:
    """
    Tree-walking evaluator for validation formulas.

    Parsed syntax trees are cached per instance, keyed by formula text.
    Instances are safe to share between worker threads.
    """

    def __init__(self, clock: Clock | None = None, parse_cache_size: int = 512):
        """
        Initialize the evaluator.

        Args:
            clock: Source of the current time for TODAY() and NOW(); defaults
                to naive UTC wall-clock time
            parse_cache_size: Maximum number of parsed formulas kept
        """
        self._clock = clock or _utc_now
        self._parse_cache: LRUCache[str, Node] = LRUCache(max_size=parse_cache_size)
        self._scan_cache: LRUCache[str, tuple[str, ...]] = LRUCache(max_size=parse_cache_size)
        self._time_cache: LRUCache[str, frozenset[str]] = LRUCache(max_size=parse_cache_size)

    @property
    def supported_functions(self) -> frozenset[str]:
        return supported_function_names()

    def now(self) -> datetime:
        """Current time as TODAY() and NOW() see it."""
        return self._clock()

    # ------------------------------------------------------------------
    # Static inspection
    # ------------------------------------------------------------------

    def unsupported_functions(self, formula: str) -> list[str]:
        """
        Names of functions called by `formula` that this evaluator lacks.

        Works from the token stream, so it also answers for formulas the
        parser would reject. Text that cannot be tokenized reports no
        functions; evaluation will flag it as a syntax error instead.
        """
        names, _ = self._scan_cache.get_or_compute(formula, lambda: _scan_unsupported(formula))
        return list(names)

    def time_functions(self, formula: str) -> frozenset[str]:
        """Which of TODAY and NOW the formula calls; its outcome can change with the clock."""
        names, _ = self._time_cache.get_or_compute(formula, lambda: _scan_time_functions(formula))
        return names

    def can_evaluate(self, formula: str) -> bool:
        """True when every function the formula calls is supported."""
        if not formula or not formula.strip():
            return False
        return not self.unsupported_functions(formula)

    def parse(self, formula: str) -> Node:
        """
        Parse a formula, reusing the cached tree when available.

        Raises:
            FormulaSyntaxError: When the formula is malformed
        """
        node, _ = self._parse_cache.get_or_compute(formula, lambda: Parser(formula).parse())
        return node

    def referenced_fields(self, formula: str) -> list[str]:
        """Field references of a formula, or an empty list when it does not parse."""
        try:
            return field_references(self.parse(formula))
        except FormulaSyntaxError:
            return []

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_value(
        self,
        formula: str,
        record: Mapping[str, Any],
        field_types: FieldMetadata | None = None,
    ) -> Any:
        """
        Evaluate a formula and return its raw value.

        Args:
            formula: Formula text
            record: Candidate record
            field_types: Declared field types used to coerce record values

        Returns:
            str, Decimal, bool, date, datetime or None

        Raises:
            FormulaSyntaxError: Malformed formula
            FormulaUnsupportedError: Formula calls an unsupported function
            FormulaEvaluationError: Runtime failure such as a type mismatch
        """
        unsupported = self.unsupported_functions(formula)
        if unsupported:
            raise FormulaUnsupportedError(unsupported, formula)

        node = self.parse(formula)
        run = _Evaluation(
            formula=formula,
            record=record,
            field_types=build_field_type_map(field_types) if field_types else {},
            context=FunctionContext(now=self._clock()),
        )
        try:
            return run.eval(node)
        except FormulaEvaluationError as e:
            if e.formula is None:
                raise FormulaEvaluationError(str(e), formula) from e
            raise
        except RecursionError:
            raise FormulaEvaluationError("Formula too deeply nested to evaluate", formula) from None

    def evaluate_strict(
        self,
        formula: str,
        record: Mapping[str, Any],
        field_types: FieldMetadata | None = None,
    ) -> bool:
        """Evaluate to a boolean, raising on any formula error."""
        return is_truthy(self.evaluate_value(formula, record, field_types))

    def evaluate(
        self,
        formula: str,
        record: Mapping[str, Any],
        field_types: FieldMetadata | None = None,
    ) -> bool:
        """
        Evaluate an error-condition formula against a record.

        Never raises: any formula error is logged with the offending formula
        and reported as False (rule not violated).

        Returns:
            True when the formula holds, i.e. the rule is violated
        """
        try:
            return self.evaluate_strict(formula, record, field_types)
        except FormulaUnsupportedError as e:
            logger.debug(f"Skipping unsupported formula: {e}")
            return False
        except FormulaError as e:
            logger.warning(f"Formula evaluation failed, treating as not violated: {e}")
            return False
        except (ArithmeticError, TypeError, ValueError) as e:
            logger.warning(
                f"Unexpected error evaluating formula, treating as not violated: {e} (Formula: {formula})"
            )
            return False


def _scan_time_functions(formula: str) -> frozenset[str]:
    try:
        tokens = tokenize(formula)
    except FormulaSyntaxError:
        return frozenset()
    return frozenset(called_functions(tokens)) & TIME_FUNCTIONS


def _scan_unsupported(formula: str) -> tuple[str, ...]:
    try:
        tokens = tokenize(formula)
    except FormulaSyntaxError:
        return ()

    supported = supported_function_names()
    unsupported: dict[str, None] = {}
    for name in called_functions(tokens):
        if name not in supported:
            unsupported.setdefault(name, None)
    return tuple(unsupported)


class _Evaluation:
    """State for a single evaluation pass."""

    def __init__(
        self,
        formula: str,
        record: Mapping[str, Any],
        field_types: dict[str, FieldType],
        context: FunctionContext,
    ):
        self.formula = formula
        self.record = record
        self.field_types = field_types
        self.lowered_types = {name.lower(): ftype for name, ftype in field_types.items()}
        self.context = context

    def eval(self, node: Node) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, FieldRef):
            return self.resolve_field(node.name)
        if isinstance(node, Call):
            return self.call(node)
        if isinstance(node, UnaryOp):
            return self.unary(node)
        if isinstance(node, BinaryOp):
            return self.binary(node)
        raise FormulaEvaluationError(f"Unknown node {type(node).__name__}")

    # -- fields --------------------------------------------------------

    def resolve_field(self, name: str) -> Any:
        value = lookup_field(self.record, name)
        field_type = self.field_types.get(name) or self.lowered_types.get(name.lower())
        return coerce_value(value, field_type)

    # -- calls ---------------------------------------------------------

    def call(self, node: Call) -> Any:
        spec = FUNCTIONS.get(node.name)
        if spec is None:
            raise FormulaUnsupportedError([node.name], self.formula)

        spec.check_arity(len(node.args))
        if spec.lazy:
            return spec.impl(self.context, self.eval, node.args)
        return spec.impl(self.context, [self.eval(arg) for arg in node.args])

    # -- operators -----------------------------------------------------

    def unary(self, node: UnaryOp) -> Any:
        value = self.eval(node.operand)
        if node.operator == "!":
            return not is_truthy(value)
        if value is None:
            return None
        if isinstance(value, Decimal):
            return -value
        raise FormulaEvaluationError("Cannot negate non-numeric value", operands=[value])

    def binary(self, node: BinaryOp) -> Any:
        op = node.operator

        if op == "&&":
            return is_truthy(self.eval(node.left)) and is_truthy(self.eval(node.right))
        if op == "||":
            return is_truthy(self.eval(node.left)) or is_truthy(self.eval(node.right))

        left = self.eval(node.left)
        right = self.eval(node.right)

        if op == "&":
            return to_text(left) + to_text(right)
        if op in ("=", "=="):
            return values_equal(left, right)
        if op in ("<>", "!="):
            return not values_equal(left, right)
        if op in ("<", "<=", ">", ">="):
            return compare(op, left, right)
        return arithmetic(op, left, right)


# ---------------------------------------------------------------------------
# Value semantics
# ---------------------------------------------------------------------------


def coerce_value(value: Any, field_type: FieldType | None) -> Any:
    """Convert a raw record value into the evaluator's value domain."""
    if value is None:
        return None

    if field_type is None:
        return infer_value(value)

    if field_type.is_text or field_type.is_select:
        if isinstance(value, list | tuple | set):
            return ";".join(str(v) for v in value)
        return to_text(infer_value(value)) if not isinstance(value, str) else value

    if field_type.is_numeric:
        if isinstance(value, str):
            return parse_decimal(value) if value.strip() else None
        return infer_value(value)

    if field_type is FieldType.BOOLEAN:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)

    if field_type is FieldType.DATE:
        return parse_date(value) if isinstance(value, str) else infer_value(value)

    if field_type is FieldType.DATETIME:
        return parse_datetime(value) if isinstance(value, str) else infer_value(value)

    return infer_value(value)


def infer_value(value: Any) -> Any:
    """Map a Python value onto the nearest runtime type."""
    if value is None or isinstance(value, bool | str | Decimal):
        return value
    if isinstance(value, int | float):
        return Decimal(str(value))
    if isinstance(value, datetime):
        return parse_datetime(value)
    if isinstance(value, date):
        return value
    if isinstance(value, list | tuple | set):
        return ";".join(str(v) for v in value)
    return str(value)


def _align_dates(left: Any, right: Any) -> tuple[Any, Any]:
    """Promote a date to midnight when compared with a datetime."""
    if isinstance(left, datetime) and isinstance(right, date) and not isinstance(right, datetime):
        return left, parse_datetime(right)
    if isinstance(right, datetime) and isinstance(left, date) and not isinstance(left, datetime):
        return parse_datetime(left), right
    return left, right


def _comparable(left: Any, right: Any) -> tuple[Any, Any] | None:
    """Bring two values onto a common type, or None when they have none."""
    left, right = _align_dates(left, right)

    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool):
            return left, right
        return None
    if isinstance(left, Decimal) and isinstance(right, Decimal):
        return left, right
    if isinstance(left, date) and isinstance(right, date):
        return left, right
    if isinstance(left, str) and isinstance(right, str):
        return left, right

    # Text against a number or date compares on the parsed text
    if isinstance(left, str) and isinstance(right, Decimal):
        parsed = parse_decimal(left)
        return (parsed, right) if parsed is not None else None
    if isinstance(left, Decimal) and isinstance(right, str):
        parsed = parse_decimal(right)
        return (left, parsed) if parsed is not None else None
    if isinstance(left, str) and isinstance(right, date):
        parsed = parse_datetime(left) if isinstance(right, datetime) else parse_date(left)
        return (parsed, right) if parsed is not None else None
    if isinstance(left, date) and isinstance(right, str):
        parsed = parse_datetime(right) if isinstance(left, datetime) else parse_date(right)
        return (left, parsed) if parsed is not None else None
    return None


def values_equal(left: Any, right: Any) -> bool:
    """Equality with blank text and null treated alike."""
    if left is None or right is None:
        return (left is None or left == "") and (right is None or right == "")
    pair = _comparable(left, right)
    if pair is None:
        return False
    return pair[0] == pair[1]


def compare(op: str, left: Any, right: Any) -> bool:
    """Relational comparison; any null operand yields False."""
    if left is None or right is None:
        return False
    pair = _comparable(left, right)
    if pair is None:
        raise FormulaEvaluationError(f"Cannot compare values with '{op}'", operands=[left, right])

    a, b = pair
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def arithmetic(op: str, left: Any, right: Any) -> Any:
    """Arithmetic on numbers, plus date +/- days and date differences."""
    if left is None or right is None:
        return None

    if isinstance(left, str) and not isinstance(right, str):
        left = parse_decimal(left) if parse_decimal(left) is not None else left
    if isinstance(right, str) and not isinstance(left, str):
        right = parse_decimal(right) if parse_decimal(right) is not None else right

    if isinstance(left, date) and isinstance(right, Decimal) and op in ("+", "-"):
        days = right if op == "+" else -right
        return _shift_days(left, days)
    if isinstance(left, Decimal) and isinstance(right, date) and op == "+":
        return _shift_days(right, left)
    if isinstance(left, date) and isinstance(right, date) and op == "-":
        return days_between(left, right)

    if not (isinstance(left, Decimal) and isinstance(right, Decimal)):
        raise FormulaEvaluationError(f"Operator '{op}' expects numbers", operands=[left, right])

    try:
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op == "/":
            if right == 0:
                raise FormulaEvaluationError("Division by zero", operands=[left, right])
            return left / right
        if op == "^":
            return left**right
    except (InvalidOperation, DivisionByZero, OverflowError) as e:
        raise FormulaEvaluationError(f"Arithmetic error: {e}", operands=[left, right]) from e

    raise FormulaEvaluationError(f"Unknown operator '{op}'")


def _shift_days(value: date, days: Decimal) -> date:
    if isinstance(value, datetime):
        return value + timedelta(days=float(days))
    return value + timedelta(days=int(days))

