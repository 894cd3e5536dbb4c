"""
Built-in formula functions.

Each function is registered with its arity. Eager functions receive already
evaluated arguments; lazy functions (IF, AND, OR, CASE, BLANKVALUE,
NULLVALUE) receive the argument nodes plus an evaluate callback so untaken
branches are never evaluated.

Runtime values are limited to str, Decimal, bool, date, datetime and None.
"""

import calendar
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from ..shared.exceptions import FormulaEvaluationError
from ..shared.records import is_blank
from .nodes import Node

Evaluate = Callable[[Node], Any]


@dataclass(frozen=True)
class FunctionContext:
    """Per-evaluation state visible to functions."""

    now: datetime


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    impl: Callable[..., Any]
    min_args: int
    max_args: int | None
    lazy: bool = False

    def check_arity(self, count: int) -> None:
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            expected = (
                str(self.min_args)
                if self.min_args == self.max_args
                else f"{self.min_args}..{self.max_args if self.max_args is not None else 'n'}"
            )
            raise FormulaEvaluationError(f"{self.name} expects {expected} arguments, got {count}")


FUNCTIONS: dict[str, FunctionSpec] = {}


def register(name: str, min_args: int, max_args: int | None = -1, lazy: bool = False):
    """
    Register a function implementation under `name`.

    `max_args` defaults to `min_args`; None means variadic.
    """

    def decorator(func):
        FUNCTIONS[name] = FunctionSpec(
            name=name,
            impl=func,
            min_args=min_args,
            max_args=min_args if max_args == -1 else max_args,
            lazy=lazy,
        )
        return func

    return decorator


def supported_function_names() -> frozenset[str]:
    return frozenset(FUNCTIONS)


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------


def is_truthy(value: Any) -> bool:
    """Boolean reading of a runtime value; None and blank text are false."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0")
    return True


def to_text(value: Any) -> str:
    """Render a runtime value the way TEXT() does."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(value.quantize(Decimal(1)))
        return format(value.normalize(), "f")
    if isinstance(value, datetime):
        return value.isoformat(sep=" ", timespec="seconds")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def to_number(value: Any, function: str) -> Decimal | None:
    """Numeric argument; None propagates, text and booleans are rejected."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise FormulaEvaluationError(f"{function} expects a number", operands=[value])
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int | float):
        return Decimal(str(value))
    raise FormulaEvaluationError(f"{function} expects a number", operands=[value])


def to_int(value: Any, function: str) -> int | None:
    number = to_number(value, function)
    return None if number is None else int(number)


def parse_decimal(text: str) -> Decimal | None:
    try:
        number = Decimal(text.strip().replace(",", ""))
    except (InvalidOperation, AttributeError):
        return None
    return number if number.is_finite() else None


def parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return naive_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def naive_utc(value: datetime) -> datetime:
    """Drop timezone info after converting to UTC."""
    if value.tzinfo is None:
        return value
    return (value - value.utcoffset()).replace(tzinfo=None)


def _text_arg(value: Any) -> str:
    return "" if value is None else to_text(value)


# ---------------------------------------------------------------------------
# Blank handling
# ---------------------------------------------------------------------------


@register("ISBLANK", 1)
def _isblank(ctx, args):
    return is_blank(args[0])


@register("ISNOTBLANK", 1)
def _isnotblank(ctx, args):
    return not is_blank(args[0])


@register("ISNULL", 1)
def _isnull(ctx, args):
    return is_blank(args[0])


@register("ISNOTNULL", 1)
def _isnotnull(ctx, args):
    return not is_blank(args[0])


@register("BLANKVALUE", 2, 2, lazy=True)
def _blankvalue(ctx, evaluate: Evaluate, nodes):
    value = evaluate(nodes[0])
    return evaluate(nodes[1]) if is_blank(value) else value


@register("NULLVALUE", 2, 2, lazy=True)
def _nullvalue(ctx, evaluate: Evaluate, nodes):
    value = evaluate(nodes[0])
    return evaluate(nodes[1]) if is_blank(value) else value


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


@register("LEN", 1)
def _len(ctx, args):
    return Decimal(len(_text_arg(args[0])))


@register("LEFT", 2)
def _left(ctx, args):
    count = to_int(args[1], "LEFT")
    return _text_arg(args[0])[: max(count or 0, 0)]


@register("RIGHT", 2)
def _right(ctx, args):
    count = max(to_int(args[1], "RIGHT") or 0, 0)
    text = _text_arg(args[0])
    return text[max(len(text) - count, 0) :] if count else ""


@register("MID", 3)
def _mid(ctx, args):
    start = max(to_int(args[1], "MID") or 1, 1)
    count = max(to_int(args[2], "MID") or 0, 0)
    return _text_arg(args[0])[start - 1 : start - 1 + count]


@register("UPPER", 1)
def _upper(ctx, args):
    return _text_arg(args[0]).upper()


@register("LOWER", 1)
def _lower(ctx, args):
    return _text_arg(args[0]).lower()


@register("TRIM", 1)
def _trim(ctx, args):
    return _text_arg(args[0]).strip()


@register("CONTAINS", 2)
def _contains(ctx, args):
    return _text_arg(args[1]) in _text_arg(args[0])


@register("BEGINS", 2)
def _begins(ctx, args):
    return _text_arg(args[0]).startswith(_text_arg(args[1]))


@register("FIND", 2, 3)
def _find(ctx, args):
    search, text = _text_arg(args[0]), _text_arg(args[1])
    start = to_int(args[2], "FIND") if len(args) > 2 else 1
    if not search or start is None or start < 1:
        return Decimal(0)
    return Decimal(text.find(search, start - 1) + 1)


@register("SUBSTITUTE", 3)
def _substitute(ctx, args):
    text, old, new = (_text_arg(a) for a in args)
    if not old:
        return text
    return text.replace(old, new)


@register("REGEX", 2)
def _regex(ctx, args):
    pattern = _text_arg(args[1])
    try:
        return re.fullmatch(pattern, _text_arg(args[0])) is not None
    except re.error as e:
        raise FormulaEvaluationError(f"Invalid regular expression: {e}", operands=[pattern]) from e


@register("TEXT", 1)
def _text(ctx, args):
    return to_text(args[0])


@register("VALUE", 1)
def _value(ctx, args):
    if isinstance(args[0], Decimal):
        return args[0]
    number = parse_decimal(_text_arg(args[0]))
    return number if number is not None else Decimal(0)


@register("ISNUMBER", 1)
def _isnumber(ctx, args):
    if isinstance(args[0], Decimal):
        return True
    return args[0] is not None and parse_decimal(_text_arg(args[0])) is not None


# ---------------------------------------------------------------------------
# Picklists
# ---------------------------------------------------------------------------


@register("ISPICKVAL", 2)
def _ispickval(ctx, args):
    return _text_arg(args[0]) == _text_arg(args[1])


@register("INCLUDES", 2)
def _includes(ctx, args):
    wanted = _text_arg(args[1])
    selected = [part.strip() for part in _text_arg(args[0]).split(";")]
    return bool(wanted) and wanted in selected


# ---------------------------------------------------------------------------
# Logic
# ---------------------------------------------------------------------------


@register("AND", 1, None, lazy=True)
def _and(ctx, evaluate: Evaluate, nodes):
    return all(is_truthy(evaluate(node)) for node in nodes)


@register("OR", 1, None, lazy=True)
def _or(ctx, evaluate: Evaluate, nodes):
    return any(is_truthy(evaluate(node)) for node in nodes)


@register("NOT", 1)
def _not(ctx, args):
    return not is_truthy(args[0])


@register("IF", 2, 3, lazy=True)
def _if(ctx, evaluate: Evaluate, nodes):
    if is_truthy(evaluate(nodes[0])):
        return evaluate(nodes[1])
    return evaluate(nodes[2]) if len(nodes) > 2 else None


@register("CASE", 3, None, lazy=True)
def _case(ctx, evaluate: Evaluate, nodes):
    subject = evaluate(nodes[0])
    pairs = nodes[1:]
    default = pairs[-1] if len(pairs) % 2 else None
    if default is not None:
        pairs = pairs[:-1]

    for i in range(0, len(pairs), 2):
        candidate = evaluate(pairs[i])
        if candidate == subject or (
            isinstance(candidate, str) and to_text(subject) == candidate
        ):
            return evaluate(pairs[i + 1])

    return evaluate(default) if default is not None else None


# ---------------------------------------------------------------------------
# Math
# ---------------------------------------------------------------------------


@register("ABS", 1)
def _abs(ctx, args):
    number = to_number(args[0], "ABS")
    return None if number is None else abs(number)


@register("MAX", 1, None)
def _max(ctx, args):
    numbers = [to_number(a, "MAX") for a in args]
    present = [n for n in numbers if n is not None]
    return max(present) if present else None


@register("MIN", 1, None)
def _min(ctx, args):
    numbers = [to_number(a, "MIN") for a in args]
    present = [n for n in numbers if n is not None]
    return min(present) if present else None


@register("ROUND", 2)
def _round(ctx, args):
    number = to_number(args[0], "ROUND")
    digits = to_int(args[1], "ROUND")
    if number is None or digits is None:
        return None
    return number.quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)


@register("FLOOR", 1)
def _floor(ctx, args):
    number = to_number(args[0], "FLOOR")
    return None if number is None else number.to_integral_value(rounding=ROUND_FLOOR)


@register("CEILING", 1)
def _ceiling(ctx, args):
    number = to_number(args[0], "CEILING")
    return None if number is None else number.to_integral_value(rounding=ROUND_CEILING)


@register("MOD", 2)
def _mod(ctx, args):
    number, divisor = to_number(args[0], "MOD"), to_number(args[1], "MOD")
    if number is None or divisor is None:
        return None
    if divisor == 0:
        raise FormulaEvaluationError("MOD by zero", operands=[number, divisor])
    # Result takes the sign of the divisor
    return number - divisor * (number / divisor).to_integral_value(rounding=ROUND_FLOOR)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


@register("TODAY", 0)
def _today(ctx: FunctionContext, args):
    return ctx.now.date()


@register("NOW", 0)
def _now(ctx: FunctionContext, args):
    return ctx.now


@register("DATE", 3)
def _date(ctx, args):
    parts = [to_int(a, "DATE") for a in args]
    if any(p is None for p in parts):
        return None
    try:
        return date(*parts)
    except ValueError as e:
        raise FormulaEvaluationError(f"Invalid date: {e}", operands=parts) from e


@register("DATETIME", 3, 6)
def _datetime(ctx, args):
    parts = [to_int(a, "DATETIME") for a in args]
    if any(p is None for p in parts):
        return None
    try:
        return datetime(*parts)
    except ValueError as e:
        raise FormulaEvaluationError(f"Invalid datetime: {e}", operands=parts) from e


@register("DATEVALUE", 1)
def _datevalue(ctx, args):
    return parse_date(args[0])


@register("DATETIMEVALUE", 1)
def _datetimevalue(ctx, args):
    return parse_datetime(args[0])


def _date_arg(value: Any, function: str) -> date | None:
    if value is None:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise FormulaEvaluationError(f"{function} expects a date", operands=[value])
    return parsed


@register("YEAR", 1)
def _year(ctx, args):
    value = _date_arg(args[0], "YEAR")
    return None if value is None else Decimal(value.year)


@register("MONTH", 1)
def _month(ctx, args):
    value = _date_arg(args[0], "MONTH")
    return None if value is None else Decimal(value.month)


@register("DAY", 1)
def _day(ctx, args):
    value = _date_arg(args[0], "DAY")
    return None if value is None else Decimal(value.day)


@register("WEEKDAY", 1)
def _weekday(ctx, args):
    """1 for Sunday through 7 for Saturday."""
    value = _date_arg(args[0], "WEEKDAY")
    return None if value is None else Decimal((value.weekday() + 1) % 7 + 1)


@register("ADDMONTHS", 2)
def _addmonths(ctx, args):
    months = to_int(args[1], "ADDMONTHS")
    if args[0] is None or months is None:
        return None
    return add_months(args[0], months)


def add_months(value: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    if not isinstance(value, date):
        value = _date_arg(value, "ADDMONTHS")
    month_index = value.year * 12 + value.month - 1 + months
    year, month = divmod(month_index, 12)
    day = min(value.day, calendar.monthrange(year, month + 1)[1])
    return value.replace(year=year, month=month + 1, day=day)


def days_between(later: date, earlier: date) -> Decimal:
    """Difference in days; fractional when either side carries a time."""
    if isinstance(later, datetime) or isinstance(earlier, datetime):
        delta = parse_datetime(later) - parse_datetime(earlier)
        return Decimal(str(delta / timedelta(days=1)))
    return Decimal((later - earlier).days)
