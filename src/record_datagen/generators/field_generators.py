"""
Type-directed field value generation.

Produces one value per field in the record store's native scalar encodings:
ISO dates and datetimes, ints for integer fields, floats rounded to scale
for decimal/currency/percent fields, ';'-joined multi-select values and
18-character identifiers. Text values use field-name heuristics backed by
Faker, clamped to the field's length.
"""

import random
import re
import string
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from itertools import count
from typing import Any

from faker import Faker

from ..config.models import GenerationSettings
from ..shared.models import ConstraintKind, FieldConstraint, FieldDescriptor, FieldType
from ..shared.records import is_blank

DEFAULT_TEXT_LENGTH = 255
DEFAULT_PRECISION = 18
DEFAULT_NUMERIC_CEILING = Decimal(1_000_000)

EMAIL_DOMAINS = ["example.com", "test.org", "sample.net", "demo.co"]
ID_ALPHABET = string.ascii_letters + string.digits

# Field name heuristics
BIRTH_DATE_PATTERN = re.compile(r"birth|born|dob", re.IGNORECASE)
START_DATE_PATTERN = re.compile(r"start|begin|commence|effective", re.IGNORECASE)
END_DATE_PATTERN = re.compile(r"end|expire|terminate|close", re.IGNORECASE)
NEGATIVE_FLAG_PATTERN = re.compile(
    r"inactive|disabled|invalid|deleted|removed|archived|opt.*out|unsubscribe|donotcall",
    re.IGNORECASE,
)

REQUIRED_FALLBACKS: dict[FieldType, Any] = {
    FieldType.TEXT: "Required Value",
    FieldType.LONG_TEXT: "Required Value",
    FieldType.EMAIL: "required@example.com",
    FieldType.PHONE: "555-0123",
    FieldType.URL: "https://example.com",
    FieldType.INTEGER: 1,
    FieldType.DECIMAL: 1,
    FieldType.CURRENCY: 1,
    FieldType.PERCENT: 1,
    FieldType.BOOLEAN: True,
}


def _utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def format_datetime(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def clamp_text(value: str, max_length: int | None, ellipsis: bool = False) -> str:
    """Truncate to `max_length`, optionally marking the cut with '...'."""
    if max_length is None or len(value) <= max_length:
        return value
    if ellipsis and max_length > 3:
        return value[: max_length - 3] + "..."
    return value[:max_length]


def effective_max_length(field: FieldDescriptor, constraints: Iterable[FieldConstraint] = ()) -> int:
    """Tightest length limit from the descriptor and any length constraints."""
    limits = [field.max_length or DEFAULT_TEXT_LENGTH]
    limits.extend(
        c.max_length for c in constraints if c.kind is ConstraintKind.MAX_LENGTH and c.max_length is not None
    )
    return max(min(limits), 1)


class FieldValueGenerator:
    """
    Generates values for single fields.

    All randomness comes from one seeded `random.Random` and one seeded
    Faker instance, so a generator built with the same seed repeats its
    output exactly.
    """

    def __init__(
        self,
        seed: int | None = 42,
        settings: GenerationSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the generator.

        Args:
            seed: Random seed for reproducibility; None for nondeterministic output
            settings: Generation settings
            clock: Source of "now" for date windows and fallback dates
        """
        self.settings = settings or GenerationSettings()
        self._rng = random.Random(seed)
        self._faker = Faker(self.settings.faker_locale)
        self._faker.seed_instance(seed)
        self._clock = clock or _utc_now
        self._unique_counter = count(1)
        self._issued: dict[str, set[Any]] = {}

    @property
    def rng(self) -> random.Random:
        return self._rng

    def today(self) -> date:
        return self._clock().date()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def generate(
        self,
        field: FieldDescriptor,
        constraints: Iterable[FieldConstraint] = (),
        required: bool | None = None,
        allowed_values: list[str] | None = None,
    ) -> Any:
        """
        Generate a value for `field`.

        Args:
            field: Field to generate
            constraints: Constraints that apply to the field
            required: Overrides the descriptor/constraint required flag
            allowed_values: Restricts select fields to these options

        Returns:
            Value in native encoding, or None for a skipped optional field
        """
        constraints = list(constraints)
        if required is None:
            required = field.required or any(c.kind is ConstraintKind.REQUIRED for c in constraints)
        unique = field.unique or any(c.kind is ConstraintKind.UNIQUE for c in constraints)

        if not required and self._rng.random() < self.settings.null_probability:
            return None

        value = self._generate_by_type(field, constraints, allowed_values, unique)
        if unique and value is not None:
            value = self._make_unique(field, value, constraints)
        return value

    def generate_required(
        self,
        field: FieldDescriptor,
        constraints: Iterable[FieldConstraint] = (),
        allowed_values: list[str] | None = None,
    ) -> Any:
        """Generate a guaranteed non-empty value, using the fallback table if needed."""
        value = self.generate(field, constraints, required=True, allowed_values=allowed_values)
        if is_blank(value):
            return self.required_fallback(field, allowed_values)
        return value

    def required_fallback(self, field: FieldDescriptor, allowed_values: list[str] | None = None) -> Any:
        """Safe non-empty value for a required field."""
        if field.is_select:
            options = allowed_values if allowed_values is not None else field.active_values
            return options[0] if options else "Required"
        if field.type is FieldType.DATE:
            return self.today().isoformat()
        if field.type is FieldType.DATETIME:
            return format_datetime(self._clock())
        if field.type in (FieldType.REFERENCE, FieldType.IDENTIFIER):
            return self.generate_id(reference=field.type is FieldType.REFERENCE)
        value = REQUIRED_FALLBACKS.get(field.type, "Required")
        if isinstance(value, str):
            return clamp_text(value, field.max_length)
        return value

    def minimal_value(self, field: FieldDescriptor) -> Any:
        """Placeholder used when building a minimal fallback record."""
        if field.type in (FieldType.TEXT, FieldType.LONG_TEXT):
            return clamp_text(f"Fallback {field.name}", field.max_length)
        if field.type is FieldType.EMAIL:
            return "fallback@example.com"
        return self.required_fallback(field)

    def fits(
        self,
        field: FieldDescriptor,
        value: Any,
        constraints: Iterable[FieldConstraint] = (),
        allowed_values: list[str] | None = None,
    ) -> bool:
        """Whether an externally suggested value is usable for `field` as-is."""
        if value is None:
            return False

        if field.is_select:
            options = set(allowed_values if allowed_values is not None else field.active_values)
            if field.type is FieldType.MULTI_SELECT:
                parts = str(value).split(self.settings.multi_select_delimiter)
                return bool(parts) and all(part in options for part in parts)
            return str(value) in options

        if field.type.is_numeric:
            if isinstance(value, bool) or not isinstance(value, int | float | Decimal):
                return False
            low, high = self._numeric_bounds(field, list(constraints))
            return low <= Decimal(str(value)) <= high

        if field.type is FieldType.BOOLEAN:
            return isinstance(value, bool)

        if field.type in (FieldType.DATE, FieldType.DATETIME):
            if not isinstance(value, str):
                return False
            try:
                datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return False
            return True

        if not isinstance(value, str) or not value.strip():
            return False
        if field.type is FieldType.EMAIL and "@" not in value:
            return False
        return len(value) <= effective_max_length(field, constraints)

    # ------------------------------------------------------------------
    # Type dispatch
    # ------------------------------------------------------------------

    def _generate_by_type(
        self,
        field: FieldDescriptor,
        constraints: list[FieldConstraint],
        allowed_values: list[str] | None,
        unique: bool,
    ) -> Any:
        field_type = field.type

        if field_type in (FieldType.TEXT, FieldType.LONG_TEXT):
            return self.generate_text(field, constraints)
        if field_type is FieldType.EMAIL:
            return self.generate_email(field, unique)
        if field_type is FieldType.PHONE:
            return self._faker.numerify("###-###-####")
        if field_type is FieldType.URL:
            return clamp_text(self._faker.url(), field.max_length)
        if field_type.is_numeric:
            return self.generate_number(field, constraints)
        if field_type is FieldType.DATE:
            return self.generate_date(field).isoformat()
        if field_type is FieldType.DATETIME:
            return format_datetime(self.generate_datetime(field))
        if field_type is FieldType.BOOLEAN:
            return self.generate_boolean(field)
        if field_type is FieldType.SINGLE_SELECT:
            return self.generate_select(field, allowed_values)
        if field_type is FieldType.MULTI_SELECT:
            return self.generate_multi_select(field, allowed_values)
        if field_type is FieldType.REFERENCE:
            return self.generate_id(reference=True)
        return self.generate_id()

    # ------------------------------------------------------------------
    # Per-type generators
    # ------------------------------------------------------------------

    def generate_text(self, field: FieldDescriptor, constraints: Iterable[FieldConstraint] = ()) -> str:
        """Name-aware text: person and company names, titles, address parts, prose."""
        max_length = effective_max_length(field, constraints)
        name = field.name.lower()

        if "name" in name:
            if "first" in name:
                value = self._faker.first_name()
            elif "last" in name:
                value = self._faker.last_name()
            elif "company" in name or "account" in name:
                value = self._faker.company()
            else:
                value = self._faker.name()
        elif "title" in name or "position" in name:
            value = self._faker.job()
        elif "description" in name or "comment" in name or "notes" in name:
            return clamp_text(" ".join(self._faker.sentences(2)), max_length, ellipsis=True)
        elif "street" in name:
            value = self._faker.street_address()
        elif "city" in name:
            value = self._faker.city()
        elif "state" in name or "province" in name:
            value = self._faker.state()
        elif "postal" in name or "zip" in name:
            value = self._faker.postcode()
        elif "country" in name:
            value = self._faker.country()
        elif "address" in name:
            value = self._faker.street_address()
        else:
            value = " ".join(self._faker.words(self._rng.randint(2, 4)))

        return clamp_text(value, max_length)

    def generate_email(self, field: FieldDescriptor, unique: bool = False) -> str:
        local_part = self._faker.user_name()
        if unique:
            local_part = f"{local_part}_{next(self._unique_counter)}"
        value = f"{local_part}@{self._rng.choice(EMAIL_DOMAINS)}"
        return clamp_text(value, field.max_length)

    def generate_number(self, field: FieldDescriptor, constraints: Iterable[FieldConstraint] = ()) -> int | float:
        """Uniform value within precision/scale and any range constraints."""
        constraints = list(constraints)
        low, high = self._numeric_bounds(field, constraints)
        scale = self._scale(field)
        step = Decimal(1).scaleb(-scale)

        raw = Decimal(str(self._rng.uniform(float(low), float(high))))
        value = min(max(raw.quantize(step, rounding=ROUND_HALF_UP), low), high)

        if field.type is FieldType.INTEGER:
            return int(value)
        return float(value)

    def generate_date(self, field: FieldDescriptor) -> date:
        """Date in a window chosen from the field name."""
        today = self.today()
        name = field.name

        if BIRTH_DATE_PATTERN.search(name):
            start, end = _years_before(today, 65), _years_before(today, 18)
        elif START_DATE_PATTERN.search(name):
            start, end = _years_before(today, 1), today
        elif END_DATE_PATTERN.search(name):
            start, end = today, _years_before(today, -1)
        else:
            start, end = _years_before(today, 1), _years_before(today, -1)

        return start + timedelta(days=self._rng.randint(0, (end - start).days))

    def generate_datetime(self, field: FieldDescriptor) -> datetime:
        day = self.generate_date(field)
        seconds = self._rng.randint(0, 24 * 60 * 60 - 1)
        return datetime(day.year, day.month, day.day) + timedelta(seconds=seconds)

    def generate_boolean(self, field: FieldDescriptor) -> bool:
        """True unless the name reads as a negative flag (inactive, deleted, opted out)."""
        return not NEGATIVE_FLAG_PATTERN.search(field.name)

    def generate_select(self, field: FieldDescriptor, allowed_values: list[str] | None = None) -> str | None:
        options = allowed_values if allowed_values is not None else field.active_values
        if not options:
            return None
        return self._rng.choice(options)

    def generate_multi_select(self, field: FieldDescriptor, allowed_values: list[str] | None = None) -> str | None:
        """One to `multi_select_max` distinct options in declaration order."""
        options = allowed_values if allowed_values is not None else field.active_values
        if not options:
            return None
        k = self._rng.randint(1, min(self.settings.multi_select_max, len(options)))
        chosen = set(self._rng.sample(options, k))
        return self.settings.multi_select_delimiter.join(o for o in options if o in chosen)

    def generate_id(self, reference: bool = False) -> str:
        """18-character identifier; references get a '000' prefix so they read as fake."""
        if reference:
            return "000" + "".join(self._rng.choices(ID_ALPHABET, k=15))
        return "".join(self._rng.choices(ID_ALPHABET, k=18))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _scale(self, field: FieldDescriptor) -> int:
        if field.type is FieldType.INTEGER:
            return 0
        if field.scale is not None:
            return field.scale
        return 2 if field.type is FieldType.CURRENCY else 0

    def _numeric_bounds(self, field: FieldDescriptor, constraints: list[FieldConstraint]) -> tuple[Decimal, Decimal]:
        """Inclusive [low, high] after precision, type defaults and range constraints."""
        scale = self._scale(field)
        step = Decimal(1).scaleb(-scale)
        precision = field.precision or DEFAULT_PRECISION
        max_value = Decimal(10) ** max(precision - scale, 1) - step

        if field.type is FieldType.PERCENT:
            low, high = Decimal(0), Decimal(100)
        elif field.type is FieldType.INTEGER:
            low, high = Decimal(1), min(DEFAULT_NUMERIC_CEILING, max_value)
        else:
            low, high = Decimal(0), min(DEFAULT_NUMERIC_CEILING, max_value)

        for constraint in constraints:
            if constraint.kind is not ConstraintKind.RANGE:
                continue
            if constraint.minimum is not None:
                minimum = constraint.minimum + (step if constraint.exclusive_minimum else 0)
                low = max(low, minimum)
            if constraint.maximum is not None:
                maximum = constraint.maximum - (step if constraint.exclusive_maximum else 0)
                high = min(high, maximum)

        # Keep the window non-empty when constraints move past the defaults
        if low > high:
            if any(c.kind is ConstraintKind.RANGE and c.maximum is not None for c in constraints):
                low = max(high - 100, -max_value)
            else:
                high = min(low + 100, max_value)
        if low > high:
            high = low

        return low.quantize(step, rounding=ROUND_HALF_UP), high.quantize(step, rounding=ROUND_HALF_UP)

    def _make_unique(self, field: FieldDescriptor, value: Any, constraints: list[FieldConstraint]) -> Any:
        """Suffix repeated text values; numbers and other types are returned as-is."""
        issued = self._issued.setdefault(field.name, set())
        if value in issued and isinstance(value, str) and field.type.is_text and not field.is_select:
            max_length = effective_max_length(field, constraints)
            suffix = f"-{next(self._unique_counter)}"
            value = clamp_text(value, max(max_length - len(suffix), 0)) + suffix
        issued.add(value)
        return value


def _years_before(day: date, years: int) -> date:
    """Same calendar day `years` earlier (negative for later); Feb 29 maps to Feb 28."""
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        return day.replace(year=day.year - years, day=28)
