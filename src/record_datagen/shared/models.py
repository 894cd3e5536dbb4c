"""
Core data models for the record data generator.

This module contains the schema snapshot models (field descriptors, picklist
options, object schemas), validation rule inputs, the dependency and
constraint models derived from them, and the diagnostics surfaced by the
best-effort fallbacks.
"""

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

# ================================
# SCHEMA SNAPSHOT MODELS
# ================================


class FieldType(str, Enum):
    """Declared field type of a schema field."""

    TEXT = "text"
    LONG_TEXT = "long_text"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    INTEGER = "integer"
    DECIMAL = "decimal"
    CURRENCY = "currency"
    PERCENT = "percent"
    DATE = "date"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    REFERENCE = "reference"
    IDENTIFIER = "identifier"

    @classmethod
    def from_platform(cls, raw: "str | FieldType") -> "FieldType":
        """
        Map a raw platform type name onto the declared type enumeration.

        Args:
            raw: Platform type name (e.g. "string", "picklist", "double")

        Returns:
            Matching FieldType; unknown names map to TEXT
        """
        if isinstance(raw, FieldType):
            return raw

        key = str(raw).strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            pass

        mapped = _PLATFORM_TYPE_ALIASES.get(key)
        if mapped is None:
            logger.debug(f"Unknown field type '{raw}', treating as text")
            return cls.TEXT
        return mapped

    @property
    def is_text(self) -> bool:
        return self in TEXT_LIKE_TYPES

    @property
    def is_numeric(self) -> bool:
        return self in NUMERIC_TYPES

    @property
    def is_select(self) -> bool:
        return self in (FieldType.SINGLE_SELECT, FieldType.MULTI_SELECT)


_PLATFORM_TYPE_ALIASES = {
    "string": FieldType.TEXT,
    "textarea": FieldType.LONG_TEXT,
    "encryptedstring": FieldType.TEXT,
    "longtext": FieldType.LONG_TEXT,
    "int": FieldType.INTEGER,
    "long": FieldType.INTEGER,
    "double": FieldType.DECIMAL,
    "number": FieldType.DECIMAL,
    "checkbox": FieldType.BOOLEAN,
    "picklist": FieldType.SINGLE_SELECT,
    "combobox": FieldType.SINGLE_SELECT,
    "multipicklist": FieldType.MULTI_SELECT,
    "masterdetail": FieldType.REFERENCE,
    "lookup": FieldType.REFERENCE,
    "id": FieldType.IDENTIFIER,
}

TEXT_LIKE_TYPES = frozenset(
    {
        FieldType.TEXT,
        FieldType.LONG_TEXT,
        FieldType.EMAIL,
        FieldType.PHONE,
        FieldType.URL,
        FieldType.REFERENCE,
        FieldType.IDENTIFIER,
        FieldType.SINGLE_SELECT,
        FieldType.MULTI_SELECT,
    }
)

NUMERIC_TYPES = frozenset(
    {FieldType.INTEGER, FieldType.DECIMAL, FieldType.CURRENCY, FieldType.PERCENT}
)


class PicklistOption(BaseModel):
    """One option of a select field, optionally carrying a validity bitmap."""

    model_config = {"frozen": True, "populate_by_name": True}

    value: str = Field(..., description="Stored option value")
    label: str | None = Field(None, description="Display label")
    active: bool = Field(True, description="Whether the option can be chosen")
    default: bool = Field(
        False, alias="defaultValue", description="Whether the option is the default"
    )
    valid_for: str | None = Field(
        None,
        alias="validFor",
        description="Base64 bitmap of controlling values this option is valid under",
    )


class FieldDescriptor(BaseModel):
    """Immutable description of one field of an object schema."""

    model_config = {"frozen": True, "populate_by_name": True}

    name: str = Field(..., min_length=1, description="API name of the field")
    type: FieldType = Field(..., description="Declared field type")
    label: str | None = Field(None, description="Display label")
    required: bool = Field(False, description="Field must hold a non-empty value")
    unique: bool = Field(False, description="Field values must be unique")
    max_length: int | None = Field(
        None, ge=0, alias="length", description="Maximum text length"
    )
    precision: int | None = Field(None, ge=0, description="Total numeric digits")
    scale: int | None = Field(None, ge=0, description="Digits after the decimal point")
    picklist_values: tuple[PicklistOption, ...] = Field(
        default_factory=tuple,
        alias="picklistValues",
        description="Ordered select options",
    )
    controller_name: str | None = Field(
        None,
        alias="controllerName",
        description="Controlling field of a dependent select",
    )
    createable: bool = Field(True, description="Field can be written on insert")
    calculated: bool = Field(False, description="Field is derived by a formula")
    auto_number: bool = Field(
        False, alias="autoNumber", description="Field is filled by the record store"
    )
    reference_to: tuple[str, ...] = Field(
        default_factory=tuple,
        alias="referenceTo",
        description="Objects a reference field can point at",
    )

    @model_validator(mode="before")
    @classmethod
    def map_platform_nillable(cls, data: Any) -> Any:
        """Derive `required` from the platform's `nillable` flag when absent."""
        if isinstance(data, dict) and "required" not in data and "nillable" in data:
            data = dict(data)
            data["required"] = not data.pop("nillable")
        return data

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v: Any) -> FieldType:
        """Accept declared or raw platform type names."""
        return FieldType.from_platform(v)

    @field_validator("picklist_values", mode="before")
    @classmethod
    def parse_plain_options(cls, v: Any) -> Any:
        """Accept bare option values alongside option dicts."""
        if isinstance(v, (list, tuple)):
            return tuple({"value": option} if isinstance(option, str) else option for option in v)
        return v

    @property
    def active_options(self) -> list[PicklistOption]:
        return [option for option in self.picklist_values if option.active]

    @property
    def active_values(self) -> list[str]:
        return [option.value for option in self.active_options]

    @property
    def is_select(self) -> bool:
        return self.type.is_select

    @property
    def is_numeric(self) -> bool:
        return self.type.is_numeric

    @property
    def is_dependent(self) -> bool:
        return self.is_select and bool(self.controller_name)

    @property
    def is_generatable(self) -> bool:
        """Writable, non-derived, non-auto-generated fields get a generation step."""
        return self.createable and not self.calculated and not self.auto_number


class ObjectSchema(BaseModel):
    """Schema snapshot for one object, loaded once per discovery pass."""

    model_config = {"frozen": True}

    name: str = Field(..., min_length=1, description="Object API name")
    fields: tuple[FieldDescriptor, ...] = Field(
        default_factory=tuple, description="Fields in declaration order"
    )

    def get_field(self, name: str) -> FieldDescriptor | None:
        """Look a field up by exact name, then case-insensitively."""
        for field in self.fields:
            if field.name == name:
                return field
        lowered = name.lower()
        for field in self.fields:
            if field.name.lower() == lowered:
                return field
        return None

    def field_names(self) -> list[str]:
        return [field.name for field in self.fields]

    def generatable_fields(self) -> list[FieldDescriptor]:
        return [field for field in self.fields if field.is_generatable]

    def field_type_map(self) -> dict[str, FieldType]:
        return {field.name: field.type for field in self.fields}


# ================================
# VALIDATION RULE INPUTS
# ================================


class ValidationRule(BaseModel):
    """A declarative rule whose truthy formula blocks record insertion."""

    model_config = {"frozen": True, "populate_by_name": True}

    id: str = Field(..., min_length=1, alias="fullName", description="Rule identifier")
    active: bool = Field(True, description="Whether the rule is enforced")
    formula: str = Field(
        "",
        alias="errorConditionFormula",
        description="Error condition formula; a truthy result is a violation",
    )
    error_message: str = Field(
        "", alias="errorMessage", description="Human-readable error text"
    )
    error_display_field: str | None = Field(
        None, alias="errorDisplayField", description="Field the error is shown on"
    )
    description: str | None = Field(None, description="Rule description")


# ================================
# DERIVED ANALYSIS MODELS
# ================================


class DependencyKind(str, Enum):
    """Kind of inferred dependency between two fields."""

    REQUIRED_IF = "required_if"
    CONDITIONAL = "conditional"


class FieldDependency(BaseModel):
    """Directed edge: the target field is generated after the source field."""

    model_config = {"frozen": True}

    source_field: str = Field(..., description="Field whose value is needed first")
    target_field: str = Field(..., description="Field that depends on the source")
    kind: DependencyKind = Field(..., description="Dependency kind")
    condition: str = Field("", description="Condition text from the formula")
    operator: str | None = Field(None, description="Comparison or logical operator")
    value: str | None = Field(None, description="Compared literal, when present")


class Complexity(str, Enum):
    """Complexity bucket of a formula or rule set."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class RiskLevel(str, Enum):
    """Risk that local evaluation diverges from the record store."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConstraintKind(str, Enum):
    """Kind of per-field generation constraint."""

    REQUIRED = "required"
    UNIQUE = "unique"
    RANGE = "range"
    MAX_LENGTH = "max_length"
    PICKLIST = "picklist"


class FieldConstraint(BaseModel):
    """A constraint a generated field value must honor."""

    model_config = {"frozen": True}

    field: str = Field(..., description="Constrained field")
    kind: ConstraintKind = Field(..., description="Constraint kind")
    minimum: Decimal | None = Field(None, description="Lower bound")
    maximum: Decimal | None = Field(None, description="Upper bound")
    exclusive_minimum: bool = Field(False, description="Lower bound itself is invalid")
    exclusive_maximum: bool = Field(False, description="Upper bound itself is invalid")
    max_length: int | None = Field(None, ge=0, description="Maximum text length")
    rule_id: str | None = Field(None, description="Rule the constraint came from")


# ================================
# DIAGNOSTICS
# ================================


class DiagnosticKind(str, Enum):
    """Recoverable conditions surfaced instead of raised."""

    FORMULA_UNSUPPORTED = "formula_unsupported"
    FORMULA_EVALUATION_FAILURE = "formula_evaluation_failure"
    DEPENDENCY_CYCLE = "dependency_cycle"
    BITMAP_DECODE_FAILURE = "bitmap_decode_failure"
    REPAIR_EXHAUSTED = "repair_exhausted"
    BATCH_TIMEOUT = "batch_timeout"


class Diagnostic(BaseModel):
    """An inspectable record of a best-effort fallback."""

    kind: DiagnosticKind = Field(..., description="Condition that was recovered from")
    message: str = Field(..., description="Human-readable description")
    rule_id: str | None = Field(None, description="Rule involved, if any")
    field: str | None = Field(None, description="Field involved, if any")
    details: dict[str, Any] = Field(default_factory=dict, description="Extra context")


# ================================
# HELPERS
# ================================

FieldMetadata = (
    ObjectSchema
    | Mapping[str, "FieldDescriptor | FieldType | str | Mapping[str, Any]"]
    | Iterable[FieldDescriptor]
    | None
)


def build_field_type_map(metadata: FieldMetadata) -> dict[str, FieldType]:
    """
    Normalize any accepted field metadata shape into a name -> FieldType map.

    Accepts an ObjectSchema, an iterable of FieldDescriptor, or a mapping whose
    values are descriptors, FieldType members, raw type names, or dicts with a
    "type" key.
    """
    if metadata is None:
        return {}

    if isinstance(metadata, ObjectSchema):
        return metadata.field_type_map()

    if isinstance(metadata, Mapping):
        type_map: dict[str, FieldType] = {}
        for name, meta in metadata.items():
            if isinstance(meta, FieldDescriptor):
                type_map[name] = meta.type
            elif isinstance(meta, Mapping):
                type_map[name] = FieldType.from_platform(meta.get("type", "text"))
            else:
                type_map[name] = FieldType.from_platform(meta)
        return type_map

    return {field.name: field.type for field in metadata}


def build_field_descriptor_map(metadata: FieldMetadata) -> dict[str, FieldDescriptor]:
    """Collect the FieldDescriptor objects present in any accepted metadata shape."""
    if metadata is None:
        return {}
    if isinstance(metadata, ObjectSchema):
        return {field.name: field for field in metadata.fields}
    if isinstance(metadata, Mapping):
        descriptors = {}
        for name, meta in metadata.items():
            if isinstance(meta, FieldDescriptor):
                descriptors[name] = meta
            elif isinstance(meta, Mapping):
                try:
                    descriptors[name] = FieldDescriptor(**{"name": name, "type": "text", **meta})
                except ValidationError as e:
                    logger.warning(f"Skipping unusable metadata for field {name}: {e.error_count()} error(s)")
        return descriptors
    return {field.name: field for field in metadata}
