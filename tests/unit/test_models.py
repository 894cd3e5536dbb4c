"""
Test core models for the record data generator.

These tests validate schema snapshot parsing, platform type mapping, rule
inputs and the field metadata helpers.
"""

from decimal import Decimal

import pytest

_hyp = pytest.importorskip("hypothesis")
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from record_datagen.shared.models import (
    ConstraintKind,
    FieldConstraint,
    FieldDescriptor,
    FieldType,
    ObjectSchema,
    PicklistOption,
    ValidationRule,
    build_field_descriptor_map,
    build_field_type_map,
)
from record_datagen.shared.records import is_blank, lookup_field


class TestFieldType:
    """Test platform type mapping."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("string", FieldType.TEXT),
            ("TextArea", FieldType.LONG_TEXT),
            ("int", FieldType.INTEGER),
            ("double", FieldType.DECIMAL),
            ("currency", FieldType.CURRENCY),
            ("checkbox", FieldType.BOOLEAN),
            ("picklist", FieldType.SINGLE_SELECT),
            ("multipicklist", FieldType.MULTI_SELECT),
            ("lookup", FieldType.REFERENCE),
            ("id", FieldType.IDENTIFIER),
            ("single-select", FieldType.SINGLE_SELECT),
            ("geolocation", FieldType.TEXT),
        ],
    )
    def test_from_platform(self, raw, expected):
        assert FieldType.from_platform(raw) is expected

    def test_member_passes_through(self):
        assert FieldType.from_platform(FieldType.DATE) is FieldType.DATE

    @given(raw=st.text(max_size=30))
    def test_from_platform_never_raises(self, raw: str):
        assert isinstance(FieldType.from_platform(raw), FieldType)

    def test_type_families(self):
        assert FieldType.CURRENCY.is_numeric
        assert FieldType.EMAIL.is_text
        assert FieldType.MULTI_SELECT.is_select
        assert not FieldType.BOOLEAN.is_text


class TestFieldDescriptor:
    """Test field descriptor parsing."""

    def test_platform_aliases(self):
        field = FieldDescriptor(
            name="State",
            type="picklist",
            length=20,
            controllerName="Country",
            picklistValues=[{"value": "CA", "validFor": "gA==", "defaultValue": True}],
            referenceTo=[],
        )

        assert field.max_length == 20
        assert field.controller_name == "Country"
        assert field.picklist_values[0].valid_for == "gA=="
        assert field.picklist_values[0].default is True
        assert field.is_dependent

    def test_nillable_maps_to_required(self):
        assert FieldDescriptor(name="Name", type="string", nillable=False).required is True
        assert FieldDescriptor(name="Name", type="string", nillable=True).required is False
        assert FieldDescriptor(name="Name", type="string", nillable=True, required=True).required is True

    def test_active_options(self, country_field):
        assert country_field.active_values == ["AU", "US"]
        assert [o.value for o in country_field.picklist_values] == ["AU", "US", "NZ"]

    def test_generatable(self):
        assert FieldDescriptor(name="Name", type="string").is_generatable
        assert not FieldDescriptor(name="Id", type="id", createable=False).is_generatable
        assert not FieldDescriptor(name="Score", type="double", calculated=True).is_generatable
        assert not FieldDescriptor(name="Number", type="string", autoNumber=True).is_generatable

    def test_frozen(self):
        field = FieldDescriptor(name="Name", type="string")
        with pytest.raises(ValidationError):
            field.required = True

    @pytest.mark.parametrize("kwargs", [{"name": "", "type": "string"}, {"name": "X", "type": "int", "length": -1}])
    def test_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            FieldDescriptor(**kwargs)

    def test_option_requires_value(self):
        with pytest.raises(ValidationError):
            PicklistOption(label="Missing")


class TestObjectSchema:
    def test_get_field_exact_then_case_insensitive(self, account_schema):
        assert account_schema.get_field("Industry").name == "Industry"
        assert account_schema.get_field("annualrevenue").name == "AnnualRevenue"
        assert account_schema.get_field("Missing") is None

    def test_generatable_fields(self, account_schema):
        names = [f.name for f in account_schema.generatable_fields()]
        assert "Id" not in names
        assert "Score__c" not in names
        assert names[0] == "Name"

    def test_field_type_map(self, account_schema):
        types = account_schema.field_type_map()
        assert types["AnnualRevenue"] is FieldType.CURRENCY
        assert types["IsActive__c"] is FieldType.BOOLEAN


class TestValidationRule:
    def test_platform_aliases(self):
        rule = ValidationRule(
            fullName="Account.Check",
            errorConditionFormula="ISBLANK(Name)",
            errorMessage="Name required",
            errorDisplayField="Name",
        )

        assert rule.id == "Account.Check"
        assert rule.formula == "ISBLANK(Name)"
        assert rule.error_display_field == "Name"
        assert rule.active is True

    def test_id_required(self):
        with pytest.raises(ValidationError):
            ValidationRule(errorConditionFormula="true")


class TestFieldConstraint:
    def test_bounds_are_decimals(self):
        constraint = FieldConstraint(field="Amount", kind=ConstraintKind.RANGE, minimum=0, maximum="10.5")
        assert constraint.minimum == Decimal(0)
        assert constraint.maximum == Decimal("10.5")


class TestMetadataHelpers:
    """Test normalization of the accepted field metadata shapes."""

    def test_type_map_from_schema_and_iterable(self, account_schema):
        assert build_field_type_map(account_schema)["Name"] is FieldType.TEXT
        assert build_field_type_map(list(account_schema.fields))["Type"] is FieldType.SINGLE_SELECT
        assert build_field_type_map(None) == {}

    def test_type_map_from_mapping(self):
        types = build_field_type_map(
            {
                "Amount": "currency",
                "Flag": FieldType.BOOLEAN,
                "Name": {"type": "string", "required": True},
                "Other": {},
                "Email": FieldDescriptor(name="Email", type="email"),
            }
        )

        assert types == {
            "Amount": FieldType.CURRENCY,
            "Flag": FieldType.BOOLEAN,
            "Name": FieldType.TEXT,
            "Other": FieldType.TEXT,
            "Email": FieldType.EMAIL,
        }

    def test_descriptor_map_from_mapping(self):
        descriptors = build_field_descriptor_map(
            {"Name": {"type": "string", "required": True}, "Amount": "currency"}
        )

        assert list(descriptors) == ["Name"]
        assert descriptors["Name"].required is True

    def test_descriptor_map_from_partial_mapping(self):
        descriptors = build_field_descriptor_map(
            {
                "Name": {"required": True},
                "Stage": {"type": "picklist", "picklistValues": ["Open", {"value": "Closed", "active": False}]},
                "Broken": {"length": -1},
            }
        )

        assert list(descriptors) == ["Name", "Stage"]
        assert descriptors["Name"].type is FieldType.TEXT
        assert descriptors["Stage"].active_values == ["Open"]


class TestRecordHelpers:
    def test_lookup_field(self):
        record = {"Name": "Acme", "Owner": {"Email": "a@example.com"}}

        assert lookup_field(record, "name") == "Acme"
        assert lookup_field(record, "Owner.email") == "a@example.com"
        assert lookup_field(record, "Owner.Phone") is None
        assert lookup_field(record, "Name.First") is None
        assert lookup_field(None, "Name") is None

    @pytest.mark.parametrize("value,expected", [(None, True), ("", True), ("  ", True), ("x", False), (0, False)])
    def test_is_blank(self, value, expected):
        assert is_blank(value) is expected
