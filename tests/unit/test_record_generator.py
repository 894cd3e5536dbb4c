"""Unit tests for plan-driven record generation."""

import pytest

from record_datagen.config.models import GenerationSettings
from record_datagen.formula.evaluator import FormulaEvaluator
from record_datagen.generators.field_generators import FieldValueGenerator
from record_datagen.generators.picklist_decoder import PicklistDecoder
from record_datagen.generators.planner import GenerationPlanner, GenerationStep
from record_datagen.generators.record_generator import ConstrainedRecordGenerator
from record_datagen.shared.models import (
    DependencyKind,
    FieldDependency,
    FieldDescriptor,
    ObjectSchema,
)

from tests.test_utils import FIXED_NOW


def make_generator(seed: int = 5, **settings) -> ConstrainedRecordGenerator:
    generation = GenerationSettings(**settings)
    values = FieldValueGenerator(seed=seed, settings=generation, clock=lambda: FIXED_NOW)
    return ConstrainedRecordGenerator(
        values, evaluator=FormulaEvaluator(clock=lambda: FIXED_NOW), decoder=PicklistDecoder()
    )


@pytest.fixture
def account_plan(account_schema, account_rules):
    return GenerationPlanner().build_plan(account_schema, account_rules)


class TestGenerateRecord:
    """Test whole-record generation."""

    def test_plan_order_and_fields(self, account_schema, account_plan):
        record = make_generator(null_probability=0.0).generate_record(account_plan, account_schema)

        assert list(record) == account_plan.field_order
        assert record["Name"]
        assert "Id" not in record

    def test_dependent_picklist_follows_controller(self, account_schema, account_plan):
        generator = make_generator(null_probability=0.0)
        valid = {"AU": {"NSW", "VIC"}, "US": {"CA", "TX"}}

        for _ in range(30):
            record = generator.generate_record(account_plan, account_schema)
            assert record["Country"] in valid
            assert record["State"] in valid[record["Country"]]

    def test_optional_dependent_blank_without_valid_options(self, account_schema, account_plan):
        record = make_generator(null_probability=0.0).generate_record(
            account_plan, account_schema, existing={"Country": "NZ"}
        )
        assert record["Country"] == "NZ"
        assert record["State"] is None

    def test_required_dependent_uses_all_options_without_controller(self, country_field, state_field):
        schema = ObjectSchema(
            name="Site",
            fields=[country_field, state_field.model_copy(update={"required": True})],
        )
        plan = GenerationPlanner().build_plan(schema, [])
        generator = make_generator(null_probability=1.0)

        for _ in range(10):
            record = generator.generate_record(plan, schema)
            assert record["Country"] is None
            assert record["State"] in {"NSW", "VIC", "CA", "TX"}

    def test_required_if_condition_forces_value(self, account_schema, account_plan):
        generator = make_generator(null_probability=1.0)

        customer = generator.generate_record(account_plan, account_schema, existing={"Type": "Customer"})
        partner = generator.generate_record(account_plan, account_schema, existing={"Type": "Partner"})

        assert customer["Industry"]
        assert partner["Industry"] is None
        assert customer["Name"] and partner["Name"]

    def test_existing_values_kept(self, account_schema, account_plan):
        record = make_generator().generate_record(
            account_plan, account_schema, existing={"Name": "Keep Me", "Industry": ""}
        )
        assert record["Name"] == "Keep Me"

    def test_same_seed_same_records(self, account_schema, account_plan):
        first = make_generator(seed=21)
        second = make_generator(seed=21)

        for _ in range(5):
            assert first.generate_record(account_plan, account_schema) == second.generate_record(
                account_plan, account_schema
            )


class TestAdvisoryValues:
    """Test advisory candidate values."""

    def test_fitting_candidate_used(self, account_schema, account_plan):
        generator = make_generator(null_probability=1.0, advisory_value_probability=1.0)
        record = generator.generate_record(account_plan, account_schema, advisory={"type": ["Partner"]})
        assert record["Type"] == "Partner"

    def test_unfit_candidates_ignored(self, account_schema, account_plan):
        generator = make_generator(null_probability=1.0, advisory_value_probability=1.0)
        record = generator.generate_record(
            account_plan, account_schema, advisory={"Type": ["Bogus"], "AnnualRevenue": ["lots"]}
        )
        assert record["Type"] is None
        assert record["AnnualRevenue"] is None

    def test_candidate_joins_generated_value(self, account_schema, account_plan):
        generator = make_generator(null_probability=0.0, advisory_value_probability=1.0)
        seen = {
            generator.generate_record(account_plan, account_schema, advisory={"Industry": ["Retail"]})["Industry"]
            for _ in range(30)
        }
        assert "Retail" in seen
        assert len(seen) > 1


class TestFieldLevelOperations:
    """Test single-step helpers used by the repair loop."""

    def test_resolve_picklist_mappings(self, account_schema, account_plan):
        mappings = make_generator().resolve_picklist_mappings(account_schema, account_plan)

        assert list(mappings) == ["State"]
        assert mappings["State"].valid_values("AU") == ["NSW", "VIC"]

    def test_missing_controller_skipped(self, state_field):
        schema = ObjectSchema(name="Site", fields=[state_field])
        plan = GenerationPlanner().build_plan(schema, [])
        assert make_generator().resolve_picklist_mappings(schema, plan) == {}

    def test_repair_field_fills_value(self, account_schema, account_plan):
        generator = make_generator(null_probability=1.0)
        mappings = generator.resolve_picklist_mappings(account_schema, account_plan)
        value = generator.repair_field(account_plan.step_for("Industry"), {"Industry": None}, mappings)
        assert value

    def test_fallback_value(self, account_schema, account_plan):
        generator = make_generator()
        mappings = generator.resolve_picklist_mappings(account_schema, account_plan)

        assert generator.fallback_value(account_plan.step_for("State"), {"Country": "US"}, mappings) == "CA"
        assert generator.fallback_value(account_plan.step_for("Name"), {}, mappings) == "Fallback Name"

    def test_unparseable_condition_falls_back_to_source_presence(self):
        industry = FieldDescriptor(name="Industry", type="string")
        step = GenerationStep(
            field=industry,
            dependencies=[
                FieldDependency(
                    source_field="Type",
                    target_field="Industry",
                    kind=DependencyKind.REQUIRED_IF,
                    condition="Type =",
                )
            ],
        )
        generator = make_generator(null_probability=1.0)

        assert generator.generate_field(step, {"Type": "X"}, {}) is not None
        assert generator.generate_field(step, {"Type": None}, {}) is None
