"""
Constrained record generation.

Executes a GenerationPlan one step at a time against an in-progress
record, so controlling fields and dependency sources always hold their
values before the fields that depend on them are generated.
"""

import logging
from collections.abc import Mapping
from typing import Any

from ..config.models import GenerationSettings
from ..formula.evaluator import FormulaEvaluator
from ..shared.exceptions import FormulaError
from ..shared.metrics import metrics_collector
from ..shared.models import DependencyKind, FieldDependency, ObjectSchema
from ..shared.records import CandidateRecord, is_blank, lookup_field
from .field_generators import FieldValueGenerator
from .picklist_decoder import PicklistDecoder, PicklistMapping
from .planner import GenerationPlan, GenerationStep

logger = logging.getLogger(__name__)

AdvisoryValues = Mapping[str, list[Any]]


class ConstrainedRecordGenerator:
    """
    Produces candidate records by walking a generation plan.

    Dependent picklists draw from the decoded mapping for the controlling
    value already on the record. A required_if dependency whose condition
    holds on the in-progress record sends its target through the
    required-value path.
    """

    def __init__(
        self,
        value_generator: FieldValueGenerator,
        evaluator: FormulaEvaluator | None = None,
        decoder: PicklistDecoder | None = None,
        settings: GenerationSettings | None = None,
    ):
        self.values = value_generator
        self.evaluator = evaluator or FormulaEvaluator()
        self.decoder = decoder or PicklistDecoder()
        self.settings = settings or value_generator.settings

    def resolve_picklist_mappings(self, schema: ObjectSchema, plan: GenerationPlan) -> dict[str, PicklistMapping]:
        """Decode the mapping of every dependent select field in the plan, keyed by field name."""
        mappings: dict[str, PicklistMapping] = {}
        for step in plan.steps:
            field = step.field
            if not field.is_dependent:
                continue
            controller = schema.get_field(field.controller_name)
            if controller is None:
                logger.warning(f"Controlling field {field.controller_name} of {field.name} is not in {schema.name}")
                continue
            mappings[field.name] = self.decoder.decode(field, controller)
        return mappings

    def generate_record(
        self,
        plan: GenerationPlan,
        schema: ObjectSchema,
        mappings: dict[str, PicklistMapping] | None = None,
        advisory: AdvisoryValues | None = None,
        existing: Mapping[str, Any] | None = None,
    ) -> CandidateRecord:
        """
        Generate one candidate record.

        Args:
            plan: Generation plan for the object
            schema: Object schema the plan was built from
            mappings: Pre-resolved dependent picklist mappings
            advisory: Extra candidate values per field
            existing: Values to keep as-is; their steps are skipped

        Returns:
            Candidate record in plan order
        """
        if mappings is None:
            mappings = self.resolve_picklist_mappings(schema, plan)

        record: CandidateRecord = dict(existing or {})
        for step in plan.steps:
            if step.name in record and not is_blank(record[step.name]):
                continue
            record[step.name] = self.generate_field(step, record, mappings, advisory)

        metrics_collector.record_generated(plan.object_name)
        return record

    def generate_field(
        self,
        step: GenerationStep,
        record: CandidateRecord,
        mappings: Mapping[str, PicklistMapping],
        advisory: AdvisoryValues | None = None,
    ) -> Any:
        """Generate the value for one step given the fields generated so far."""
        field = step.field
        required = step.required or self._required_by_dependency(step, record)
        allowed = self._allowed_values(step, record, mappings, required)

        if required:
            value = self.values.generate_required(field, step.constraints, allowed_values=allowed)
        else:
            value = self.values.generate(field, step.constraints, required=False, allowed_values=allowed)

        candidates = self._advisory_candidates(step, advisory, allowed)
        if candidates and self.values.rng.random() < self.settings.advisory_value_probability:
            pool = candidates if value is None else [value, *candidates]
            value = self.values.rng.choice(pool)

        return value

    def repair_field(
        self,
        step: GenerationStep,
        record: CandidateRecord,
        mappings: Mapping[str, PicklistMapping],
    ) -> Any:
        """
        Regenerate one field through the required-value path.

        Only the field itself is regenerated; other fields keep their values.
        """
        allowed = self._allowed_values(step, record, mappings, required=True)
        return self.values.generate_required(step.field, step.constraints, allowed_values=allowed)

    def fallback_value(
        self,
        step: GenerationStep,
        record: CandidateRecord,
        mappings: Mapping[str, PicklistMapping],
    ) -> Any:
        """Safe placeholder for a required field of a minimal fallback record."""
        allowed = self._allowed_values(step, record, mappings, required=True)
        if allowed:
            return allowed[0]
        return self.values.minimal_value(step.field)

    def _allowed_values(
        self,
        step: GenerationStep,
        record: CandidateRecord,
        mappings: Mapping[str, PicklistMapping],
        required: bool,
    ) -> list[str] | None:
        field = step.field
        mapping = mappings.get(field.name)
        if mapping is None:
            return None

        allowed = mapping.valid_values(lookup_field(record, mapping.controlling_field))
        if not allowed and required:
            # No controlling value to follow; a required field still needs an option
            logger.debug(f"No valid {field.name} options for current {mapping.controlling_field}; using all options")
            return field.active_values
        return allowed

    def _required_by_dependency(self, step: GenerationStep, record: CandidateRecord) -> bool:
        for dependency in step.incoming():
            if dependency.kind is DependencyKind.REQUIRED_IF and self._condition_holds(dependency, record):
                return True
        return False

    def _condition_holds(self, dependency: FieldDependency, record: CandidateRecord) -> bool:
        """Evaluate a required_if condition; without one, a filled source triggers it."""
        if dependency.condition:
            try:
                return self.evaluator.evaluate_strict(dependency.condition, record)
            except (FormulaError, ArithmeticError, TypeError, ValueError) as e:
                logger.debug(f"Could not evaluate condition '{dependency.condition}': {e}")
        return not is_blank(lookup_field(record, dependency.source_field))

    def _advisory_candidates(
        self,
        step: GenerationStep,
        advisory: AdvisoryValues | None,
        allowed: list[str] | None,
    ) -> list[Any]:
        if not advisory:
            return []
        suggested = advisory.get(step.name)
        if suggested is None:
            lowered = step.name.lower()
            suggested = next((v for k, v in advisory.items() if k.lower() == lowered), None)
        if not suggested:
            return []
        return [value for value in suggested if self.values.fits(step.field, value, step.constraints, allowed)]
