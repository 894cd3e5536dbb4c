"""
Violation detection and field-local repair.

A candidate record moves Generated -> Validated -> Accepted, or loops
Validated -> Repaired -> Validated while violations name a repairable
field. Repair regenerates only the offending fields through the
required-value path rather than re-planning the record, which is an
approximation: a rule that needs a specific combination of values may
never be satisfied that way. When the attempt budget runs out the record
is replaced by a minimal fallback record and flagged.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..config.models import GenerationSettings
from ..formula.evaluator import FormulaEvaluator
from ..generators.picklist_decoder import PicklistMapping
from ..generators.planner import GenerationPlan
from ..generators.record_generator import ConstrainedRecordGenerator
from ..shared.cache import EvaluationCache
from ..shared.metrics import metrics_collector
from ..shared.models import (
    Diagnostic,
    DiagnosticKind,
    FieldMetadata,
    ObjectSchema,
    ValidationRule,
    build_field_type_map,
)
from ..shared.records import CandidateRecord, is_blank, lookup_field
from .results import Severity, Violation

logger = logging.getLogger(__name__)

_BLANK_CHECK = re.compile(r"\b(?:ISBLANK|ISNULL)\s*\(\s*(\$?[A-Za-z][\w.]*)\s*\)", re.IGNORECASE)


class RecordState(str, Enum):
    """Lifecycle state of a candidate record."""

    GENERATED = "generated"
    VALIDATED = "validated"
    REPAIRED = "repaired"
    ACCEPTED = "accepted"


class RepairOutcome(BaseModel):
    """Accepted record plus how it got there."""

    record: dict[str, Any]
    state: RecordState = RecordState.ACCEPTED
    history: list[RecordState] = Field(default_factory=list)
    attempts: int = Field(0, ge=0, description="Repair rounds performed")
    repaired_fields: list[str] = Field(default_factory=list)
    violations: list[Violation] = Field(default_factory=list, description="Violations left on the accepted record")
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    flagged: bool = Field(False, description="Record is a fallback built after repair was exhausted")

    @property
    def is_clean(self) -> bool:
        return not self.violations


class ViolationDetector:
    """
    Evaluates active, evaluable rules against records.

    Outcomes are cached per (rule id, fingerprint of the fields the rule
    reads), so identical relevant values are evaluated once per cache.
    """

    def __init__(self, evaluator: FormulaEvaluator | None = None, cache: EvaluationCache | None = None):
        self.evaluator = evaluator or FormulaEvaluator()
        self.cache = cache if cache is not None else EvaluationCache()

    def partition_rules(self, rules: Iterable[ValidationRule]) -> tuple[list[ValidationRule], list[ValidationRule]]:
        """
        Split active rules into those the evaluator supports and those it does not.

        Inactive rules appear in neither list.
        """
        supported: list[ValidationRule] = []
        unsupported: list[ValidationRule] = []
        for rule in rules:
            if not rule.active:
                continue
            if self.evaluator.can_evaluate(rule.formula):
                supported.append(rule)
            else:
                unsupported.append(rule)
        return supported, unsupported

    def detect(
        self,
        record: Mapping[str, Any],
        rules: Iterable[ValidationRule],
        field_metadata: FieldMetadata = None,
        record_index: int | None = None,
    ) -> list[Violation]:
        """Violations of `rules` by `record`; rules are assumed evaluable."""
        violations, _ = self.detect_with_stats(record, rules, field_metadata, record_index)
        return violations

    def detect_with_stats(
        self,
        record: Mapping[str, Any],
        rules: Iterable[ValidationRule],
        field_metadata: FieldMetadata = None,
        record_index: int | None = None,
    ) -> tuple[list[Violation], int]:
        """
        Like `detect`, also counting answers served from the cache.

        Returns:
            Tuple of (violations, cache hits)
        """
        violations = []
        cache_hits = 0
        types = {
            name.lower(): field_type.value for name, field_type in build_field_type_map(field_metadata).items()
        }

        for rule in rules:
            violated, hit = self._evaluate_cached(rule, record, field_metadata, types)
            metrics_collector.record_evaluation(violated, hit)
            if hit:
                cache_hits += 1
            if violated:
                violations.append(
                    Violation(
                        rule_id=rule.id,
                        rule_name=rule.id,
                        field=infer_violation_field(rule, record, self.evaluator),
                        message=rule.error_message,
                        formula=rule.formula,
                        severity=Severity.ERROR,
                        record_index=record_index,
                    )
                )

        return violations, cache_hits

    def _evaluate_cached(
        self,
        rule: ValidationRule,
        record: Mapping[str, Any],
        field_metadata: FieldMetadata,
        types: Mapping[str, str],
    ) -> tuple[bool, bool]:
        """
        Evaluate one rule through the cache.

        Formulas calling NOW() are never cached. Formulas calling TODAY() are
        keyed by the evaluation date.

        Returns:
            Tuple of (violated, served from cache)
        """
        time_functions = self.evaluator.time_functions(rule.formula)
        if "NOW" in time_functions:
            return self.evaluator.evaluate(rule.formula, record, field_metadata), False

        fields = self.evaluator.referenced_fields(rule.formula)
        context = {
            "types": {name: types.get(name.lower()) for name in fields},
            "today": self.evaluator.now().date().isoformat() if time_functions else None,
        }
        key = self.cache.make_key(rule.id, record, fields, rule.formula, context)
        return self.cache.get_or_compute(
            key, lambda: self.evaluator.evaluate(rule.formula, record, field_metadata)
        )


def infer_violation_field(
    rule: ValidationRule,
    record: Mapping[str, Any],
    evaluator: FormulaEvaluator,
) -> str | None:
    """
    Field a violation should be attributed to.

    The rule's error display field wins; otherwise the first blank-checked
    field that is blank on the record; otherwise the rule's only referenced
    field. None when the field cannot be determined.
    """
    if rule.error_display_field:
        return rule.error_display_field

    for match in _BLANK_CHECK.finditer(rule.formula):
        name = match.group(1)
        if is_blank(lookup_field(record, name)):
            return name

    fields = evaluator.referenced_fields(rule.formula)
    if len(fields) == 1:
        return fields[0]
    return None


class RecordRepairer:
    """Runs the detect/repair loop for one record at a time."""

    def __init__(
        self,
        generator: ConstrainedRecordGenerator,
        detector: ViolationDetector,
        settings: GenerationSettings | None = None,
    ):
        self.generator = generator
        self.detector = detector
        self.settings = settings or GenerationSettings()

    def validate_and_repair(
        self,
        record: Mapping[str, Any],
        plan: GenerationPlan,
        schema: ObjectSchema,
        rules: Iterable[ValidationRule],
        mappings: Mapping[str, PicklistMapping] | None = None,
        record_index: int | None = None,
    ) -> RepairOutcome:
        """
        Validate a generated record and repair it until it passes or the budget runs out.

        Args:
            record: Generated candidate record; not modified
            plan: Plan the record was generated from
            schema: Object schema
            rules: Validation rules for the object
            mappings: Dependent picklist mappings used during generation
            record_index: Position of the record in its batch

        Returns:
            RepairOutcome with the accepted record
        """
        if mappings is None:
            mappings = self.generator.resolve_picklist_mappings(schema, plan)
        supported, _ = self.detector.partition_rules(rules)

        working: CandidateRecord = dict(record)
        history = [RecordState.GENERATED]
        repaired_fields: list[str] = []
        attempts = 0

        while True:
            violations = self.detector.detect(working, supported, schema, record_index)
            history.append(RecordState.VALIDATED)

            if not violations:
                history.append(RecordState.ACCEPTED)
                metrics_collector.record_repair("clean" if attempts == 0 else "repaired")
                return RepairOutcome(
                    record=working,
                    history=history,
                    attempts=attempts,
                    repaired_fields=repaired_fields,
                )

            if attempts >= self.settings.max_repair_attempts:
                break

            steps = []
            for violation in violations:
                step = plan.step_for(violation.field) if violation.field else None
                if step is not None and step not in steps:
                    steps.append(step)
            if not steps:
                logger.debug(f"No repairable field among {len(violations)} violations; using fallback record")
                break

            attempts += 1
            for step in steps:
                working[step.name] = self.generator.repair_field(step, working, mappings)
                if step.name not in repaired_fields:
                    repaired_fields.append(step.name)
            history.append(RecordState.REPAIRED)

        return self._fallback_outcome(plan, schema, supported, mappings, history, attempts, repaired_fields, violations, record_index)

    def fallback_record(
        self,
        plan: GenerationPlan,
        schema: ObjectSchema,
        mappings: Mapping[str, PicklistMapping] | None = None,
    ) -> CandidateRecord:
        """Minimal record: every required field holds a safe placeholder, everything else is empty."""
        if mappings is None:
            mappings = self.generator.resolve_picklist_mappings(schema, plan)
        record: CandidateRecord = {}
        for step in plan.steps:
            record[step.name] = self.generator.fallback_value(step, record, mappings) if step.required else None
        return record

    def _fallback_outcome(
        self,
        plan: GenerationPlan,
        schema: ObjectSchema,
        rules: list[ValidationRule],
        mappings: Mapping[str, PicklistMapping],
        history: list[RecordState],
        attempts: int,
        repaired_fields: list[str],
        last_violations: list[Violation],
        record_index: int | None,
    ) -> RepairOutcome:
        rule_ids = sorted({v.rule_id for v in last_violations})
        logger.warning(
            f"Repair exhausted after {attempts} attempts for {plan.object_name} "
            f"(rules: {', '.join(rule_ids)}); using fallback record"
        )
        metrics_collector.record_repair("fallback")

        fallback = self.fallback_record(plan, schema, mappings)
        remaining = self.detector.detect(fallback, rules, schema, record_index)
        history.extend([RecordState.VALIDATED, RecordState.ACCEPTED])

        diagnostic = Diagnostic(
            kind=DiagnosticKind.REPAIR_EXHAUSTED,
            message=f"Record could not satisfy {len(rule_ids)} rules after {attempts} repair attempts",
            details={
                "rules": rule_ids,
                "attempts": attempts,
                "remaining_violations": len(remaining),
                "record_index": record_index,
            },
        )
        return RepairOutcome(
            record=fallback,
            history=history,
            attempts=attempts,
            repaired_fields=repaired_fields,
            violations=remaining,
            diagnostics=[diagnostic],
            flagged=True,
        )
