"""
Generation session.

One session is one run: it owns the evaluation, picklist and plan caches,
the seeded value generator and a correlation id for structured logs, and
discards all of them when closed.
"""

import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .analysis.rule_parser import ObjectRuleAnalysis, analyze_object_rules
from .config.models import DataGenConfig
from .config.settings import load_config
from .formula.evaluator import FormulaEvaluator
from .generators.field_generators import FieldValueGenerator
from .generators.picklist_decoder import PicklistDecoder
from .generators.planner import GenerationPlan, GenerationPlanner
from .generators.record_generator import AdvisoryValues, ConstrainedRecordGenerator
from .shared.cache import EvaluationCache
from .shared.logging_config import configure_structured_logging
from .shared.logging_utils import get_structured_logger
from .shared.models import Diagnostic, FieldMetadata, ObjectSchema, ValidationRule
from .validation.pre_validator import PreValidator
from .validation.repairer import RecordRepairer, RepairOutcome, ViolationDetector
from .validation.results import PreValidationOptions, ValidationResult


def _utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class GenerationRun(BaseModel):
    """Records produced by one `generate_records` call."""

    object_name: str
    correlation_id: str
    plan: GenerationPlan
    outcomes: list[RepairOutcome] = Field(default_factory=list)
    validation: ValidationResult | None = None
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    @property
    def records(self) -> list[dict[str, Any]]:
        return [outcome.record for outcome in self.outcomes]

    @property
    def flagged_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.flagged)

    @property
    def repaired_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.attempts and not outcome.flagged)


class GenerationSession:
    """
    Plans, generates, repairs and pre-validates records for one run.

    Usage:
        with GenerationSession(config) as session:
            run = session.generate_records(schema, rules, count=100)
    """

    def __init__(
        self,
        config: DataGenConfig | None = None,
        now: Callable[[], datetime] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the session.

        Args:
            config: Run configuration; defaults when omitted
            now: Wall-clock source for TODAY()/NOW() and date generation
            clock: Monotonic time source for pre-validation budgets
        """
        self.config = config or DataGenConfig()
        now = now or _utc_now
        cache_settings = self.config.cache

        configure_structured_logging(self.config.logging.level, self.config.logging.structured)
        self.log = get_structured_logger(__name__, seed=self.config.seed)
        self.correlation_id = self.log.generate_correlation_id()
        self.log.set_correlation_id(self.correlation_id)

        self.evaluator = FormulaEvaluator(clock=now, parse_cache_size=cache_settings.parse_cache_size)
        self.evaluation_cache = EvaluationCache(
            max_size=cache_settings.evaluation_cache_size,
            ttl_seconds=cache_settings.evaluation_cache_ttl_seconds,
            clock=clock,
        )
        self.decoder = PicklistDecoder(cache_size=cache_settings.picklist_cache_size)
        self.planner = GenerationPlanner(cache_size=cache_settings.plan_cache_size)

        self.values = FieldValueGenerator(seed=self.config.seed, settings=self.config.generation, clock=now)
        self.generator = ConstrainedRecordGenerator(self.values, self.evaluator, self.decoder, self.config.generation)
        self.detector = ViolationDetector(self.evaluator, self.evaluation_cache)
        self.repairer = RecordRepairer(self.generator, self.detector, self.config.generation)
        self.pre_validator = PreValidator(
            evaluator=self.evaluator,
            cache=self.evaluation_cache,
            settings=self.config.prevalidation,
            seed=self.config.seed,
            clock=clock,
            now=now,
        )
        self._closed = False

    @classmethod
    def from_config_file(
        cls, config_path: str | Path | None = None, **kwargs: Any
    ) -> "GenerationSession":
        """Start a session configured from a config file and RECORD_DATAGEN_* variables."""
        return cls(load_config(config_path), **kwargs)

    def __enter__(self) -> "GenerationSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Discard every cache owned by the session."""
        if self._closed:
            return
        self.evaluation_cache.clear()
        self.decoder.clear()
        self.planner.clear()
        self.log.info("Generation session closed")
        self.log.clear_correlation_id()
        self._closed = True

    def analyze(self, schema: ObjectSchema, rules: Iterable[ValidationRule]) -> ObjectRuleAnalysis:
        return analyze_object_rules(rules, schema.name)

    def plan(self, schema: ObjectSchema, rules: Iterable[ValidationRule]) -> GenerationPlan:
        """Dependency-ordered generation plan for `schema`, cached for the session."""
        return self.planner.build_plan(schema, analysis=self.analyze(schema, rules))

    def generate_records(
        self,
        schema: ObjectSchema,
        rules: Iterable[ValidationRule],
        count: int,
        advisory: AdvisoryValues | None = None,
        pre_validate: bool = True,
    ) -> GenerationRun:
        """
        Generate `count` accepted records for one object.

        Each record is generated from the plan, then validated and repaired.
        Records whose repair budget ran out are replaced by flagged fallback
        records. The accepted set is optionally pre-validated as a batch.

        Args:
            schema: Object schema
            rules: Validation rules for the object
            count: Number of records
            advisory: Extra candidate values per field
            pre_validate: Pre-validate the accepted records as a batch

        Returns:
            GenerationRun with one outcome per record
        """
        if count < 0:
            raise ValueError("count must be >= 0")

        rules = list(rules)
        plan = self.plan(schema, rules)
        decoder_diagnostics_before = len(self.decoder.diagnostics)
        mappings = self.generator.resolve_picklist_mappings(schema, plan)

        self.log.info(
            f"Generating {count} {schema.name} records",
            fields=len(plan.steps),
            rules=len(rules),
        )

        outcomes = []
        for index in range(count):
            record = self.generator.generate_record(plan, schema, mappings, advisory)
            outcomes.append(self.repairer.validate_and_repair(record, plan, schema, rules, mappings, index))

        diagnostics = list(plan.diagnostics)
        diagnostics.extend(self.decoder.diagnostics[decoder_diagnostics_before:])
        for outcome in outcomes:
            diagnostics.extend(outcome.diagnostics)

        validation = None
        if pre_validate:
            validation = self.pre_validate([outcome.record for outcome in outcomes], rules, schema)
            diagnostics.extend(validation.diagnostics)

        for diagnostic in diagnostics:
            self.log.diagnostic(diagnostic)

        run = GenerationRun(
            object_name=schema.name,
            correlation_id=self.correlation_id,
            plan=plan,
            outcomes=outcomes,
            validation=validation,
            diagnostics=diagnostics,
        )
        self.log.info(
            f"Generated {count} {schema.name} records",
            repaired=run.repaired_count,
            flagged=run.flagged_count,
            diagnostics=len(diagnostics),
        )
        return run

    def pre_validate(
        self,
        records: Sequence[Mapping[str, Any]],
        rules: Iterable[ValidationRule],
        field_metadata: FieldMetadata = None,
        options: PreValidationOptions | None = None,
    ) -> ValidationResult:
        """Pre-validate records, switching to the large-dataset path above the standard record limit."""
        if len(records) > self.config.prevalidation.max_records:
            return self.pre_validator.pre_validate_large_dataset(records, rules, field_metadata, options)
        return self.pre_validator.pre_validate_records(records, rules, field_metadata, options)
