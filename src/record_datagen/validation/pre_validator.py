"""
Batch pre-validation of candidate records.

Approximates the record store's validation outcome locally before insertion.
Small batches are validated record by record; large batches are split into
chunks validated on worker threads, and very large batches are validated on
a random sample whose violation rate is extrapolated to the whole batch.
Every path honours a wall-clock budget and returns partial results when it
runs out.
"""

import logging
import math
import random
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
from threading import Lock
from typing import Any

import numpy as np
from pydantic import BaseModel, Field

from ..config.models import PreValidationSettings
from ..formula.evaluator import FormulaEvaluator
from ..shared.cache import EvaluationCache
from ..shared.metrics import metrics_collector
from ..shared.models import Diagnostic, DiagnosticKind, FieldMetadata, FieldType, ValidationRule
from .repairer import ViolationDetector
from .results import (
    PatternAssessment,
    PerformanceStats,
    PreValidationOptions,
    Severity,
    ValidationCoverage,
    ValidationResult,
    ValidationWarning,
    Violation,
    WarningType,
)
from .suggestions import SuggestionEngine

logger = logging.getLogger(__name__)

UNSUPPORTED_RULES_LISTED = 10
PATTERN_SAMPLE_RECORDS = 5
CACHE_CLEAR_INTERVAL = 10


class _ChunkResult(BaseModel):
    violations: list[Violation] = Field(default_factory=list)
    rules_evaluated: int = 0
    records_processed: int = 0
    cache_hits: int = 0
    timed_out: bool = False


def _utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def chunked(items: Sequence[Any], chunk_count: int) -> list[Sequence[Any]]:
    """Split `items` into at most `chunk_count` contiguous, near-equal chunks."""
    if not items:
        return []
    size = math.ceil(len(items) / chunk_count)
    return [items[i : i + size] for i in range(0, len(items), size)]


def unsupported_reason(formula: str) -> str:
    """Coarse reason a formula cannot be evaluated locally."""
    upper = formula.upper()
    if "$" in formula or "PRIORVALUE(" in upper:
        return "system_context_functions"
    if "REGEX(" in upper or "FIND(" in upper:
        return "advanced_text_functions"
    if "VLOOKUP(" in upper or "LOOKUP(" in upper:
        return "lookup_functions"
    return "complex_formula"


class PreValidator:
    """
    Validates batches of candidate records against an object's rules.

    One instance owns one evaluation cache; worker threads share it, and a
    concurrent miss on the same key only evaluates the same formula twice.
    """

    def __init__(
        self,
        evaluator: FormulaEvaluator | None = None,
        cache: EvaluationCache | None = None,
        settings: PreValidationSettings | None = None,
        seed: int | None = 42,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the pre-validator.

        Args:
            evaluator: Formula evaluator; a new one is created when omitted
            cache: Evaluation cache shared with other components of a session
            settings: Batch limits, chunking and sampling settings
            seed: Seed for record sampling and pattern sample records
            clock: Monotonic time source in seconds, polled between records
            now: Wall-clock source for sample dates and suggestions
        """
        self.settings = settings or PreValidationSettings()
        self.detector = ViolationDetector(evaluator, cache)
        self._clock = clock
        self._now = now or _utc_now
        self._np_rng = np.random.default_rng(seed)
        self._rng = random.Random(seed)
        self._suggestions = SuggestionEngine(clock=lambda: self._now().date())

        self._metrics_lock = Lock()
        self._total_evaluations = 0
        self._total_time_ms = 0.0
        self._cache_hits = 0

    @property
    def evaluator(self) -> FormulaEvaluator:
        return self.detector.evaluator

    @property
    def cache(self) -> EvaluationCache:
        return self.detector.cache

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def default_options(self) -> PreValidationOptions:
        return PreValidationOptions(
            include_warnings=self.settings.include_warnings,
            include_suggestions=self.settings.include_suggestions,
            max_records=self.settings.max_records,
            timeout_ms=self.settings.timeout_ms,
            skip_unsupported_rules=self.settings.skip_unsupported_rules,
        )

    def large_dataset_options(self) -> PreValidationOptions:
        return PreValidationOptions(
            include_warnings=self.settings.include_warnings,
            include_suggestions=False,
            max_records=self.settings.large_max_records,
            timeout_ms=self.settings.large_timeout_ms,
            skip_unsupported_rules=self.settings.skip_unsupported_rules,
        )

    # ------------------------------------------------------------------
    # Standard path
    # ------------------------------------------------------------------

    def pre_validate_records(
        self,
        records: Sequence[Mapping[str, Any]],
        rules: Iterable[ValidationRule],
        field_metadata: FieldMetadata = None,
        options: PreValidationOptions | None = None,
    ) -> ValidationResult:
        """
        Validate up to `max_records` records sequentially.

        Args:
            records: Candidate records
            rules: Validation rules; inactive rules are ignored
            field_metadata: Field types for value coercion and suggestions
            options: Per-call options; settings defaults when omitted

        Returns:
            ValidationResult; on timeout it covers only the records processed
        """
        options = options or self.default_options()
        if not records:
            return ValidationResult()

        start = self._clock()
        to_process = records[: options.max_records]
        supported, unsupported = self.detector.partition_rules(rules)
        warnings = self._unsupported_warnings(unsupported, options)
        diagnostics = self._unsupported_diagnostics(unsupported)

        violations: list[Violation] = []
        suggestions = []
        rules_evaluated = 0
        processed = 0
        cache_hits = 0
        timed_out = False

        for index, record in enumerate(to_process):
            if self._elapsed_ms(start) > options.timeout_ms:
                timed_out = True
                break

            record_violations, hits = self.detector.detect_with_stats(record, supported, field_metadata, index)
            violations.extend(record_violations)
            rules_evaluated += len(supported)
            cache_hits += hits
            processed += 1

            if options.include_suggestions and record_violations:
                suggestions.extend(self._suggestions.suggest(record, record_violations, field_metadata))

        if timed_out:
            warnings.append(self._timeout_warning(processed, len(to_process)))
            diagnostics.append(self._timeout_diagnostic(processed, len(to_process)))

        return self._finish(
            start,
            violations=violations,
            warnings=warnings,
            suggestions=suggestions,
            diagnostics=diagnostics,
            rules_evaluated=rules_evaluated,
            processed=processed,
            cache_hits=cache_hits,
            timed_out=timed_out,
        )

    def batch_pre_validate(
        self,
        batches: Iterable[Sequence[Mapping[str, Any]]],
        rules: Iterable[ValidationRule],
        field_metadata: FieldMetadata = None,
        options: PreValidationOptions | None = None,
    ) -> list[ValidationResult]:
        """Validate several batches in turn, clearing the cache every few batches."""
        rules = list(rules)
        batches = list(batches)
        results = []
        for i, batch in enumerate(batches):
            logger.info(f"Pre-validating batch {i + 1}/{len(batches)} ({len(batch)} records)")
            results.append(self.pre_validate_records(batch, rules, field_metadata, options))
            if i % CACHE_CLEAR_INTERVAL == 0:
                self.clear_cache()
        return results

    # ------------------------------------------------------------------
    # Large-dataset path
    # ------------------------------------------------------------------

    def pre_validate_large_dataset(
        self,
        records: Sequence[Mapping[str, Any]],
        rules: Iterable[ValidationRule],
        field_metadata: FieldMetadata = None,
        options: PreValidationOptions | None = None,
    ) -> ValidationResult:
        """
        Validate a large batch in parallel chunks, sampling very large ones.

        Above the sampling threshold only a random sample is validated and the
        violation count for the whole batch is estimated from it; the result
        is marked as an estimate and carries a performance warning saying so.
        Suggestions are not produced on this path unless requested.
        """
        options = options or self.large_dataset_options()
        if not records:
            return ValidationResult()

        start = self._clock()
        to_process = records[: options.max_records]
        supported, unsupported = self.detector.partition_rules(rules)

        use_sampling = len(to_process) > self.settings.sampling_threshold
        if use_sampling:
            sample_size = max(1, min(self.settings.max_sample_size, int(len(to_process) * self.settings.sample_fraction)))
            indices = np.sort(self._np_rng.choice(len(to_process), size=sample_size, replace=False))
            units = [(int(i), to_process[int(i)]) for i in indices]
            logger.info(f"Pre-validating {len(units)} records sampled from {len(to_process)}")
        else:
            units = list(enumerate(to_process))
            logger.info(f"Pre-validating {len(units)} records")

        chunks = chunked(units, self.settings.chunk_count)
        violations: list[Violation] = []
        warnings: list[ValidationWarning] = []
        diagnostics: list[Diagnostic] = []
        rules_evaluated = processed = cache_hits = 0
        timed_out = False

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
            future_to_chunk = {
                executor.submit(self._validate_chunk, chunk, supported, field_metadata, start, options.timeout_ms): i
                for i, chunk in enumerate(chunks)
            }
            for future in as_completed(future_to_chunk):
                chunk_index = future_to_chunk[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Chunk {chunk_index} failed during pre-validation: {e}")
                    diagnostics.append(
                        Diagnostic(
                            kind=DiagnosticKind.FORMULA_EVALUATION_FAILURE,
                            message=f"Chunk {chunk_index} could not be validated: {e}",
                            details={"chunk": chunk_index},
                        )
                    )
                    continue
                violations.extend(result.violations)
                rules_evaluated += result.rules_evaluated
                processed += result.records_processed
                cache_hits += result.cache_hits
                timed_out = timed_out or result.timed_out

        violations.sort(key=lambda v: (v.record_index if v.record_index is not None else -1))

        if timed_out:
            warnings.append(self._timeout_warning(processed, len(units)))
            diagnostics.append(self._timeout_diagnostic(processed, len(units)))

        warnings.extend(self._unsupported_warnings(unsupported, options, limit=UNSUPPORTED_RULES_LISTED))
        diagnostics.extend(self._unsupported_diagnostics(unsupported))

        estimated_count = None
        sample_size_used = None
        if use_sampling:
            sample_size_used = len(units)
            rate = len(violations) / processed if processed else 0.0
            estimated_count = math.floor(rate * len(to_process) + 0.5)
            warnings.append(
                ValidationWarning(
                    type=WarningType.PERFORMANCE,
                    message=(
                        f"Results estimated from sample of {sample_size_used} records. "
                        f"Estimated {estimated_count} total violations."
                    ),
                    details={"sample_size": sample_size_used, "estimated_total": estimated_count},
                )
            )

        suggestions = []
        if options.include_suggestions and violations:
            by_index = dict(units)
            for violation in violations:
                record = by_index.get(violation.record_index, {})
                suggestions.extend(self._suggestions.suggest(record, [violation], field_metadata))

        return self._finish(
            start,
            violations=violations,
            warnings=warnings,
            suggestions=suggestions,
            diagnostics=diagnostics,
            rules_evaluated=rules_evaluated,
            processed=processed,
            cache_hits=cache_hits,
            timed_out=timed_out,
            estimated=use_sampling,
            estimated_violation_count=estimated_count,
            sample_size=sample_size_used,
        )

    def _validate_chunk(
        self,
        chunk: Sequence[tuple[int, Mapping[str, Any]]],
        rules: list[ValidationRule],
        field_metadata: FieldMetadata,
        start: float,
        timeout_ms: int,
    ) -> _ChunkResult:
        result = _ChunkResult()
        for index, record in chunk:
            if self._elapsed_ms(start) > timeout_ms:
                result.timed_out = True
                break
            violations, hits = self.detector.detect_with_stats(record, rules, field_metadata, index)
            result.violations.extend(violations)
            result.rules_evaluated += len(rules)
            result.records_processed += 1
            result.cache_hits += hits
        return result

    # ------------------------------------------------------------------
    # Coverage and pattern checks
    # ------------------------------------------------------------------

    def get_validation_coverage(self, rules: Iterable[ValidationRule]) -> ValidationCoverage:
        """Share of rules the local evaluator supports, with reasons for the rest."""
        rules = list(rules)
        supported = 0
        reasons: dict[str, int] = {}
        for rule in rules:
            if self.evaluator.can_evaluate(rule.formula):
                supported += 1
            else:
                reason = unsupported_reason(rule.formula)
                reasons[reason] = reasons.get(reason, 0) + 1

        total = len(rules)
        return ValidationCoverage(
            total=total,
            supported=supported,
            unsupported=total - supported,
            coverage=(supported / total * 100) if total else 0.0,
            unsupported_reasons=reasons,
        )

    def validate_generation_pattern(
        self,
        object_name: str,
        pattern: Mapping[str, Any],
        rules: Iterable[ValidationRule],
        field_metadata: FieldMetadata = None,
    ) -> PatternAssessment:
        """
        Check a generation pattern against the rules using a few sample records.

        Args:
            object_name: Object the pattern generates
            pattern: Mapping with a "fields" entry of {name: {"type": ..., "required": ...}}
            rules: Validation rules for the object
            field_metadata: Field metadata for coercion and suggestions

        Returns:
            PatternAssessment; each violation adds 20 and each warning 10 to the risk score
        """
        samples = [self._sample_record(pattern) for _ in range(PATTERN_SAMPLE_RECORDS)]
        validation = self.pre_validate_records(
            samples,
            rules,
            field_metadata,
            PreValidationOptions(include_warnings=True, include_suggestions=True),
        )

        issues: list[str] = []
        suggestions: list[str] = []
        risk_score = 0

        if validation.violations:
            risk_score += len(validation.violations) * 20
            issues.append(f"Generation pattern violates {len(validation.violations)} validation rules")
            rule_names = sorted({v.rule_name for v in validation.violations})
            suggestions.append(f"Consider adjusting generation parameters for rules: {', '.join(rule_names)}")

        if validation.warnings:
            risk_score += len(validation.warnings) * 10
            for warning in validation.warnings_of(WarningType.UNSUPPORTED_FORMULA):
                issues.append(warning.message)
                suggestions.append(
                    "Some validation rules cannot be pre-validated and may cause insertion failures"
                )

        logger.debug(f"Generation pattern for {object_name} scored risk {min(risk_score, 100)}")
        return PatternAssessment(
            can_generate=validation.is_valid and risk_score < 50,
            issues=issues,
            suggestions=suggestions,
            risk_score=min(risk_score, 100),
        )

    def _sample_record(self, pattern: Mapping[str, Any]) -> dict[str, Any]:
        record = {}
        for name, config in (pattern.get("fields") or {}).items():
            record[name] = self._sample_value(name, config or {})
        return record

    def _sample_value(self, name: str, config: Mapping[str, Any]) -> Any:
        field_type = FieldType.from_platform(config.get("type", "text"))
        now = self._now()
        if field_type in (FieldType.TEXT, FieldType.LONG_TEXT):
            return f"Sample {name}" if config.get("required") else None
        if field_type is FieldType.EMAIL:
            return "test@example.com"
        if field_type is FieldType.PHONE:
            return "(555) 123-4567"
        if field_type.is_numeric:
            return self._rng.randint(1, 100)
        if field_type is FieldType.BOOLEAN:
            return self._rng.random() > 0.5
        if field_type is FieldType.DATE:
            return now.date().isoformat()
        if field_type is FieldType.DATETIME:
            return now.strftime("%Y-%m-%dT%H:%M:%S.000Z")
        return None

    # ------------------------------------------------------------------
    # Metrics and cache
    # ------------------------------------------------------------------

    def get_performance_metrics(self) -> dict[str, Any]:
        """Lifetime counters of this pre-validator."""
        with self._metrics_lock:
            total_evaluations = self._total_evaluations
            total_time_ms = self._total_time_ms
            cache_hits = self._cache_hits
        return {
            "total_evaluations": total_evaluations,
            "total_time_ms": total_time_ms,
            "average_time_ms": total_time_ms / total_evaluations if total_evaluations else 0.0,
            "cache_hits": cache_hits,
            "cache_size": len(self.cache),
            "supported_functions": len(self.evaluator.supported_functions),
        }

    def clear_cache(self) -> None:
        self.cache.clear()
        metrics_collector.update_cache_size(0)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000

    def _finish(
        self,
        start: float,
        violations: list[Violation],
        warnings: list[ValidationWarning],
        suggestions: list,
        diagnostics: list[Diagnostic],
        rules_evaluated: int,
        processed: int,
        cache_hits: int,
        timed_out: bool,
        **extra: Any,
    ) -> ValidationResult:
        elapsed_ms = self._elapsed_ms(start)

        with self._metrics_lock:
            self._total_evaluations += rules_evaluated
            self._total_time_ms += elapsed_ms
            self._cache_hits += cache_hits
        metrics_collector.record_batch(elapsed_ms / 1000, timed_out)
        metrics_collector.update_cache_size(len(self.cache))

        return ValidationResult(
            is_valid=not any(v.severity is Severity.ERROR for v in violations),
            violations=violations,
            warnings=warnings,
            suggestions=suggestions,
            performance=PerformanceStats(
                evaluation_time_ms=max(elapsed_ms, 0.0),
                rules_evaluated=rules_evaluated,
                records_processed=processed,
                cache_hits=cache_hits,
                timed_out=timed_out,
            ),
            diagnostics=diagnostics,
            **extra,
        )

    def _unsupported_warnings(
        self,
        unsupported: list[ValidationRule],
        options: PreValidationOptions,
        limit: int | None = None,
    ) -> list[ValidationWarning]:
        """
        One aggregate warning for skipped rules, or one warning per rule when
        unsupported rules are not skipped silently.
        """
        if not unsupported or not options.include_warnings:
            return []

        if not options.skip_unsupported_rules:
            return [
                ValidationWarning(
                    type=WarningType.UNSUPPORTED_FORMULA,
                    message=f"Validation rule {rule.id} cannot be evaluated locally",
                    rule_id=rule.id,
                    details={"functions": self.evaluator.unsupported_functions(rule.formula)},
                )
                for rule in unsupported
            ]

        names = [rule.id for rule in unsupported]
        return [
            ValidationWarning(
                type=WarningType.UNSUPPORTED_FORMULA,
                message=f"{len(unsupported)} validation rules use unsupported formula functions",
                details={"unsupported_rules": names[:limit] if limit else names},
            )
        ]

    def _unsupported_diagnostics(self, unsupported: list[ValidationRule]) -> list[Diagnostic]:
        metrics_collector.record_unsupported_rules(len(unsupported))
        diagnostics = []
        for rule in unsupported:
            functions = self.evaluator.unsupported_functions(rule.formula)
            logger.debug(f"Excluding rule {rule.id}: unsupported functions {functions}")
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.FORMULA_UNSUPPORTED,
                    message=f"Rule {rule.id} uses functions that cannot be evaluated locally",
                    rule_id=rule.id,
                    details={"functions": functions},
                )
            )
        return diagnostics

    def _timeout_warning(self, processed: int, total: int) -> ValidationWarning:
        logger.warning(f"Pre-validation timed out after {processed}/{total} records")
        return ValidationWarning(
            type=WarningType.PERFORMANCE,
            message="Validation timeout reached, some records may not be fully validated",
            details={"records_processed": processed, "records_requested": total},
        )

    def _timeout_diagnostic(self, processed: int, total: int) -> Diagnostic:
        return Diagnostic(
            kind=DiagnosticKind.BATCH_TIMEOUT,
            message=f"Time budget exceeded after {processed} of {total} records",
            details={"records_processed": processed, "records_requested": total},
        )
