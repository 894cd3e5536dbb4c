"""Prometheus metrics for record generation and pre-validation."""
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

PREVALIDATION_BUCKETS = [0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0]


class MetricsCollector:
    """
    Owns the generator's Prometheus metrics and the helpers that update them.

    Each collector registers its metrics once, in the registry it is given.
    The module-level `metrics_collector` uses the default process registry;
    embedding applications that need isolation pass their own.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY, namespace: str = "datagen"):
        def counter(name: str, doc: str, labelnames: tuple[str, ...] = ()) -> Counter:
            return Counter(name, doc, labelnames=labelnames, namespace=namespace, registry=registry)

        # Rule evaluation
        self.rule_evaluations = counter(
            "rule_evaluations_total", "Total number of validation rule evaluations", ("outcome",)
        )
        self.cache_hits = counter(
            "evaluation_cache_hits_total", "Total number of rule evaluations served from cache"
        )
        self.cache_misses = counter("evaluation_cache_misses_total", "Total number of rule evaluations computed")
        self.unsupported_rules = counter(
            "unsupported_rules_total", "Total number of rules excluded for unsupported formula functions"
        )

        # Generation
        self.records_generated = counter(
            "records_generated_total", "Total number of candidate records generated", ("object_name",)
        )
        self.record_repairs = counter(
            "record_repairs_total", "Total number of detect/repair cycles by final outcome", ("outcome",)
        )
        self.picklist_fallbacks = counter(
            "picklist_fallbacks_total", "Total number of permissive picklist mappings used after decode failures"
        )
        self.dependency_cycles = counter(
            "dependency_cycles_total", "Total number of dependency cycles broken by declaration order"
        )

        # Pre-validation
        self.prevalidation_duration = Histogram(
            "prevalidation_duration_seconds",
            "Time taken to pre-validate a batch of records",
            namespace=namespace,
            buckets=PREVALIDATION_BUCKETS,
            registry=registry,
        )
        self.prevalidation_timeouts = counter(
            "prevalidation_timeouts_total", "Total number of pre-validation runs stopped by their time budget"
        )
        self.evaluation_cache_size = Gauge(
            "evaluation_cache_size",
            "Current number of cached rule outcomes",
            namespace=namespace,
            registry=registry,
        )

    def record_batch(self, duration_seconds: float, timed_out: bool = False):
        """Record a finished pre-validation batch."""
        self.prevalidation_duration.observe(duration_seconds)
        if timed_out:
            self.prevalidation_timeouts.inc()

    def record_evaluation(self, violated: bool, cached: bool):
        """Record one rule evaluation."""
        self.rule_evaluations.labels(outcome="violated" if violated else "passed").inc()
        if cached:
            self.cache_hits.inc()
        else:
            self.cache_misses.inc()

    def record_unsupported_rules(self, count: int):
        if count:
            self.unsupported_rules.inc(count)

    def record_generated(self, object_name: str, count: int = 1):
        self.records_generated.labels(object_name=object_name).inc(count)

    def record_repair(self, outcome: str):
        """Record the final outcome of a detect/repair cycle: clean, repaired or fallback."""
        self.record_repairs.labels(outcome=outcome).inc()

    def record_picklist_fallback(self):
        self.picklist_fallbacks.inc()

    def record_dependency_cycle(self):
        self.dependency_cycles.inc()

    def update_cache_size(self, size: int):
        self.evaluation_cache_size.set(size)


# Global metrics collector instance
metrics_collector = MetricsCollector()
