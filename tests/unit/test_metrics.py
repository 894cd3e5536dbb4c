"""Unit tests for the metrics collector helpers (Prometheus is mocked in conftest)."""

from unittest.mock import MagicMock

import pytest

from record_datagen.shared.metrics import MetricsCollector, metrics_collector


@pytest.fixture
def collector():
    return MetricsCollector(registry=MagicMock())


class TestMetricsCollector:
    def test_global_instance(self):
        assert isinstance(metrics_collector, MetricsCollector)

    def test_record_evaluation(self, collector):
        collector.record_evaluation(violated=True, cached=True)
        collector.record_evaluation(violated=False, cached=False)

        collector.rule_evaluations.labels.assert_any_call(outcome="violated")
        collector.rule_evaluations.labels.assert_any_call(outcome="passed")
        collector.cache_hits.inc.assert_called_once_with()
        collector.cache_misses.inc.assert_called_once_with()

    def test_record_batch(self, collector):
        collector.record_batch(0.5)
        collector.prevalidation_timeouts.inc.assert_not_called()

        collector.record_batch(2.0, timed_out=True)
        collector.prevalidation_duration.observe.assert_called_with(2.0)
        collector.prevalidation_timeouts.inc.assert_called_once_with()

    def test_unsupported_rules_skip_zero(self, collector):
        collector.record_unsupported_rules(0)
        collector.unsupported_rules.inc.assert_not_called()

        collector.record_unsupported_rules(3)
        collector.unsupported_rules.inc.assert_called_once_with(3)

    def test_generation_counters(self, collector):
        collector.record_generated("Account", 5)
        collector.record_repair("fallback")
        collector.update_cache_size(12)

        collector.records_generated.labels.assert_called_once_with(object_name="Account")
        collector.records_generated.inc.assert_called_once_with(5)
        collector.record_repairs.labels.assert_called_once_with(outcome="fallback")
        collector.evaluation_cache_size.set.assert_called_once_with(12)
