"""
Unit tests for the ResilienceMetrics facade.

Tests cover:
- Label sets for queue, admission, cache and backend events
- Disabled facade is a no-op
- Collector failures never propagate
- get_summary aggregation for diagnostics
"""

from __future__ import annotations

from unittest.mock import MagicMock

from llm_resilience.observability.collector import UnifiedMetricsCollector
from llm_resilience.observability.constants import (
    CACHE_ERRORS_TOTAL,
    ERRORS_TOTAL,
    MESSAGES_PROCESSED_TOTAL,
    QUEUE_SIZE,
    REQUESTS_DEFERRED_TOTAL,
    TOKENS_CONSUMED_TOTAL,
)
from llm_resilience.observability.metrics import ResilienceMetrics


class TestRecording:
    """Test that domain events reach the collector with the right labels."""

    def test_message_processed(self, metrics: ResilienceMetrics, collector: UnifiedMetricsCollector) -> None:
        metrics.record_message_processed("hifi", 2)
        assert (
            collector.get_counter(
                MESSAGES_PROCESSED_TOTAL, {"classification": "hifi", "generation": "2"}
            )
            == 1
        )

    def test_error(self, metrics: ResilienceMetrics, collector: UnifiedMetricsCollector) -> None:
        metrics.record_error("lofi", "moved_to_gen2")
        metrics.record_error("lofi", "moved_to_gen2")
        labels = {"classification": "lofi", "error_type": "moved_to_gen2"}
        assert collector.get_counter(ERRORS_TOTAL, labels) == 2

    def test_queue_size(self, metrics: ResilienceMetrics, collector: UnifiedMetricsCollector) -> None:
        metrics.update_queue_size("embedding", 1, 12)
        labels = {"classification": "embedding", "generation": "1"}
        assert collector.get_gauge(QUEUE_SIZE, labels) == 12.0

    def test_deferred_reason(self, metrics: ResilienceMetrics, collector: UnifiedMetricsCollector) -> None:
        metrics.record_deferred("hifi", "per_minute")
        labels = {"classification": "hifi", "error_type": "per_minute"}
        assert collector.get_counter(REQUESTS_DEFERRED_TOTAL, labels) == 1

    def test_tokens_skip_non_positive(
        self, metrics: ResilienceMetrics, collector: UnifiedMetricsCollector
    ) -> None:
        metrics.record_tokens("hifi", 0)
        metrics.record_tokens("hifi", -5)
        metrics.record_tokens("hifi", 40)
        assert collector.get_counter(TOKENS_CONSUMED_TOTAL, {"classification": "hifi"}) == 40

    def test_cache_error_default_type(
        self, metrics: ResilienceMetrics, collector: UnifiedMetricsCollector
    ) -> None:
        metrics.record_cache_error()
        assert collector.get_counter(CACHE_ERRORS_TOTAL, {"error_type": "cache_error"}) == 1


class TestBestEffort:
    """Test that metrics can never fail a request."""

    def test_disabled_is_noop(self) -> None:
        collector = MagicMock()
        metrics = ResilienceMetrics(collector, enabled=False)

        metrics.record_cache_hit()
        metrics.update_queue_size("hifi", 1, 3)
        metrics.record_processing_duration("hifi", 1, 0.5)

        collector.inc_counter.assert_not_called()
        collector.set_gauge.assert_not_called()
        collector.observe_histogram.assert_not_called()

    def test_collector_errors_swallowed(self) -> None:
        collector = MagicMock()
        collector.inc_counter.side_effect = RuntimeError("sink down")
        collector.set_gauge.side_effect = RuntimeError("sink down")
        collector.observe_histogram.side_effect = RuntimeError("sink down")
        metrics = ResilienceMetrics(collector)

        metrics.record_error("hifi", "server_error")
        metrics.update_queue_size("hifi", 1, 3)
        metrics.record_processing_duration("hifi", 1, 0.5)

        collector.inc_counter.assert_called_once()

    def test_summary_unavailable_on_failure(self) -> None:
        collector = MagicMock()
        collector.get_metrics.side_effect = RuntimeError("sink down")
        assert ResilienceMetrics(collector).get_summary() == {"available": False}


class TestSummary:
    """Test the diagnostics summary."""

    def test_empty_summary(self, metrics: ResilienceMetrics) -> None:
        summary = metrics.get_summary()
        assert summary["available"] is True
        assert summary["total_processed"] == 0
        assert summary["processing"] == {"count": 0, "avg_seconds": 0.0}
        assert summary["cache"]["hits"] == 0

    def test_aggregation(self, metrics: ResilienceMetrics) -> None:
        metrics.record_message_processed("hifi", 1)
        metrics.record_message_processed("hifi", 1)
        metrics.record_message_processed("lofi", 2)
        metrics.record_error("hifi", "moved_to_gen2")
        metrics.record_error("lofi", "moved_to_gen2")
        metrics.record_error("lofi", "will_not_retry")
        metrics.update_queue_size("hifi", 2, 4)
        metrics.record_processing_duration("hifi", 1, 1.0)
        metrics.record_processing_duration("hifi", 1, 3.0)
        metrics.record_admitted("hifi")
        metrics.record_deferred("hifi", "per_day")
        metrics.record_tokens("hifi", 25)
        metrics.record_cache_hit()
        metrics.record_cache_miss()
        metrics.record_cache_store()
        metrics.record_jail_update()
        metrics.record_jail_promotion()

        summary = metrics.get_summary()

        assert summary["messages_processed"] == {
            "hifi": {"generation_1": 2},
            "lofi": {"generation_2": 1},
        }
        assert summary["total_processed"] == 3
        assert summary["errors"] == {"moved_to_gen2": 2, "will_not_retry": 1}
        assert summary["queue_sizes"] == {"hifi": {"generation_2": 4.0}}
        assert summary["processing"] == {"count": 2, "avg_seconds": 2.0}
        assert summary["admission"] == {"admitted": 1, "deferred": 1, "tokens_consumed": 25}
        assert summary["cache"] == {
            "hits": 1,
            "misses": 1,
            "stores": 1,
            "jail_updates": 1,
            "jail_promotions": 1,
            "errors": 0,
        }
