# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Domain-level metrics facade for the resilience layer.

Components never talk to Prometheus directly. They call ResilienceMetrics,
which translates domain events (a request deferred, a cache promotion, a
queue depth change) into collector operations with a fixed label set.

Recording is best-effort: every method catches and logs its own failures,
so a broken metrics sink can never fail a request.

Usage:
    metrics = ResilienceMetrics()
    metrics.record_message_processed("hifi", 1)
    metrics.record_error("hifi", "moved_to_gen2")
    metrics.update_queue_size("hifi", 2, 7)
    summary = metrics.get_summary()
"""

from __future__ import annotations

import logging
from typing import Any

from .collector import get_metrics_collector
from .constants import (
    BACKEND_ERRORS_TOTAL,
    BACKEND_LUA_EXECUTIONS_TOTAL,
    CACHE_ERRORS_TOTAL,
    CACHE_HITS_TOTAL,
    CACHE_JAIL_PROMOTIONS_TOTAL,
    CACHE_JAIL_UPDATES_TOTAL,
    CACHE_MISSES_TOTAL,
    CACHE_STORES_TOTAL,
    CONSUMER_TICKS_TOTAL,
    ERRORS_TOTAL,
    MESSAGES_PROCESSED_TOTAL,
    PROCESSING_DURATION_SECONDS,
    QUEUE_SIZE,
    REQUESTS_ADMITTED_TOTAL,
    REQUESTS_DEFERRED_TOTAL,
    TOKENS_CONSUMED_TOTAL,
)
from .protocols import MetricsCollectorProtocol

logger = logging.getLogger(__name__)


def _parse_label_key(label_key: str) -> dict[str, str]:
    if not label_key:
        return {}
    return dict(part.split("=", 1) for part in label_key.split(","))


class ResilienceMetrics:
    """
    Best-effort recorder for queue, admission and cache events.

    Args:
        collector: Metrics sink. Defaults to the process-wide
            UnifiedMetricsCollector.
        enabled: When False every record call is a no-op.
    """

    def __init__(
        self,
        collector: MetricsCollectorProtocol | None = None,
        enabled: bool = True,
    ) -> None:
        self._collector = collector if collector is not None else get_metrics_collector()
        self.enabled = enabled

    @property
    def collector(self) -> MetricsCollectorProtocol:
        return self._collector

    def _inc(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        if not self.enabled:
            return
        try:
            self._collector.inc_counter(name, value, labels)
        except Exception as e:
            logger.warning(f"Failed to record metric {name}: {e}")

    def _set(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        if not self.enabled:
            return
        try:
            self._collector.set_gauge(name, value, labels)
        except Exception as e:
            logger.warning(f"Failed to record metric {name}: {e}")

    def _observe(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        if not self.enabled:
            return
        try:
            self._collector.observe_histogram(name, value, labels)
        except Exception as e:
            logger.warning(f"Failed to record metric {name}: {e}")

    # === Queue ===

    def record_message_processed(self, classification: str, generation: int) -> None:
        self._inc(
            MESSAGES_PROCESSED_TOTAL,
            labels={"classification": classification, "generation": str(generation)},
        )

    def record_error(self, classification: str, error_type: str) -> None:
        self._inc(
            ERRORS_TOTAL,
            labels={"classification": classification, "error_type": error_type},
        )

    def record_processing_duration(
        self, classification: str, generation: int, seconds: float
    ) -> None:
        self._observe(
            PROCESSING_DURATION_SECONDS,
            seconds,
            labels={"classification": classification, "generation": str(generation)},
        )

    def update_queue_size(self, classification: str, generation: int, size: int) -> None:
        self._set(
            QUEUE_SIZE,
            float(size),
            labels={"classification": classification, "generation": str(generation)},
        )

    def record_consumer_tick(self) -> None:
        self._inc(CONSUMER_TICKS_TOTAL)

    # === Admission ===

    def record_admitted(self, classification: str) -> None:
        self._inc(REQUESTS_ADMITTED_TOTAL, labels={"classification": classification})

    def record_deferred(self, classification: str, reason: str) -> None:
        self._inc(
            REQUESTS_DEFERRED_TOTAL,
            labels={"classification": classification, "error_type": reason},
        )

    def record_tokens(self, classification: str, tokens: int) -> None:
        if tokens <= 0:
            return
        self._inc(TOKENS_CONSUMED_TOTAL, tokens, labels={"classification": classification})

    # === Cache ===

    def record_cache_hit(self) -> None:
        self._inc(CACHE_HITS_TOTAL)

    def record_cache_miss(self) -> None:
        self._inc(CACHE_MISSES_TOTAL)

    def record_cache_store(self) -> None:
        self._inc(CACHE_STORES_TOTAL)

    def record_jail_update(self) -> None:
        self._inc(CACHE_JAIL_UPDATES_TOTAL)

    def record_jail_promotion(self) -> None:
        self._inc(CACHE_JAIL_PROMOTIONS_TOTAL)

    def record_cache_error(self, error_type: str = "cache_error") -> None:
        self._inc(CACHE_ERRORS_TOTAL, labels={"error_type": error_type})

    # === Backend ===

    def record_lua_execution(self) -> None:
        self._inc(BACKEND_LUA_EXECUTIONS_TOTAL)

    def record_backend_error(self, error_type: str) -> None:
        self._inc(BACKEND_ERRORS_TOTAL, labels={"error_type": error_type})

    # === Snapshot ===

    def get_summary(self) -> dict[str, Any]:
        """
        Summarize recorded metrics for the diagnostics endpoint.

        Returns a JSON-friendly dict. On any failure an empty summary with
        ``"available": False`` is returned instead of raising.
        """
        try:
            snapshot = self._collector.get_metrics()
        except Exception as e:
            logger.warning(f"Failed to read metrics snapshot: {e}")
            return {"available": False}

        counters = snapshot.get("counters", {})
        gauges = snapshot.get("gauges", {})
        histograms = snapshot.get("histograms", {})

        processed: dict[str, dict[str, int]] = {}
        for label_key, value in counters.get(MESSAGES_PROCESSED_TOTAL, {}).items():
            labels = _parse_label_key(label_key)
            by_generation = processed.setdefault(labels.get("classification", ""), {})
            by_generation[f"generation_{labels.get('generation', '')}"] = value

        errors: dict[str, int] = {}
        for label_key, value in counters.get(ERRORS_TOTAL, {}).items():
            error_type = _parse_label_key(label_key).get("error_type", "unknown")
            errors[error_type] = errors.get(error_type, 0) + value

        queue_sizes: dict[str, dict[str, float]] = {}
        for label_key, value in gauges.get(QUEUE_SIZE, {}).items():
            labels = _parse_label_key(label_key)
            by_generation = queue_sizes.setdefault(labels.get("classification", ""), {})
            by_generation[f"generation_{labels.get('generation', '')}"] = value

        durations = histograms.get(PROCESSING_DURATION_SECONDS, {})
        count = sum(h["count"] for h in durations.values())
        total = sum(h["sum"] for h in durations.values())

        def _total(name: str) -> int:
            return sum(counters.get(name, {}).values())

        return {
            "available": True,
            "messages_processed": processed,
            "total_processed": _total(MESSAGES_PROCESSED_TOTAL),
            "errors": errors,
            "queue_sizes": queue_sizes,
            "processing": {
                "count": count,
                "avg_seconds": total / count if count else 0.0,
            },
            "admission": {
                "admitted": _total(REQUESTS_ADMITTED_TOTAL),
                "deferred": _total(REQUESTS_DEFERRED_TOTAL),
                "tokens_consumed": _total(TOKENS_CONSUMED_TOTAL),
            },
            "cache": {
                "hits": _total(CACHE_HITS_TOTAL),
                "misses": _total(CACHE_MISSES_TOTAL),
                "stores": _total(CACHE_STORES_TOTAL),
                "jail_updates": _total(CACHE_JAIL_UPDATES_TOTAL),
                "jail_promotions": _total(CACHE_JAIL_PROMOTIONS_TOTAL),
                "errors": _total(CACHE_ERRORS_TOTAL),
            },
        }


__all__ = ["ResilienceMetrics"]
