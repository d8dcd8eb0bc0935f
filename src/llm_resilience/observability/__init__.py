# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability and metrics for the resilience layer.

Classes:
    UnifiedMetricsCollector: Prometheus-backed collector with a dict snapshot.
    ResilienceMetrics: Domain facade used by the queue, gate and cache.

Protocols:
    MetricsCollectorProtocol: Protocol for metrics collection backends.

Functions:
    get_metrics_collector: Get the global metrics collector singleton.
    reset_metrics_collector: Reset the global metrics collector singleton.
"""

from .collector import (
    METRIC_DEFINITIONS,
    MetricDefinition,
    UnifiedMetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)
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
    METRIC_PREFIX,
    PROCESSING_DURATION_BUCKETS,
    PROCESSING_DURATION_SECONDS,
    QUEUE_SIZE,
    REQUESTS_ADMITTED_TOTAL,
    REQUESTS_DEFERRED_TOTAL,
    TOKENS_CONSUMED_TOTAL,
)
from .metrics import ResilienceMetrics
from .protocols import MetricsCollectorProtocol

__all__ = [
    "BACKEND_ERRORS_TOTAL",
    "BACKEND_LUA_EXECUTIONS_TOTAL",
    "CACHE_ERRORS_TOTAL",
    "CACHE_HITS_TOTAL",
    "CACHE_JAIL_PROMOTIONS_TOTAL",
    "CACHE_JAIL_UPDATES_TOTAL",
    "CACHE_MISSES_TOTAL",
    "CACHE_STORES_TOTAL",
    "CONSUMER_TICKS_TOTAL",
    "ERRORS_TOTAL",
    "MESSAGES_PROCESSED_TOTAL",
    "METRIC_DEFINITIONS",
    "METRIC_PREFIX",
    "PROCESSING_DURATION_BUCKETS",
    "PROCESSING_DURATION_SECONDS",
    "QUEUE_SIZE",
    "REQUESTS_ADMITTED_TOTAL",
    "REQUESTS_DEFERRED_TOTAL",
    "TOKENS_CONSUMED_TOTAL",
    "MetricDefinition",
    "MetricsCollectorProtocol",
    "ResilienceMetrics",
    "UnifiedMetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
