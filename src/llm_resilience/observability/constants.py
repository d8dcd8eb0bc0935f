# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the `llm_resilience_` prefix.

Naming Conventions:
    - Counter metrics end with `_total`
    - Histogram metrics for time end with `_seconds`
    - Gauges use present-tense descriptive names

Label Best Practices:
    To prevent label cardinality explosion, use only:
    - `classification` - Model classification (hifi, lofi, completions, embedding)
    - `generation` - Retry queue generation ("1", "2")
    - `error_type` - Error taxonomy value (will_not_retry, server_error, ...)
    - `outcome` - Cache outcome (success, soft_failure, hard_failure)

    NEVER use:
    - `request_id` - Unique per request (unbounded!)
    - `fingerprint` - Unique per request shape (unbounded!)

Usage:
    >>> from llm_resilience.observability.constants import MESSAGES_PROCESSED_TOTAL
    >>> print(MESSAGES_PROCESSED_TOTAL)
    'llm_resilience_messages_processed_total'
"""


# =============================================================================
# Global Prefix
# =============================================================================

METRIC_PREFIX = "llm_resilience"
"""Prefix for all Prometheus metrics in this library."""


# =============================================================================
# Queue Metrics (queue/manager.py, queue/consumer.py)
# =============================================================================

MESSAGES_PROCESSED_TOTAL = f"{METRIC_PREFIX}_messages_processed_total"
"""Queued requests that reached a terminal outcome, per classification and generation."""

ERRORS_TOTAL = f"{METRIC_PREFIX}_errors_total"
"""Errors by classification and error type (moved_to_gen2, will_not_retry, ...)."""

PROCESSING_DURATION_SECONDS = f"{METRIC_PREFIX}_processing_duration_seconds"
"""Wall time spent executing one queued request."""

QUEUE_SIZE = f"{METRIC_PREFIX}_queue_size"
"""Live length of each (generation, classification) queue."""

CONSUMER_TICKS_TOTAL = f"{METRIC_PREFIX}_consumer_ticks_total"
"""Completed consumer ticks."""


# =============================================================================
# Admission Metrics (admission/gate.py, quota/ledger.py)
# =============================================================================

REQUESTS_ADMITTED_TOTAL = f"{METRIC_PREFIX}_requests_admitted_total"
"""Requests executed immediately by the admission gate."""

REQUESTS_DEFERRED_TOTAL = f"{METRIC_PREFIX}_requests_deferred_total"
"""Requests deferred by the admission gate, by reason."""

TOKENS_CONSUMED_TOTAL = f"{METRIC_PREFIX}_tokens_consumed_total"
"""Tokens charged against the quota ledger."""


# =============================================================================
# Cache Metrics (cache/engine.py)
# =============================================================================

CACHE_HITS_TOTAL = f"{METRIC_PREFIX}_cache_hits_total"
"""Total cache hits."""

CACHE_MISSES_TOTAL = f"{METRIC_PREFIX}_cache_misses_total"
"""Total cache misses."""

CACHE_STORES_TOTAL = f"{METRIC_PREFIX}_cache_stores_total"
"""Successful responses written to the cache."""

CACHE_JAIL_UPDATES_TOTAL = f"{METRIC_PREFIX}_cache_jail_updates_total"
"""Soft failures recorded in the jail."""

CACHE_JAIL_PROMOTIONS_TOTAL = f"{METRIC_PREFIX}_cache_jail_promotions_total"
"""Jailed soft failures promoted to the cache."""

CACHE_ERRORS_TOTAL = f"{METRIC_PREFIX}_cache_errors_total"
"""Cache failures that fell back to calling the model."""


# =============================================================================
# Backend Metrics (backends/redis.py)
# =============================================================================

BACKEND_LUA_EXECUTIONS_TOTAL = f"{METRIC_PREFIX}_backend_lua_executions_total"
"""Total Lua script executions."""

BACKEND_ERRORS_TOTAL = f"{METRIC_PREFIX}_backend_errors_total"
"""Store operations that failed, by error type."""


# =============================================================================
# Histogram Buckets
# =============================================================================

PROCESSING_DURATION_BUCKETS = [
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    240.0,
]
"""Buckets for model call durations (seconds)."""


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
    "METRIC_PREFIX",
    "PROCESSING_DURATION_BUCKETS",
    "PROCESSING_DURATION_SECONDS",
    "QUEUE_SIZE",
    "REQUESTS_ADMITTED_TOTAL",
    "REQUESTS_DEFERRED_TOTAL",
    "TOKENS_CONSUMED_TOTAL",
]
