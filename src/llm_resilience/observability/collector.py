# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Unified metrics collector backed by Prometheus with a dict snapshot.

Every component of the resilience layer reports through one
UnifiedMetricsCollector. Each series is kept twice: as a Prometheus metric
for scraping, and in plain dicts so the diagnostics endpoint can render a
JSON summary without a scrape.

Series are capped at MAX_LABEL_COMBINATIONS per metric name; further label
combinations are dropped with a warning.

Usage:
    >>> collector = UnifiedMetricsCollector(registry=CollectorRegistry())
    >>> collector.inc_counter(CACHE_HITS_TOTAL)
    >>> collector.get_counter(CACHE_HITS_TOTAL)
    1
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, ClassVar

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)
from prometheus_client.metrics import MetricWrapperBase

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
    PROCESSING_DURATION_BUCKETS,
    PROCESSING_DURATION_SECONDS,
    QUEUE_SIZE,
    REQUESTS_ADMITTED_TOTAL,
    REQUESTS_DEFERRED_TOTAL,
    TOKENS_CONSUMED_TOTAL,
)

logger = logging.getLogger(__name__)


@dataclass
class MetricDefinition:
    """Name, Prometheus type, help text and label names of a known metric."""

    name: str
    metric_type: str
    description: str
    label_names: tuple[str, ...] = ()
    buckets: list[float] | None = None


# Label names are fixed per metric; names missing here register without labels
METRIC_DEFINITIONS: dict[str, MetricDefinition] = {
    # === Queue ===
    MESSAGES_PROCESSED_TOTAL: MetricDefinition(
        MESSAGES_PROCESSED_TOTAL,
        "counter",
        "Queued requests processed to a terminal outcome",
        ("classification", "generation"),
    ),
    ERRORS_TOTAL: MetricDefinition(
        ERRORS_TOTAL,
        "counter",
        "Errors by classification and error type",
        ("classification", "error_type"),
    ),
    PROCESSING_DURATION_SECONDS: MetricDefinition(
        PROCESSING_DURATION_SECONDS,
        "histogram",
        "Duration of queued request execution",
        ("classification", "generation"),
        buckets=PROCESSING_DURATION_BUCKETS,
    ),
    QUEUE_SIZE: MetricDefinition(
        QUEUE_SIZE,
        "gauge",
        "Current retry queue length",
        ("classification", "generation"),
    ),
    CONSUMER_TICKS_TOTAL: MetricDefinition(
        CONSUMER_TICKS_TOTAL,
        "counter",
        "Total consumer ticks",
        (),
    ),
    # === Admission ===
    REQUESTS_ADMITTED_TOTAL: MetricDefinition(
        REQUESTS_ADMITTED_TOTAL,
        "counter",
        "Requests executed immediately",
        ("classification",),
    ),
    REQUESTS_DEFERRED_TOTAL: MetricDefinition(
        REQUESTS_DEFERRED_TOTAL,
        "counter",
        "Requests deferred to the retry queue or terminal store",
        ("classification", "error_type"),
    ),
    TOKENS_CONSUMED_TOTAL: MetricDefinition(
        TOKENS_CONSUMED_TOTAL,
        "counter",
        "Tokens charged against quotas",
        ("classification",),
    ),
    # === Cache ===
    CACHE_HITS_TOTAL: MetricDefinition(
        CACHE_HITS_TOTAL,
        "counter",
        "Total cache hits",
        (),
    ),
    CACHE_MISSES_TOTAL: MetricDefinition(
        CACHE_MISSES_TOTAL,
        "counter",
        "Total cache misses",
        (),
    ),
    CACHE_STORES_TOTAL: MetricDefinition(
        CACHE_STORES_TOTAL,
        "counter",
        "Total cache writes",
        (),
    ),
    CACHE_JAIL_UPDATES_TOTAL: MetricDefinition(
        CACHE_JAIL_UPDATES_TOTAL,
        "counter",
        "Total jail observations",
        (),
    ),
    CACHE_JAIL_PROMOTIONS_TOTAL: MetricDefinition(
        CACHE_JAIL_PROMOTIONS_TOTAL,
        "counter",
        "Total jail promotions",
        (),
    ),
    CACHE_ERRORS_TOTAL: MetricDefinition(
        CACHE_ERRORS_TOTAL,
        "counter",
        "Total cache errors",
        ("error_type",),
    ),
    # === Backend ===
    BACKEND_LUA_EXECUTIONS_TOTAL: MetricDefinition(
        BACKEND_LUA_EXECUTIONS_TOTAL,
        "counter",
        "Total Lua script executions",
        (),
    ),
    BACKEND_ERRORS_TOTAL: MetricDefinition(
        BACKEND_ERRORS_TOTAL,
        "counter",
        "Total backend errors",
        ("error_type",),
    ),
}


class UnifiedMetricsCollector:
    """
    Records counters, gauges and histograms into Prometheus and a dict snapshot.

    Safe to call from the event loop and from worker threads; an RLock
    guards the dict side and lazy metric registration.

    Example:
        >>> collector.inc_counter(
        ...     ERRORS_TOTAL, labels={"classification": "hifi", "error_type": "moved_to_gen2"}
        ... )
        >>> collector.get_metrics()["counters"][ERRORS_TOTAL]
        {"classification=hifi,error_type=moved_to_gen2": 1}
    """

    # Per metric name
    MAX_LABEL_COMBINATIONS: ClassVar[int] = 1000

    # Observations kept per histogram series for the dict snapshot
    MAX_OBSERVATIONS: ClassVar[int] = 5000

    _PROMETHEUS_TYPES: ClassVar[dict[str, type[MetricWrapperBase]]] = {
        "counter": Counter,
        "gauge": Gauge,
        "histogram": Histogram,
    }

    def __init__(
        self,
        enable_prometheus: bool = True,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """
        Initialize the metrics collector.

        Args:
            enable_prometheus: Whether to register Prometheus metrics
            registry: Prometheus registry; the default one when None
        """
        self._enable_prometheus = enable_prometheus
        self._registry = registry if registry is not None else REGISTRY
        self._lock = threading.RLock()

        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, deque[float]]] = defaultdict(
            lambda: defaultdict(lambda: deque(maxlen=self.MAX_OBSERVATIONS))
        )
        self._label_combinations: dict[str, set[str]] = defaultdict(set)

        # name -> registered Prometheus metric, None when registration failed
        self._prom_metrics: dict[str, MetricWrapperBase | None] = {}
        self._server_running = False

        logger.debug(
            f"UnifiedMetricsCollector initialized "
            f"(prometheus={'enabled' if self._enable_prometheus else 'disabled'})"
        )

    @staticmethod
    def _labels_to_key(labels: dict[str, str] | None) -> str:
        if not labels:
            return ""
        return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))

    def _admit_series(self, name: str, label_key: str) -> bool:
        """Track a label combination; False once the metric is at its cap."""
        seen = self._label_combinations[name]
        if label_key in seen:
            return True
        if len(seen) >= self.MAX_LABEL_COMBINATIONS:
            logger.warning(
                f"Cardinality limit ({self.MAX_LABEL_COMBINATIONS}) reached "
                f"for metric {name}. Dropping label combination: {label_key}"
            )
            return False
        seen.add(label_key)
        return True

    def _prometheus_metric(self, name: str, metric_type: str) -> MetricWrapperBase | None:
        """The Prometheus metric for ``name``, registered on first use."""
        if not self._enable_prometheus:
            return None
        with self._lock:
            if name in self._prom_metrics:
                return self._prom_metrics[name]

            defn = METRIC_DEFINITIONS.get(name)
            if defn is not None and defn.metric_type == metric_type:
                description, label_names = defn.description, defn.label_names
            else:
                description, label_names = f"Dynamic {metric_type}: {name}", ()
            kwargs: dict[str, Any] = {"registry": self._registry}
            if metric_type == "histogram":
                kwargs["buckets"] = (
                    defn.buckets if defn and defn.buckets else PROCESSING_DURATION_BUCKETS
                )

            metric: MetricWrapperBase | None
            try:
                metric = self._PROMETHEUS_TYPES[metric_type](
                    name, description, label_names, **kwargs
                )
            except ValueError as e:
                # Already registered by another collector on the same registry
                logger.warning(f"Failed to create Prometheus {metric_type} {name}: {e}")
                metric = None
            self._prom_metrics[name] = metric
            return metric

    def _update_prometheus(
        self,
        name: str,
        metric_type: str,
        method: str,
        value: float,
        labels: dict[str, str] | None,
    ) -> None:
        metric = self._prometheus_metric(name, metric_type)
        if metric is None:
            return
        try:
            target = metric.labels(**labels) if labels else metric
            getattr(target, method)(value)
        except ValueError as e:
            logger.debug(f"Prometheus {metric_type} update failed for {name}: {e}")

    # === Recording ===

    def inc_counter(
        self,
        name: str,
        value: int = 1,
        labels: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError("Counter increment must be non-negative")
        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._admit_series(name, label_key):
                return
            self._counters[name][label_key] += value
        self._update_prometheus(name, "counter", "inc", value, labels)

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._admit_series(name, label_key):
                return
            self._gauges[name][label_key] = value
        self._update_prometheus(name, "gauge", "set", value, labels)

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record an observation; the snapshot keeps the most recent ones."""
        label_key = self._labels_to_key(labels)
        with self._lock:
            if not self._admit_series(name, label_key):
                return
            self._histograms[name][label_key].append(value)
        self._update_prometheus(name, "histogram", "observe", value, labels)

    # === Snapshot ===

    @staticmethod
    def _summarize(observations: deque[float]) -> dict[str, float]:
        total = sum(observations)
        return {
            "count": len(observations),
            "sum": total,
            "avg": total / len(observations),
            "min": min(observations),
            "max": max(observations),
        }

    def get_metrics(self) -> dict[str, Any]:
        """
        JSON-ready copy of the dict side.

        Series are keyed by their sorted ``label=value`` string, "" for an
        unlabelled series. Histograms are summarized over the observations
        still held (count, sum, avg, min, max).
        """
        with self._lock:
            return {
                "counters": {name: dict(series) for name, series in self._counters.items()},
                "gauges": {name: dict(series) for name, series in self._gauges.items()},
                "histograms": {
                    name: {
                        key: self._summarize(observations)
                        for key, observations in series.items()
                        if observations
                    }
                    for name, series in self._histograms.items()
                },
            }

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters.get(name, {}).get(self._labels_to_key(labels), 0)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges.get(name, {}).get(self._labels_to_key(labels), 0.0)

    def reset(self) -> None:
        """Clear the dict side. Prometheus series keep their values."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._label_combinations.clear()
        logger.debug("Metrics collector reset")

    # === Scrape endpoint ===

    def start_http_server(self, host: str = "127.0.0.1", port: int = 9090) -> bool:
        """
        Serve this collector's registry for scraping, from a daemon thread.

        Calling it again once running is a no-op. Returns False when the
        port cannot be bound.
        """
        if self._server_running:
            logger.warning("Prometheus server already running")
            return True
        try:
            start_http_server(port, addr=host, registry=self._registry)
        except OSError as e:
            logger.error(f"Failed to start Prometheus server on {host}:{port}: {e}")
            return False
        self._server_running = True
        logger.info(f"Prometheus metrics server started on {host}:{port}")
        return True

    @property
    def prometheus_enabled(self) -> bool:
        return self._enable_prometheus

    @property
    def server_running(self) -> bool:
        return self._server_running


# =============================================================================
# Process-wide collector
# =============================================================================

_global_collector: UnifiedMetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector(enable_prometheus: bool = True) -> UnifiedMetricsCollector:
    """
    The collector shared by components built without an explicit one.

    ``enable_prometheus`` only matters on the call that creates it.
    """
    global _global_collector
    if _global_collector is None:
        with _collector_lock:
            if _global_collector is None:
                _global_collector = UnifiedMetricsCollector(enable_prometheus=enable_prometheus)
    return _global_collector


def reset_metrics_collector() -> None:
    """
    Drop the shared collector so the next get_metrics_collector() builds a new one.

    Names already registered on the default Prometheus registry cannot be
    registered again, so a replacement collector records those on the dict
    side only.
    """
    global _global_collector
    with _collector_lock:
        if _global_collector is not None:
            _global_collector.reset()
        _global_collector = None


__all__ = [
    "METRIC_DEFINITIONS",
    "MetricDefinition",
    "UnifiedMetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
