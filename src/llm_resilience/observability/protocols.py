# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Sink interface for ResilienceMetrics.

The facade never imports prometheus_client itself; anything with these five
methods can receive the layer's metrics.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MetricsCollectorProtocol(Protocol):
    """
    Where ResilienceMetrics sends counters, gauges and histogram observations.

    Label dicts always carry the label names registered for the metric in
    METRIC_DEFINITIONS (``classification``, ``generation``, ``error_type``).

    Example:
        >>> class ListSink:
        ...     def __init__(self): self.events = []
        ...     def inc_counter(self, name, value=1, labels=None): self.events.append(name)
        ...     def set_gauge(self, name, value, labels=None): pass
        ...     def observe_histogram(self, name, value, labels=None): pass
        ...     def get_metrics(self): return {"counters": {}, "gauges": {}, "histograms": {}}
        ...     def reset(self): self.events.clear()
        >>> metrics = ResilienceMetrics(ListSink())
    """

    def inc_counter(
        self,
        name: str,
        value: int = 1,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Add ``value`` to a counter series. Negative values raise ValueError."""
        ...

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def get_metrics(self) -> dict[str, Any]:
        """
        Snapshot with ``counters``, ``gauges`` and ``histograms`` keys, each
        mapping metric name to ``{label_key: value}``.
        """
        ...

    def reset(self) -> None: ...


__all__ = ["MetricsCollectorProtocol"]
