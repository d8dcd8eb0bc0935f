# SPDX-License-Identifier: Apache-2.0
"""Shared fixtures: in-memory store, isolated metrics and a scripted model."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from llm_resilience.backends.memory import MemoryBackend
from llm_resilience.config import CacheConfig, QueueConfig, QuotaConfig
from llm_resilience.observability.collector import UnifiedMetricsCollector
from llm_resilience.observability.metrics import ResilienceMetrics
from llm_resilience.types.model import ModelResponse, StreamPart, TokenUsage
from llm_resilience.types.request import RateLimitedRequest


class FakeModel:
    """
    Language model double.

    Each call takes the next scripted outcome: a ModelResponse is returned,
    an exception is raised. When the script runs out, ``default`` is used.
    """

    def __init__(
        self,
        outcomes: list[Any] | None = None,
        model_id: str = "gpt-4o",
        default: ModelResponse | None = None,
    ) -> None:
        self._model_id = model_id
        self.outcomes = list(outcomes or [])
        self.default = default or ModelResponse(
            text="Hello there",
            finish_reason="stop",
            usage=TokenUsage(prompt_tokens=5, completion_tokens=2, total_tokens=7),
        )
        self.calls: list[dict[str, Any]] = []

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _next(self, params: dict[str, Any]) -> ModelResponse:
        self.calls.append(params)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def generate(self, params: dict[str, Any]) -> ModelResponse:
        return self._next(params)

    async def stream(self, params: dict[str, Any]) -> AsyncIterator[StreamPart]:
        response = self._next(params)
        for word in response.text.split(" "):
            yield StreamPart(type="text-delta", delta=word + " ")
        yield StreamPart(
            type="finish",
            finish_reason=response.finish_reason,
            usage=response.usage,
            warnings=list(response.warnings),
        )


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend(namespace="test")


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def collector(registry: CollectorRegistry) -> UnifiedMetricsCollector:
    return UnifiedMetricsCollector(enable_prometheus=True, registry=registry)


@pytest.fixture
def metrics(collector: UnifiedMetricsCollector) -> ResilienceMetrics:
    return ResilienceMetrics(collector)


@pytest.fixture
def queue_config() -> QueueConfig:
    return QueueConfig(queue_prefix="test-queue", retry_backoff_base=0.0)


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(cache_prefix="test-cache", jail_prefix="test-jail", jail_threshold=3)


@pytest.fixture
def quota_config() -> QuotaConfig:
    return QuotaConfig(namespace="test-stats")


@pytest.fixture
def fake_model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def make_request() -> Callable[..., RateLimitedRequest]:
    counter = {"n": 0}

    def _make(
        classification: str = "hifi",
        token_estimate: int = 10,
        request_id: str | None = None,
        **request: Any,
    ) -> RateLimitedRequest:
        counter["n"] += 1
        return RateLimitedRequest(
            id=request_id or f"req-{counter['n']}",
            model_classification=classification,
            request=request or {"model_id": "gpt-4o", "messages": [{"role": "user", "content": "hi"}]},
            token_estimate=token_estimate,
        )

    return _make


@pytest.fixture
def model_factory() -> type[FakeModel]:
    """The FakeModel class, for tests that script their own outcomes."""
    return FakeModel
