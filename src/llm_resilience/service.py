# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Bootstrap: builds every component around one explicitly owned store client.

The service constructs the backend handle once and injects it into the
quota ledger, retry queues, response store, cache engine, admission gate
and queue consumer. It owns the lifecycle: start() connects the store and
launches the consumer, stop() reverses both.
"""

import logging
import os
from functools import partial
from types import TracebackType
from typing import Any

from typing_extensions import Self

from .admission.gate import AdmissionGate
from .backends.base import BaseBackend, HealthCheckResult
from .backends.memory import MemoryBackend
from .cache.engine import CacheEngine
from .config import ResilienceConfig
from .exceptions import ConfigurationError
from .middleware.chain import MiddlewareChain
from .middleware.protocols import LanguageModelProtocol
from .middleware.state import StatefulMiddleware
from .observability.collector import UnifiedMetricsCollector, get_metrics_collector
from .observability.metrics import ResilienceMetrics
from .queue.consumer import QueueConsumer, RequestExecutor
from .queue.manager import RetryQueueManager
from .quota.ledger import QuotaLedger
from .responses.store import ResponseStore
from .types.request import RateLimitedRequest

logger = logging.getLogger(__name__)


class ResilienceService:
    """
    The resilience layer wired together.

    Args:
        backend: Shared store handle, owned by this service
        config: Configuration for every component
        model: Model used to replay queued calls (through the cache)
        executor: Replaces the default replay of queued calls
        metrics: Metrics facade; built from config when None

    Example:
        >>> async with ResilienceService(MemoryBackend(), model=model) as service:
        ...     chain = service.chain(model)
        ...     response = await chain.generate({"messages": messages})
    """

    def __init__(
        self,
        backend: BaseBackend,
        config: ResilienceConfig | None = None,
        model: LanguageModelProtocol | None = None,
        executor: RequestExecutor | None = None,
        metrics: ResilienceMetrics | None = None,
    ) -> None:
        self.config = config or ResilienceConfig()
        self.backend = backend
        self.model = model
        if metrics is None:
            collector = get_metrics_collector(enable_prometheus=self.config.prometheus_enabled)
            metrics = ResilienceMetrics(collector, enabled=self.config.metrics_enabled)
        self.metrics = metrics

        self.ledger = QuotaLedger(backend, self.config.quota, self.metrics)
        self.queues = RetryQueueManager(backend, self.config.queue, self.metrics)
        self.responses = ResponseStore(backend, self.config.queue)
        self.cache = CacheEngine(backend, self.config.cache, self.metrics)
        self.gate = AdmissionGate(self.ledger, self.queues, self.responses, self.metrics)
        self.consumer = QueueConsumer(
            self.queues,
            self.ledger,
            self.responses,
            executor or self.replay,
            self.config.queue,
            self.metrics,
        )

    # ==========================================================================
    # Calls
    # ==========================================================================

    def chain(self, model: LanguageModelProtocol | None = None) -> MiddlewareChain:
        """
        A middleware chain around ``model``: admission gate, then cache.

        Both links take part in the state protocol.
        """
        model = model or self.model
        if model is None:
            raise ConfigurationError("A model is required to build a middleware chain")
        return MiddlewareChain(
            [StatefulMiddleware(self.gate), StatefulMiddleware(self.cache)],
            model,
        )

    async def replay(self, request: RateLimitedRequest) -> Any:
        """Default consumer executor: run a queued call through the cache."""
        if self.model is None:
            raise ConfigurationError("No model or executor configured to replay queued requests")
        params = dict(request.request)
        params.setdefault("model_id", self.model.model_id)
        return await self.cache.generate(params, partial(self.model.generate, params))

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def start(self, run_consumer: bool = True) -> None:
        """Connect the store, optionally start the metrics server and the consumer."""
        await self.backend.connect()
        if self.config.start_prometheus_server:
            collector = self.metrics.collector
            if isinstance(collector, UnifiedMetricsCollector):
                collector.start_http_server(self.config.prometheus_host, self.config.prometheus_port)
        if run_consumer:
            await self.consumer.start()
        logger.info("Resilience service started")

    async def stop(self) -> None:
        await self.consumer.stop()
        await self.backend.close()
        logger.info("Resilience service stopped")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def health_check(self) -> HealthCheckResult:
        return await self.backend.health_check()


def create_resilience_service(
    config: ResilienceConfig | None = None,
    *,
    backend: BaseBackend | None = None,
    redis_url: str | None = None,
    model: LanguageModelProtocol | None = None,
    executor: RequestExecutor | None = None,
    metrics: ResilienceMetrics | None = None,
) -> ResilienceService:
    """
    Build a service with the right backend for the environment.

    An explicit ``backend`` wins. Otherwise a RedisBackend is used when
    ``redis_url`` or the REDIS_URL environment variable is set, and a
    MemoryBackend when neither is.

    Raises:
        ConfigurationError: REDIS_URL is set but the redis extra is missing
    """
    if backend is None:
        url = redis_url or os.environ.get("REDIS_URL")
        if url:
            try:
                from .backends.redis import RedisBackend
            except ImportError as e:
                raise ConfigurationError(
                    "A Redis URL was configured but the 'redis' extra is not installed. "
                    "Install with: pip install llm-resilience[redis]"
                ) from e
            backend = RedisBackend(redis_url=url, metrics=metrics)
        else:
            logger.info("No Redis URL configured, using the in-memory backend")
            backend = MemoryBackend()
    return ResilienceService(backend, config, model=model, executor=executor, metrics=metrics)


__all__ = ["ResilienceService", "create_resilience_service"]
