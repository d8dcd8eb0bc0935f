# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""LLM Resilience - quota admission, retry queues and failure-aware caching for model calls.

This library sits between an application and a language-model provider and
keeps calls alive through rate limits and provider outages.

Key Features:
    - Atomic per-minute and per-day token quotas per model classification
    - Deferral of over-quota calls into a two-generation retry queue
    - Correlation ids and at-most-once polling of deferred outcomes
    - Response cache that quarantines soft failures until proven deterministic
    - Middleware state protocol for serializing and restoring pipeline state
    - Memory and Redis backends sharing one contract

Quick Start:
    >>> from llm_resilience import create_resilience_service
    >>>
    >>> service = create_resilience_service(model=my_model)
    >>> async with service:
    ...     chain = service.chain()
    ...     try:
    ...         response = await chain.generate({"messages": messages})
    ...     except RequestDeferredError as e:
    ...         poll_later(e.request_id)

Main Exports:
    - ResilienceService, create_resilience_service: Bootstrap
    - AdmissionGate, CacheEngine, QueueConsumer: Core components
    - MiddlewareChain, StatefulMiddleware, MiddlewareStateManager: Middleware
    - MemoryBackend, RedisBackend: Storage backends
    - ResilienceConfig: Configuration options

Note: RedisBackend requires the 'redis' extra and the HTTP endpoints the
'api' extra. Install with:
    pip install llm-resilience[redis,api]

Version: 1.0.0
"""

__version__ = "1.0.0"

from typing import TYPE_CHECKING

from .admission import AdmissionGate, Admitted, Deferred
from .backends import BaseBackend, MemoryBackend
from .cache import CacheEngine, CacheOutcome, fingerprint
from .config import CacheConfig, QueueConfig, QuotaConfig, ResilienceConfig
from .exceptions import (
    ConfigurationError,
    MalformedQueueEntryError,
    MessageTooLargeForQueueError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    RequestDeferredError,
    ResilienceError,
    StoreUnavailableError,
    TransientProviderError,
    WillNotRetryError,
)
from .middleware import (
    LanguageModelProtocol,
    Middleware,
    MiddlewareChain,
    MiddlewareStateEnvelope,
    MiddlewareStateManager,
    StatefulMiddleware,
)
from .observability import ResilienceMetrics, get_metrics_collector
from .queue import QueueConsumer, RetryQueueManager
from .quota import QuotaLedger
from .responses import ResponseStore
from .service import ResilienceService, create_resilience_service
from .types import (
    ErrorType,
    ModelResponse,
    ProcessedResponse,
    Quota,
    RateLimitedRequest,
    StreamPart,
    TokenUsage,
)

# Lazy import for optional redis backend
if TYPE_CHECKING:
    from .backends import RedisBackend

__all__ = [
    # Admission
    "AdmissionGate",
    "Admitted",
    # Backends
    "BaseBackend",
    # Cache
    "CacheConfig",
    "CacheEngine",
    "CacheOutcome",
    # Exceptions
    "ConfigurationError",
    "Deferred",
    # Types
    "ErrorType",
    # Middleware
    "LanguageModelProtocol",
    "MalformedQueueEntryError",
    "MemoryBackend",
    "MessageTooLargeForQueueError",
    "Middleware",
    "MiddlewareChain",
    "MiddlewareStateEnvelope",
    "MiddlewareStateManager",
    "ModelResponse",
    "ProcessedResponse",
    "ProviderError",
    # Queues
    "QueueConfig",
    "QueueConsumer",
    "Quota",
    "QuotaConfig",
    "QuotaExceededError",
    # Quota
    "QuotaLedger",
    "RateLimitError",
    "RateLimitedRequest",
    "RedisBackend",  # Lazy loaded - requires redis extra
    "RequestDeferredError",
    "ResilienceConfig",
    "ResilienceError",
    # Observability
    "ResilienceMetrics",
    # Service
    "ResilienceService",
    "ResponseStore",
    "RetryQueueManager",
    "StatefulMiddleware",
    "StoreUnavailableError",
    "StreamPart",
    "TokenUsage",
    "TransientProviderError",
    "WillNotRetryError",
    "create_resilience_service",
    "fingerprint",
    "get_metrics_collector",
]


def __getattr__(name: str) -> type:
    """Lazy import for optional redis backend."""
    if name == "RedisBackend":
        from .backends import RedisBackend

        return RedisBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
