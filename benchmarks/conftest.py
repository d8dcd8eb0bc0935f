"""
Shared fixtures for benchmark tests.
"""

import pytest
from prometheus_client import CollectorRegistry

from llm_resilience.admission.gate import AdmissionGate
from llm_resilience.backends.memory import MemoryBackend
from llm_resilience.cache.engine import CacheEngine
from llm_resilience.config import CacheConfig, QueueConfig, QuotaConfig
from llm_resilience.observability.collector import UnifiedMetricsCollector
from llm_resilience.observability.metrics import ResilienceMetrics
from llm_resilience.queue.manager import RetryQueueManager
from llm_resilience.quota.ledger import QuotaLedger
from llm_resilience.responses.store import ResponseStore
from llm_resilience.types.model import ModelResponse, TokenUsage
from llm_resilience.types.quota import Quota


class InstantModel:
    """Model that answers immediately, so any measured time is pure overhead."""

    model_id = "gpt-4o"

    async def generate(self, params):
        return ModelResponse(
            text="benchmark",
            finish_reason="stop",
            usage=TokenUsage(prompt_tokens=10, completion_tokens=2, total_tokens=12),
        )


@pytest.fixture
async def memory_backend():
    """Create and connect a memory backend for benchmarks."""
    backend = MemoryBackend(namespace="bench")
    await backend.connect()
    yield backend
    await backend.close()


@pytest.fixture
def benchmark_metrics():
    """Metrics on a private registry so repeated runs do not collide."""
    registry = CollectorRegistry()
    return ResilienceMetrics(UnifiedMetricsCollector(enable_prometheus=True, registry=registry))


@pytest.fixture
def queue_config():
    """Queue configuration optimized for benchmarking."""
    return QueueConfig(
        queue_prefix="bench-queue",
        generation_one_batch_size=1000,
        retry_backoff_base=0.0,
    )


@pytest.fixture
def ledger(memory_backend, benchmark_metrics):
    """Ledger with a quota high enough never to reject."""
    config = QuotaConfig(
        namespace="bench-stats",
        quotas={"hifi": Quota(max_tokens_per_minute=10_000_000)},
    )
    return QuotaLedger(memory_backend, config, benchmark_metrics)


@pytest.fixture
def queues(memory_backend, queue_config, benchmark_metrics):
    return RetryQueueManager(memory_backend, queue_config, benchmark_metrics)


@pytest.fixture
def responses(memory_backend, queue_config):
    return ResponseStore(memory_backend, queue_config)


@pytest.fixture
def gate(ledger, queues, responses, benchmark_metrics):
    return AdmissionGate(ledger, queues, responses, benchmark_metrics)


@pytest.fixture
def cache(memory_backend, benchmark_metrics):
    return CacheEngine(memory_backend, CacheConfig(cache_prefix="bench-cache"), benchmark_metrics)


@pytest.fixture
def instant_model():
    return InstantModel()
