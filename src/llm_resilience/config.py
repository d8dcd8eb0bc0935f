# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Configuration for the LLM resilience layer

This module provides configuration classes for the retry queues, the
response cache, the quota ledger and the metrics layer. Each class
validates itself on construction.
"""

from dataclasses import dataclass, field

from .types.classification import MODEL_CLASSIFICATIONS
from .types.quota import Quota


@dataclass
class QueueConfig:
    """
    Configuration for the retry queues, the response store and the consumer.
    """

    # === Keys and retention ===

    queue_prefix: str = "language-model-queue"
    """Prefix for queue lists, response entries and pending markers."""

    response_ttl: int = 6 * 60 * 60
    """Seconds an unpolled outcome (or pending marker) is kept."""

    classifications: tuple[str, ...] = MODEL_CLASSIFICATIONS
    """Classifications the consumer drains, in processing order."""

    # === Consumer batching ===

    generation_one_batch_size: int = 10
    """Maximum generation-1 requests processed per classification per tick."""

    generation_two_batch_size: int = 1
    """Maximum generation-2 requests processed per classification per tick."""

    poll_interval: float = 5.0
    """Seconds between consumer ticks when running in the background."""

    # === Retry bounds ===

    max_generation_two_attempts: int = 3
    """Generation-2 enqueues allowed before a request is abandoned as will_not_retry."""

    retry_backoff_base: float = 30.0
    """Minimum seconds a request waits in generation 2 before its first retry."""

    retry_backoff_multiplier: float = 2.0
    """Growth factor of the generation-2 backoff per attempt."""

    retry_backoff_max: float = 15 * 60.0
    """Upper bound of the generation-2 backoff in seconds."""

    # === Timeouts ===

    request_timeout: float = 240.0
    """Seconds allowed for one queued model call."""

    max_tick_duration: float = 240.0
    """Seconds after which a tick stops starting new work."""

    # === Size guard ===

    max_message_tokens: int | None = None
    """Largest token estimate accepted into a queue. None disables the guard."""

    token_buffer: int = 1500
    """Head-room subtracted from max_message_tokens for the provider's reply."""

    # === Diagnostics ===

    diagnostics_sample_size: int = 5
    """Queued entries shown per queue by the diagnostics endpoint."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.queue_prefix:
            raise ValueError("queue_prefix must not be empty")
        if self.response_ttl < 1:
            raise ValueError("response_ttl must be at least 1 second")
        unknown = set(self.classifications) - set(MODEL_CLASSIFICATIONS)
        if unknown:
            raise ValueError(f"Unknown classifications: {sorted(unknown)}")
        if self.generation_one_batch_size < 1:
            raise ValueError("generation_one_batch_size must be at least 1")
        if self.generation_two_batch_size < 1:
            raise ValueError("generation_two_batch_size must be at least 1")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.max_generation_two_attempts < 1:
            raise ValueError("max_generation_two_attempts must be at least 1")
        if self.retry_backoff_base < 0:
            raise ValueError("retry_backoff_base must be non-negative")
        if self.retry_backoff_multiplier < 1.0:
            raise ValueError("retry_backoff_multiplier must be at least 1.0")
        if self.retry_backoff_max < self.retry_backoff_base:
            raise ValueError("retry_backoff_max must be >= retry_backoff_base")
        if self.request_timeout <= 0 or self.max_tick_duration <= 0:
            raise ValueError("request_timeout and max_tick_duration must be positive")
        if self.max_message_tokens is not None and (
            self.max_message_tokens <= self.token_buffer
        ):
            raise ValueError("max_message_tokens must exceed token_buffer")
        if self.diagnostics_sample_size < 0:
            raise ValueError("diagnostics_sample_size must be non-negative")

    def retry_backoff(self, attempts: int) -> float:
        """Seconds a generation-2 request with ``attempts`` waits before its next try."""
        if attempts <= 0:
            return 0.0
        delay = self.retry_backoff_base * (self.retry_backoff_multiplier ** (attempts - 1))
        return min(delay, self.retry_backoff_max)


@dataclass
class CacheConfig:
    """
    Configuration for the response cache and its jail.
    """

    enabled: bool = True
    """Serve and store cache entries. When False every call reaches the model."""

    cache_prefix: str = "ai-cache"
    """Prefix for trusted cache entries."""

    jail_prefix: str = "ai-cache-jail"
    """Prefix for jailed soft-failure observations."""

    cache_ttl: int = 24 * 60 * 60
    """Seconds a trusted (or promoted) entry is kept."""

    jail_ttl: int = 60 * 60
    """Observation window in seconds. A jail entry expires this long after its first observation."""

    jail_threshold: int = 3
    """Soft-failure observations (K) within the window that promote an entry to the cache."""

    stream_chunk_size: int = 10
    """Characters per text-delta when replaying a cached response as a stream."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.cache_prefix == self.jail_prefix:
            raise ValueError("cache_prefix and jail_prefix must differ")
        if self.cache_ttl < 1 or self.jail_ttl < 1:
            raise ValueError("cache_ttl and jail_ttl must be at least 1 second")
        if self.jail_ttl > self.cache_ttl:
            raise ValueError("jail_ttl must not exceed cache_ttl")
        if self.jail_threshold < 1:
            raise ValueError("jail_threshold must be at least 1")
        if self.stream_chunk_size < 1:
            raise ValueError("stream_chunk_size must be at least 1")


@dataclass
class QuotaConfig:
    """
    Configuration for the quota ledger.
    """

    namespace: str = "token-stats"
    """Prefix for usage counters and stored quota overrides."""

    quotas: dict[str, Quota] = field(default_factory=dict)
    """Quota per classification. Classifications without one are unlimited."""

    quota_cache_ttl: float = 300.0
    """Seconds a quota read from the store is cached in process."""

    window_grace: int = 300
    """Extra seconds usage buckets live past the end of their window."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.namespace:
            raise ValueError("namespace must not be empty")
        unknown = set(self.quotas) - set(MODEL_CLASSIFICATIONS)
        if unknown:
            raise ValueError(f"Quotas configured for unknown classifications: {sorted(unknown)}")
        if self.quota_cache_ttl < 0:
            raise ValueError("quota_cache_ttl must be non-negative")
        if self.window_grace < 0:
            raise ValueError("window_grace must be non-negative")


@dataclass
class ResilienceConfig:
    """
    Top-level configuration aggregating every component's settings.
    """

    queue: QueueConfig = field(default_factory=QueueConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)

    # === Metrics and Monitoring ===

    metrics_enabled: bool = True
    """Enable metrics collection."""

    prometheus_enabled: bool = True
    """Register metrics with Prometheus."""

    start_prometheus_server: bool = False
    """Start the Prometheus scrape server when the service starts."""

    prometheus_host: str = "127.0.0.1"
    """Prometheus metrics host."""

    prometheus_port: int = 9090
    """Prometheus metrics port."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not 0 < self.prometheus_port < 65536:
            raise ValueError("prometheus_port must be a valid TCP port")


__all__ = [
    "CacheConfig",
    "QueueConfig",
    "QuotaConfig",
    "ResilienceConfig",
]
