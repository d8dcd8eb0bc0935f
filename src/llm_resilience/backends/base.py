# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Base Backend for the LLM resilience layer

This module provides the BaseBackend abstract class: the single handle to
the shared store that holds queues, quota counters, cache and jail entries
and processed responses.

Features:
- Single-key primitives (strings, lists, hashes) with TTL
- Atomic read-then-delete for at-most-once delivery
- Composite quota check-and-increment
- Composite jail observation with a fixed window

A backend is constructed once by the bootstrap and passed to every component.
"""

import abc
import logging
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from typing_extensions import Self

from ..types.quota import UsageCheck

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """
    Structured health check result for backend monitoring.

    Attributes:
        healthy: Whether the backend is operational
        backend_type: Type of backend (e.g., 'redis', 'memory')
        namespace: Backend namespace
        error: Error message if unhealthy
        metadata: Additional backend-specific information
    """

    healthy: bool
    backend_type: str
    namespace: str
    error: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class UsageLimits:
    """
    Limits applied by check_and_increment_usage. None disables a check.

    Attributes:
        max_per_message: Largest single increment allowed
        max_per_minute: Ceiling of the minute bucket after the increment
        max_per_day: Ceiling of the day bucket after the increment
    """

    max_per_message: int | None = None
    max_per_minute: int | None = None
    max_per_day: int | None = None


class BaseBackend(abc.ABC):
    """
    An abstract base class that defines the store interface used by every
    component of the resilience layer.

    Every primitive is atomic on its own key. The two composite operations
    (check_and_increment_usage, record_jail_observation) are atomic across
    the keys they touch. Implementations raise StoreUnavailableError when
    the store cannot be reached.

    Subclasses must implement all abstract methods.
    """

    def __init__(self, namespace: str = "llm_resilience"):
        """
        Initialize the backend.

        Args:
            namespace: Label reported in health checks and stats
        """
        self.namespace = namespace

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    @abc.abstractmethod
    async def connect(self) -> None:
        """Open the connection to the store (idempotent)."""
        pass

    @abc.abstractmethod
    async def close(self) -> None:
        """Release the connection to the store (idempotent)."""
        pass

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ==========================================================================
    # Strings
    # ==========================================================================

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Get the value stored at key.

        Returns:
            The value, or None if the key is missing or expired
        """
        pass

    @abc.abstractmethod
    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        """
        Store value at key, replacing any previous value.

        Args:
            key: Store key
            value: String value
            ttl: Seconds until the key expires, None for no expiry
        """
        pass

    @abc.abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys. Returns the number of keys that existed."""
        pass

    @abc.abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether a live value is stored at key."""
        pass

    @abc.abstractmethod
    async def get_and_delete(self, key: str) -> str | None:
        """
        Atomically read and remove the value at key.

        Of two concurrent callers at most one receives the value.
        """
        pass

    @abc.abstractmethod
    async def increment(self, key: str, amount: int = 1, ttl: float | None = None) -> int:
        """
        Atomically add amount to the integer at key (missing counts as 0).

        Args:
            key: Counter key
            amount: Value to add
            ttl: Expiry applied when the counter is created

        Returns:
            The new value
        """
        pass

    # ==========================================================================
    # Lists
    # ==========================================================================

    @abc.abstractmethod
    async def list_push(self, key: str, value: str) -> int:
        """Append value at the tail of the list. Returns the new length."""
        pass

    @abc.abstractmethod
    async def list_pop(self, key: str) -> str | None:
        """Remove and return the head of the list, or None if it is empty."""
        pass

    @abc.abstractmethod
    async def list_length(self, key: str) -> int:
        """Number of elements in the list (0 for a missing key)."""
        pass

    @abc.abstractmethod
    async def list_range(self, key: str, start: int, stop: int) -> list[str]:
        """
        Elements from start to stop, both inclusive. Negative indexes count
        from the tail, as in Redis LRANGE.
        """
        pass

    # ==========================================================================
    # Hashes
    # ==========================================================================

    @abc.abstractmethod
    async def hash_get_all(self, key: str) -> dict[str, str]:
        """All fields of the hash at key (empty dict for a missing key)."""
        pass

    # ==========================================================================
    # Composite Operations
    # ==========================================================================

    @abc.abstractmethod
    async def check_and_increment_usage(
        self,
        window_keys: tuple[str, str, str],
        window_ttls: tuple[int, int, int],
        tokens: int,
        limits: UsageLimits,
        enforce: bool = True,
    ) -> UsageCheck:
        """
        Atomically check token limits and charge the usage buckets.

        The checks run in order: per-message, per-minute, per-day. When one
        fails nothing is written and the current counters are returned.
        Otherwise ``tokens`` is added to each bucket's ``tokens`` field and,
        for an enforced charge, ``requests`` is incremented by one. An
        unenforced charge tops up a call that was already counted. A bucket
        that is created gets its TTL from window_ttls.

        Args:
            window_keys: (minute, hour, day) bucket keys
            window_ttls: (minute, hour, day) bucket TTLs in seconds
            tokens: Tokens to charge
            limits: Limits to enforce
            enforce: When False, skip the checks, always charge the tokens and
                leave ``requests`` unchanged

        Returns:
            UsageCheck with the decision and counter values
        """
        pass

    @abc.abstractmethod
    async def record_jail_observation(
        self,
        key: str,
        observed_at: float,
        details: dict[str, str],
        ttl: int,
    ) -> int:
        """
        Atomically count one soft-failure observation in a jail hash.

        ``count`` is incremented, ``first_seen`` is kept from the first
        observation, ``last_seen`` and the ``details`` fields are replaced.
        The TTL is applied only when the hash is created, so the window is
        fixed from the first observation.

        Returns:
            The observation count after this call
        """
        pass

    # ==========================================================================
    # Health and Monitoring
    # ==========================================================================

    @abc.abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """
        Perform a health check on the backend.

        Returns:
            HealthCheckResult with the backend type, namespace and any error
        """
        pass

    @abc.abstractmethod
    async def get_all_stats(self) -> dict[str, Any]:
        """
        Get all statistics from the backend.

        Returns:
            Dictionary containing backend statistics
        """
        pass

    @abc.abstractmethod
    async def clear(self) -> None:
        """Remove every key the backend holds."""
        pass
