# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
MemoryBackend for the LLM resilience layer

This module provides an in-memory backend implementation that doesn't require Redis.
Perfect for testing, development, and single-process applications.
"""

import asyncio
import contextlib
import heapq
import logging
import time
from typing import Any

from ..types.quota import (
    REASON_ALLOWED,
    REASON_PER_DAY,
    REASON_PER_MESSAGE,
    REASON_PER_MINUTE,
    UsageCheck,
)
from .base import BaseBackend, HealthCheckResult, UsageLimits

logger = logging.getLogger(__name__)

# Stored values are str, list[str] or dict[str, str]
_Value = Any


class MemoryBackend(BaseBackend):
    """
    An in-memory backend implementation for the resilience layer.

    This backend provides a simple, Redis-free implementation suitable for:
    - Testing and development
    - Single-process applications
    - Scenarios where distributed state is not needed

    Key Features:
    - One dict keyed like the Redis keyspace (strings, lists and hashes)
    - TTL (Time-To-Live) support with an expiration heap
    - Async-safe operations using a single asyncio.Lock
    - Composite operations run under the same lock, so they are atomic

    Note:
        This backend is NOT suitable for:
        - Multi-process applications
        - Distributed systems
        - Production environments with high availability requirements
    """

    def __init__(
        self,
        namespace: str = "llm_resilience_memory",
        cleanup_interval: float = 60.0,
    ) -> None:
        """
        Initialize the in-memory backend.

        Args:
            namespace: Label reported in health checks and stats
            cleanup_interval: Seconds between background sweeps of expired keys
        """
        super().__init__(namespace)
        self.cleanup_interval = cleanup_interval

        # Format: Dict[key, Tuple[value, Optional[expiry_timestamp]]]
        self._data: dict[str, tuple[_Value, float | None]] = {}

        # Expiration heap for O(log n) cleanup of expired entries
        # Format: List[Tuple[expiry_time, key]]
        self._expiration_heap: list[tuple[float, str]] = []

        self._lock = asyncio.Lock()
        self._connected = False

        self._cleanup_task: asyncio.Task[None] | None = None

        logger.debug(f"Initialized MemoryBackend with namespace '{namespace}'")

    # ==========================================================================
    # Internal helpers (caller holds the lock)
    # ==========================================================================

    def _is_expired(self, expiry: float | None) -> bool:
        """Check if an entry has expired."""
        if expiry is None:
            return False
        return time.time() >= expiry

    def _cleanup_expired_from_heap(self) -> int:
        """
        Remove expired entries using the expiration heap.

        Uses lazy deletion: heap entries may reference keys that have already been
        deleted or had their expiry updated. These stale entries are validated
        against the primary storage and skipped if no longer valid.

        Returns:
            Number of entries actually removed.
        """
        now = time.time()
        removed = 0

        while self._expiration_heap:
            expiry, key = self._expiration_heap[0]
            if expiry > now:
                break
            heapq.heappop(self._expiration_heap)

            entry = self._data.get(key)
            if entry is None:
                continue
            # Check if expiry matches (entry wasn't updated with new expiry)
            if entry[1] == expiry:
                del self._data[key]
                removed += 1
                logger.debug(f"Cleaned up expired key: {key}")

        return removed

    def _lookup(self, key: str) -> _Value | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expiry = entry
        if self._is_expired(expiry):
            del self._data[key]
            return None
        return value

    def _store(self, key: str, value: _Value, ttl: float | None) -> None:
        # Every new key pays for sweeping the expired ones
        self._cleanup_expired_from_heap()
        expiry = time.time() + ttl if ttl is not None else None
        self._data[key] = (value, expiry)
        if expiry is not None:
            heapq.heappush(self._expiration_heap, (expiry, key))

    def _replace_value(self, key: str, value: _Value) -> None:
        """Replace a live value and keep its current expiry."""
        _, expiry = self._data[key]
        self._data[key] = (value, expiry)

    def _typed(self, key: str, kind: type) -> _Value | None:
        value = self._lookup(key)
        if value is not None and not isinstance(value, kind):
            raise TypeError(
                f"Key {key!r} holds a {type(value).__name__}, not a {kind.__name__}"
            )
        return value

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def connect(self) -> None:
        """Mark the backend connected and start the expiry sweep."""
        self._connected = True
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("MemoryBackend cleanup task started")

    async def close(self) -> None:
        """Stop the expiry sweep."""
        self._connected = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None
            logger.info("MemoryBackend cleanup task stopped")

    async def _cleanup_loop(self) -> None:
        """Periodically drop expired keys that nobody looks up again."""
        while self._connected:
            try:
                await asyncio.sleep(self.cleanup_interval)
                async with self._lock:
                    removed = self._cleanup_expired_from_heap()
                if removed:
                    logger.debug(f"Expiry sweep removed {removed} keys")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in MemoryBackend cleanup loop: {e}", exc_info=True)

    # ==========================================================================
    # Strings
    # ==========================================================================

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._typed(key, str)

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        async with self._lock:
            self._store(key, value, ttl)

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            deleted = 0
            for key in keys:
                if self._lookup(key) is not None:
                    del self._data[key]
                    deleted += 1
            return deleted

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._lookup(key) is not None

    async def get_and_delete(self, key: str) -> str | None:
        async with self._lock:
            value = self._typed(key, str)
            if value is not None:
                del self._data[key]
            return value

    async def increment(self, key: str, amount: int = 1, ttl: float | None = None) -> int:
        async with self._lock:
            current = self._typed(key, str)
            if current is None:
                new_value = amount
                self._store(key, str(new_value), ttl)
            else:
                new_value = int(current) + amount
                self._replace_value(key, str(new_value))
            return new_value

    # ==========================================================================
    # Lists
    # ==========================================================================

    async def list_push(self, key: str, value: str) -> int:
        async with self._lock:
            items = self._typed(key, list)
            if items is None:
                items = []
                self._store(key, items, None)
            items.append(value)
            return len(items)

    async def list_pop(self, key: str) -> str | None:
        async with self._lock:
            items = self._typed(key, list)
            if not items:
                return None
            value: str = items.pop(0)
            if not items:
                # Redis drops empty lists
                del self._data[key]
            return value

    async def list_length(self, key: str) -> int:
        async with self._lock:
            items = self._typed(key, list)
            return len(items) if items else 0

    async def list_range(self, key: str, start: int, stop: int) -> list[str]:
        async with self._lock:
            items = self._typed(key, list)
            if not items:
                return []
            length = len(items)
            if start < 0:
                start = max(length + start, 0)
            if stop < 0:
                stop = length + stop
            if start > stop or start >= length:
                return []
            return list(items[start : stop + 1])

    # ==========================================================================
    # Hashes
    # ==========================================================================

    async def hash_get_all(self, key: str) -> dict[str, str]:
        async with self._lock:
            fields = self._typed(key, dict)
            return dict(fields) if fields else {}

    # ==========================================================================
    # Composite Operations
    # ==========================================================================

    async def check_and_increment_usage(
        self,
        window_keys: tuple[str, str, str],
        window_ttls: tuple[int, int, int],
        tokens: int,
        limits: UsageLimits,
        enforce: bool = True,
    ) -> UsageCheck:
        async with self._lock:
            buckets = [self._typed(key, dict) for key in window_keys]
            minute, hour, day = (int(b.get("tokens", 0)) if b else 0 for b in buckets)
            minute_requests = int(buckets[0].get("requests", 0)) if buckets[0] else 0

            if enforce:
                reason = REASON_ALLOWED
                if limits.max_per_message is not None and tokens > limits.max_per_message:
                    reason = REASON_PER_MESSAGE
                elif (
                    limits.max_per_minute is not None
                    and minute + tokens > limits.max_per_minute
                ):
                    reason = REASON_PER_MINUTE
                elif limits.max_per_day is not None and day + tokens > limits.max_per_day:
                    reason = REASON_PER_DAY
                if reason != REASON_ALLOWED:
                    return UsageCheck(
                        allowed=False,
                        reason_code=reason,
                        minute_tokens=minute,
                        hour_tokens=hour,
                        day_tokens=day,
                        minute_requests=minute_requests,
                    )

            requests = 1 if enforce else 0
            for key, ttl, bucket in zip(window_keys, window_ttls, buckets):
                if bucket is None:
                    bucket = {}
                    self._store(key, bucket, ttl)
                bucket["tokens"] = str(int(bucket.get("tokens", 0)) + tokens)
                bucket["requests"] = str(int(bucket.get("requests", 0)) + requests)

            return UsageCheck(
                allowed=True,
                reason_code=REASON_ALLOWED,
                minute_tokens=minute + tokens,
                hour_tokens=hour + tokens,
                day_tokens=day + tokens,
                minute_requests=minute_requests + requests,
            )

    async def record_jail_observation(
        self,
        key: str,
        observed_at: float,
        details: dict[str, str],
        ttl: int,
    ) -> int:
        async with self._lock:
            fields = self._typed(key, dict)
            if fields is None:
                fields = {"count": "0", "first_seen": str(observed_at)}
                self._store(key, fields, ttl)
            count = int(fields.get("count", 0)) + 1
            fields["count"] = str(count)
            fields["last_seen"] = str(observed_at)
            fields.update(details)
            return count

    # ==========================================================================
    # Health and Monitoring
    # ==========================================================================

    async def health_check(self) -> HealthCheckResult:
        """Perform a health check on the backend."""
        async with self._lock:
            self._cleanup_expired_from_heap()
            return HealthCheckResult(
                healthy=True,
                backend_type="memory",
                namespace=self.namespace,
                metadata={"keys": len(self._data)},
            )

    async def get_all_stats(self) -> dict[str, Any]:
        """Get all statistics from the backend."""
        async with self._lock:
            self._cleanup_expired_from_heap()
            kinds = {"strings": 0, "lists": 0, "hashes": 0}
            for value, _ in self._data.values():
                if isinstance(value, str):
                    kinds["strings"] += 1
                elif isinstance(value, list):
                    kinds["lists"] += 1
                else:
                    kinds["hashes"] += 1
            return {
                "backend_type": "memory",
                "namespace": self.namespace,
                "total_keys": len(self._data),
                "pending_expirations": len(self._expiration_heap),
                **kinds,
            }

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()
            self._expiration_heap.clear()
            logger.debug("MemoryBackend cleared")


__all__ = ["MemoryBackend"]
