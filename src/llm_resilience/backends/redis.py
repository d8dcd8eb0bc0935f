# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
RedisBackend for the LLM resilience layer

This module provides the RedisBackend that shares queues, quota counters,
cache entries and processed responses across processes, with atomic Lua
scripts for the composite operations.

Key Features:
- Single-key primitives mapped onto native Redis commands
- Atomic Lua scripts for quota check-and-increment and jail observations
- Transparent script reload after a Redis restart (NoScriptError)
- Support for Redis Cluster (callers hash-tag keys that must share a slot)
- Connectivity failures surfaced as StoreUnavailableError
"""

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, ClassVar, TypeVar

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.cluster import RedisCluster
from redis.exceptions import (
    ConnectionError,
    NoScriptError,
    RedisError,
    TimeoutError,
)

from ..exceptions import StoreUnavailableError
from ..observability.metrics import ResilienceMetrics
from ..types.quota import UsageCheck
from .base import BaseBackend, HealthCheckResult, UsageLimits

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUOTA_SCRIPT = "quota_check_and_increment"
JAIL_SCRIPT = "jail_observe"


class RedisBackend(BaseBackend):
    """
    A distributed Redis backend for the resilience layer.

    This backend uses:
    - Lists for the retry queues (RPUSH / LPOP)
    - Strings with expiry for responses, pending markers and cache entries
    - Hashes for usage buckets and jail entries
    - Atomic Lua scripts for every multi-step operation

    Deployment Requirements:
    - Redis 6.2+ (GETDEL)
    - Redis Cluster is supported; usage keys of one classification share a
      hash tag so the quota script touches a single slot
    """

    # Class-level Lua scripts loaded from files
    _lua_scripts: ClassVar[dict[str, str]] = {}

    @classmethod
    def _load_lua_scripts(cls) -> None:
        """Load Lua scripts from files at class level."""
        if cls._lua_scripts:
            return  # Already loaded

        lua_dir = Path(__file__).parent / "lua"

        for script_name in (QUOTA_SCRIPT, JAIL_SCRIPT):
            script_path = lua_dir / f"{script_name}.lua"
            if script_path.exists():
                cls._lua_scripts[script_name] = script_path.read_text(encoding="utf-8")
            else:
                logger.warning(f"Lua script not found: {script_path}")

    def __init__(
        self,
        redis_url: str | None = None,
        redis_client: Any | None = None,
        namespace: str = "llm_resilience",
        max_connections: int = 10,
        cluster_mode: bool = False,
        key_patterns: tuple[str, ...] = ("*",),
        metrics: ResilienceMetrics | None = None,
    ) -> None:
        """
        Initialize the Redis backend.

        Args:
            redis_url: Redis connection URL. If not provided, falls back to REDIS_URL
                environment variable, then to "redis://localhost:6379".
            redis_client: Optional pre-configured Redis client. The backend does
                not close a client it did not create.
            namespace: Label reported in health checks and stats
            max_connections: Maximum connections in the pool
            cluster_mode: Whether to use the Redis Cluster client
            key_patterns: SCAN patterns removed by clear()
            metrics: Optional metrics facade for script executions and errors

        Environment Variables:
            REDIS_URL: Default Redis connection URL when redis_url parameter is not provided.
        """
        super().__init__(namespace)

        self.redis_url = (
            redis_url or os.environ.get("REDIS_URL") or "redis://localhost:6379"
        )
        self.max_connections = max_connections
        self.cluster_mode = cluster_mode
        self.key_patterns = key_patterns
        self._metrics = metrics

        # Redis client state
        self._redis: Any | None = redis_client
        self._owned_redis = redis_client is None
        self._connected = False
        self._connection_lock = asyncio.Lock()

        # Lua script SHAs
        self._script_shas: dict[str, str] = {}

    # ==========================================================================
    # Connection Management
    # ==========================================================================

    def _build_client(self) -> Any:
        if self.cluster_mode:
            logger.info("Initializing Redis Cluster client")
            return RedisCluster.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                require_full_coverage=False,
            )
        pool = ConnectionPool.from_url(
            self.redis_url,
            max_connections=self.max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        return Redis(connection_pool=pool)

    async def _ensure_connected(self) -> Any:
        """Return a connected client, connecting and loading scripts on first use."""
        if self._redis is not None and self._connected:
            return self._redis

        async with self._connection_lock:
            if self._redis is not None and self._connected:
                return self._redis
            if self._redis is None:
                self._redis = self._build_client()
            try:
                await self._redis.ping()
                await self._load_scripts()
            except (ConnectionError, TimeoutError, RedisError) as e:
                logger.error(f"Failed to connect to Redis at {self.redis_url}: {e}")
                if self._owned_redis:
                    await self._cleanup_connection(self._redis)
                    self._redis = None
                raise StoreUnavailableError(
                    f"Redis unavailable: {e}", operation="connect"
                ) from e
            self._connected = True
            logger.info(f"Connected to Redis at {self.redis_url}")
            return self._redis

    async def _cleanup_connection(self, connection: Any, timeout: float = 2.5) -> None:
        """Close a Redis connection with timeout protection."""
        try:
            await asyncio.wait_for(connection.aclose(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Redis connection cleanup timed out")
        except (RedisError, OSError) as e:
            logger.error(f"Error during connection cleanup: {e}")

    async def connect(self) -> None:
        await self._ensure_connected()

    async def close(self) -> None:
        if self._redis is not None and self._owned_redis:
            await self._cleanup_connection(self._redis)
            self._redis = None
        self._connected = False
        logger.debug("RedisBackend closed")

    async def _load_scripts(self) -> None:
        """Load Lua scripts into Redis."""
        if not self._redis:
            raise RuntimeError("Redis client not initialized")

        self.__class__._load_lua_scripts()

        for script_name, script_source in self._lua_scripts.items():
            self._script_shas[script_name] = await self._redis.script_load(
                script_source
            )

    async def _evalsha_with_reload(
        self,
        redis_client: Any,
        script_name: str,
        num_keys: int,
        *args: Any,
    ) -> Any:
        """
        Execute EVALSHA with automatic script reload on NoScriptError.

        When a Redis node restarts all Lua scripts are lost. This method
        detects the NoScriptError, reloads the scripts and retries once.

        Args:
            redis_client: The Redis client to use
            script_name: Name of the Lua script (key in _lua_scripts)
            num_keys: Number of KEYS arguments
            *args: Keys and arguments for the script

        Returns:
            Result from evalsha

        Raises:
            NoScriptError: If reload and retry also fails
            Other Redis exceptions: Passed through unchanged
        """
        script_sha = self._script_shas.get(script_name)
        if not script_sha:
            await self._load_scripts()
            script_sha = self._script_shas[script_name]

        if self._metrics is not None:
            self._metrics.record_lua_execution()

        try:
            return await redis_client.evalsha(script_sha, num_keys, *args)
        except NoScriptError:
            logger.warning(
                f"Script '{script_name}' not found in Redis (SHA: {script_sha}). "
                f"Reloading all Lua scripts..."
            )
            self._script_shas.clear()
            await self._load_scripts()

            # Retry with new SHA (only once to prevent infinite loop)
            new_sha = self._script_shas[script_name]
            logger.info(f"Scripts reloaded. Retrying with new SHA: {new_sha}")
            return await redis_client.evalsha(new_sha, num_keys, *args)

    async def _execute(
        self, operation: str, command: Callable[[Any], Awaitable[T]]
    ) -> T:
        """Run one command, mapping Redis failures to StoreUnavailableError."""
        client = await self._ensure_connected()
        try:
            return await command(client)
        except (ConnectionError, TimeoutError) as e:
            # Force a reconnect on the next call
            self._connected = False
            self._record_error(type(e).__name__)
            logger.error(f"Redis {operation} failed: {e}")
            raise StoreUnavailableError(
                f"Redis {operation} failed: {e}", operation=operation
            ) from e
        except RedisError as e:
            self._record_error(type(e).__name__)
            logger.error(f"Redis {operation} failed: {e}")
            raise StoreUnavailableError(
                f"Redis {operation} failed: {e}", operation=operation
            ) from e

    def _record_error(self, error_type: str) -> None:
        if self._metrics is not None:
            self._metrics.record_backend_error(error_type)

    # ==========================================================================
    # Strings
    # ==========================================================================

    async def get(self, key: str) -> str | None:
        return await self._execute("get", lambda r: r.get(key))

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        px = max(int(ttl * 1000), 1) if ttl is not None else None
        await self._execute("set", lambda r: r.set(key, value, px=px))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._execute("delete", lambda r: r.delete(*keys)))

    async def exists(self, key: str) -> bool:
        return bool(await self._execute("exists", lambda r: r.exists(key)))

    async def get_and_delete(self, key: str) -> str | None:
        return await self._execute("get_and_delete", lambda r: r.getdel(key))

    async def increment(self, key: str, amount: int = 1, ttl: float | None = None) -> int:
        async def _incr(r: Any) -> int:
            value = int(await r.incrby(key, amount))
            if ttl is not None and value == amount:
                await r.expire(key, max(int(ttl), 1))
            return value

        return await self._execute("increment", _incr)

    # ==========================================================================
    # Lists
    # ==========================================================================

    async def list_push(self, key: str, value: str) -> int:
        return int(await self._execute("list_push", lambda r: r.rpush(key, value)))

    async def list_pop(self, key: str) -> str | None:
        return await self._execute("list_pop", lambda r: r.lpop(key))

    async def list_length(self, key: str) -> int:
        return int(await self._execute("list_length", lambda r: r.llen(key)))

    async def list_range(self, key: str, start: int, stop: int) -> list[str]:
        result = await self._execute("list_range", lambda r: r.lrange(key, start, stop))
        return list(result)

    # ==========================================================================
    # Hashes
    # ==========================================================================

    async def hash_get_all(self, key: str) -> dict[str, str]:
        result = await self._execute("hash_get_all", lambda r: r.hgetall(key))
        return dict(result) if result else {}

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
        args = [
            *window_keys,
            int(tokens),
            limits.max_per_message or 0,
            limits.max_per_minute or 0,
            limits.max_per_day or 0,
            *(int(ttl) for ttl in window_ttls),
            "1" if enforce else "0",
            1 if enforce else 0,
        ]
        result = await self._execute(
            "check_and_increment_usage",
            lambda r: self._evalsha_with_reload(r, QUOTA_SCRIPT, 3, *args),
        )
        allowed, reason, minute, hour, day, minute_requests = (int(v) for v in result)
        return UsageCheck(
            allowed=allowed == 1,
            reason_code=reason,
            minute_tokens=minute,
            hour_tokens=hour,
            day_tokens=day,
            minute_requests=minute_requests,
        )

    async def record_jail_observation(
        self,
        key: str,
        observed_at: float,
        details: dict[str, str],
        ttl: int,
    ) -> int:
        args: list[Any] = [key, repr(observed_at), int(ttl)]
        for field, value in details.items():
            args.extend((field, value))
        result = await self._execute(
            "record_jail_observation",
            lambda r: self._evalsha_with_reload(r, JAIL_SCRIPT, 1, *args),
        )
        return int(result)

    # ==========================================================================
    # Health and Monitoring
    # ==========================================================================

    async def health_check(self) -> HealthCheckResult:
        """Perform health check on the backend."""
        try:
            redis_client = await self._ensure_connected()

            test_key = f"health_check_{int(time.time())}"
            await redis_client.set(test_key, "test", ex=60)
            result = await redis_client.get(test_key)
            await redis_client.delete(test_key)

            info = await redis_client.info()

            return HealthCheckResult(
                healthy=result == "test",
                backend_type="redis",
                namespace=self.namespace,
                metadata={
                    "redis_url": self.redis_url,
                    "connected": self._connected,
                    "redis_version": info.get("redis_version"),
                    "used_memory": info.get("used_memory_human"),
                    "connected_clients": info.get("connected_clients"),
                },
            )
        except (StoreUnavailableError, RedisError, OSError) as e:
            return HealthCheckResult(
                healthy=False,
                backend_type="redis",
                namespace=self.namespace,
                error=str(e),
            )

    async def get_all_stats(self) -> dict[str, Any]:
        """Get all statistics from the backend."""
        return {
            "backend_type": "redis",
            "namespace": self.namespace,
            "redis_url": self.redis_url,
            "connected": self._connected,
            "cluster_mode": self.cluster_mode,
            "scripts_loaded": sorted(self._script_shas),
        }

    async def clear(self) -> None:
        """Delete every key matching key_patterns."""

        async def _clear(r: Any) -> int:
            deleted = 0
            for pattern in self.key_patterns:
                keys = [key async for key in r.scan_iter(match=pattern)]
                if keys:
                    deleted += int(await r.delete(*keys))
            return deleted

        deleted = await self._execute("clear", _clear)
        logger.debug(f"RedisBackend cleared {deleted} keys")


__all__ = ["RedisBackend"]
