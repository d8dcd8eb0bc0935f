# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Shared store backends.

Available backends:
- BaseBackend: Abstract base class defining the store interface
- MemoryBackend: In-memory backend for tests and single-instance deployments
- RedisBackend: Redis-based backend for distributed deployments (requires redis extra)

Supporting types:
- HealthCheckResult: Structured result from backend health checks
- UsageLimits: Limits passed to the quota check-and-increment operation

Note: RedisBackend is lazily imported to avoid requiring the redis package
when only using MemoryBackend.
"""

from typing import TYPE_CHECKING, cast

from llm_resilience.backends.base import BaseBackend, HealthCheckResult, UsageLimits
from llm_resilience.backends.memory import MemoryBackend

# Lazy imports for optional redis backend
if TYPE_CHECKING:
    from llm_resilience.backends.redis import RedisBackend

__all__ = [
    "BaseBackend",
    "HealthCheckResult",
    "MemoryBackend",
    "RedisBackend",
    "UsageLimits",
]


def __getattr__(name: str) -> type:
    """Lazy import for optional redis backend components."""
    if name == "RedisBackend":
        try:
            from llm_resilience.backends import redis as redis_module

            return cast(type, getattr(redis_module, name))
        except ImportError as e:  # pragma: no cover
            raise ImportError(  # pragma: no cover
                f"'{name}' requires the 'redis' extra. "
                "Install with: pip install llm-resilience[redis]"
            ) from e
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
