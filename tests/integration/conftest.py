# SPDX-License-Identifier: Apache-2.0
"""
Integration fixtures: backends that run the real store code paths.

The Redis fixtures use fakeredis with lupa so the Lua scripts execute for
real. Tests depending on them are skipped when either package is missing.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from llm_resilience.backends.base import BaseBackend
from llm_resilience.backends.memory import MemoryBackend

try:
    import fakeredis.aioredis as fakeredis
except ImportError:
    fakeredis = None

try:
    import lupa
except ImportError:
    lupa = None


def _require_fakeredis() -> None:
    if fakeredis is None:
        pytest.skip("fakeredis not installed")
    if lupa is None:
        pytest.skip("lupa not installed (required for Lua)")


@pytest.fixture
async def fake_redis() -> AsyncIterator[object]:
    """A fresh fakeredis client returning str values."""
    _require_fakeredis()
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def redis_backend(fake_redis) -> AsyncIterator[BaseBackend]:
    from llm_resilience.backends.redis import RedisBackend

    backend = RedisBackend(redis_client=fake_redis, namespace="integration")
    await backend.connect()
    yield backend
    await backend.close()


@pytest.fixture(params=["memory", "redis"])
async def any_backend(request) -> AsyncIterator[BaseBackend]:
    """Each test using this fixture runs once per backend."""
    client = None
    if request.param == "memory":
        backend: BaseBackend = MemoryBackend(namespace="integration")
    else:
        from llm_resilience.backends.redis import RedisBackend

        _require_fakeredis()
        client = fakeredis.FakeRedis(decode_responses=True)
        backend = RedisBackend(redis_client=client, namespace="integration")
    await backend.connect()
    yield backend
    await backend.close()
    if client is not None:
        await client.aclose()
