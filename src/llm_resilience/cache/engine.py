# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Failure-aware response cache.

Results are cached by request fingerprint, but only once they can be
trusted:

- a success is cached immediately
- a soft failure (content filter, "other" finish, warnings) is counted in a
  jail hash; the K-th observation within the jail window promotes it to a
  normal cache entry, so a filter proven deterministic stops costing calls
- a hard failure is never cached and never jailed

Store failures never fail a call: they are logged, counted as cache errors
and the model is called as if the cache were empty.
"""

import logging
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

from pydantic import ValidationError

from ..backends.base import BaseBackend
from ..config import CacheConfig
from ..exceptions import StoreUnavailableError
from ..middleware.protocols import DoGenerate, DoStream, GenerateParams
from ..middleware.state import Middleware, is_state_operation
from ..observability.metrics import ResilienceMetrics
from ..types.cache import CacheEntry, JailEntry
from ..types.model import FINISH_ERROR, FINISH_STOP, ModelResponse, StreamPart, TokenUsage
from .fingerprint import fingerprint
from .outcome import CacheOutcome, as_model_response, classify_response

logger = logging.getLogger(__name__)

MALFORMED_CACHE_ENTRY = "malformed_cache_entry"


class CacheEngine(Middleware):
    """
    Response cache with quarantine-then-promote for soft failures.

    Usable directly (generate/stream) or as a link in a MiddlewareChain.

    Args:
        backend: Shared store
        config: Cache configuration (prefixes, TTLs, jail threshold)
        metrics: Metrics facade
        clock: Wall clock in epoch seconds, injectable for tests

    Example:
        >>> engine = CacheEngine(backend, CacheConfig(jail_threshold=3))
        >>> response = await engine.generate(params, lambda: model.generate(params))
    """

    middleware_id = "cache"

    def __init__(
        self,
        backend: BaseBackend,
        config: CacheConfig | None = None,
        metrics: ResilienceMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self.config = config or CacheConfig()
        self._metrics = metrics
        self._clock = clock

    # ==========================================================================
    # Keys
    # ==========================================================================

    def fingerprint_for(self, params: GenerateParams) -> str:
        return fingerprint(params.get("model_id"), params)

    def cache_key(self, fp: str) -> str:
        return f"{self.config.cache_prefix}:{fp}"

    def jail_key(self, fp: str) -> str:
        return f"{self.config.jail_prefix}:{fp}"

    def hits_key(self, fp: str) -> str:
        return f"{self.config.cache_prefix}:{fp}:hits"

    def _record_error(self, error_type: str = "cache_error") -> None:
        if self._metrics is not None:
            self._metrics.record_cache_error(error_type)

    # ==========================================================================
    # Lookup and inspection
    # ==========================================================================

    async def lookup(self, fp: str) -> CacheEntry | None:
        """
        Cached entry for a fingerprint, counting the hit.

        A stored entry that does not parse is logged and reported as a miss.

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        raw = await self._backend.get(self.cache_key(fp))
        if raw is None:
            return None
        try:
            entry = CacheEntry.model_validate_json(raw)
            ModelResponse.model_validate(entry.payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed cache entry {fp[:12]}: {e}")
            self._record_error(MALFORMED_CACHE_ENTRY)
            return None
        hits = await self._backend.increment(self.hits_key(fp), 1, ttl=self.config.cache_ttl)
        return entry.model_copy(update={"hit_count": hits})

    async def get_jail_entry(self, fp: str) -> JailEntry | None:
        """Jail state of a fingerprint, None when nothing is jailed."""
        data = await self._backend.hash_get_all(self.jail_key(fp))
        if not data:
            return None
        return JailEntry.from_hash(fp, data)

    async def invalidate(self, fp: str) -> bool:
        """Forget a fingerprint: cache entry, hit counter and jail."""
        removed = await self._backend.delete(
            self.cache_key(fp), self.hits_key(fp), self.jail_key(fp)
        )
        return removed > 0

    async def _lookup_or_none(self, fp: str) -> CacheEntry | None:
        try:
            entry = await self.lookup(fp)
        except StoreUnavailableError as e:
            logger.error(f"Cache lookup failed, calling the model: {e}")
            self._record_error()
            return None
        if self._metrics is not None:
            if entry is None:
                self._metrics.record_cache_miss()
            else:
                self._metrics.record_cache_hit()
        return entry

    # ==========================================================================
    # Calls
    # ==========================================================================

    async def generate(self, params: GenerateParams, do_generate: DoGenerate) -> Any:
        """
        Serve a call from the cache or run it and apply the caching policy.

        A result that parses as a ModelResponse is returned as one, so a
        miss and a later hit hand back the same type. Exceptions raised by
        ``do_generate`` propagate unchanged and nothing is cached for them.
        """
        if not self.config.enabled or is_state_operation(params):
            return await do_generate()

        fp = self.fingerprint_for(params)
        entry = await self._lookup_or_none(fp)
        if entry is not None:
            logger.debug(f"Cache hit for {fp[:12]} (hits={entry.hit_count})")
            return ModelResponse.model_validate(entry.payload)

        logger.debug(f"Cache miss for {fp[:12]}")
        result = await do_generate()
        response = as_model_response(result)
        await self._apply_policy(fp, response)
        return response if response is not None else result

    async def stream(
        self, params: GenerateParams, do_stream: DoStream
    ) -> AsyncIterator[StreamPart]:
        """
        Streaming form of generate.

        A hit is replayed as text-delta parts of ``stream_chunk_size``
        characters and a finish part. On a miss the provider's parts pass
        through unchanged and the assembled response is classified once the
        stream is exhausted.
        """
        if not self.config.enabled:
            async for part in do_stream():
                yield part
            return

        fp = self.fingerprint_for(params)
        entry = await self._lookup_or_none(fp)
        if entry is not None:
            logger.debug(f"Stream cache hit for {fp[:12]}")
            for part in self._replay(ModelResponse.model_validate(entry.payload)):
                yield part
            return

        text: list[str] = []
        finish_reason = FINISH_STOP
        usage: TokenUsage | None = None
        warnings: list[Any] = []
        async for part in do_stream():
            if part.type == "text-delta":
                text.append(part.delta)
            elif part.type == "finish":
                finish_reason = part.finish_reason or FINISH_STOP
                usage = part.usage
                warnings = list(part.warnings)
            elif part.type == "error":
                finish_reason = FINISH_ERROR
            yield part

        await self._apply_policy(
            fp,
            ModelResponse(
                text="".join(text),
                finish_reason=finish_reason,
                usage=usage,
                warnings=warnings,
            ),
        )

    def _replay(self, response: ModelResponse) -> list[StreamPart]:
        size = self.config.stream_chunk_size
        parts = [
            StreamPart(type="text-delta", delta=response.text[i : i + size])
            for i in range(0, len(response.text), size)
        ]
        parts.append(
            StreamPart(
                type="finish",
                finish_reason=response.finish_reason or FINISH_STOP,
                usage=response.usage,
                warnings=list(response.warnings),
            )
        )
        return parts

    # ==========================================================================
    # Middleware hooks
    # ==========================================================================

    async def wrap_generate(self, params: GenerateParams, do_generate: DoGenerate) -> Any:
        return await self.generate(params, do_generate)

    def wrap_stream(
        self, params: GenerateParams, do_stream: DoStream
    ) -> AsyncIterator[StreamPart]:
        return self.stream(params, do_stream)

    # ==========================================================================
    # Caching policy
    # ==========================================================================

    async def _apply_policy(self, fp: str, response: ModelResponse | None) -> CacheOutcome:
        outcome = classify_response(response)
        try:
            if outcome is CacheOutcome.SUCCESS and response is not None:
                await self.store(fp, response)
            elif outcome is CacheOutcome.SOFT_FAILURE and response is not None:
                await self._jail(fp, response)
            else:
                logger.debug(
                    f"Not caching {fp[:12]} "
                    f"(finish_reason={response.finish_reason if response else None})"
                )
        except StoreUnavailableError as e:
            logger.error(f"Cache update failed for {fp[:12]}: {e}")
            self._record_error()
        return outcome

    async def store(
        self, fp: str, response: ModelResponse, promoted_from_jail: bool = False
    ) -> CacheEntry:
        """
        Write a trusted cache entry for a fingerprint.

        A success that is not a promotion also clears any jail count, so
        earlier soft failures do not carry over to the next window.
        """
        entry = CacheEntry(
            fingerprint=fp,
            payload=response.model_dump(mode="json"),
            promoted_from_jail=promoted_from_jail,
        )
        await self._backend.set(
            self.cache_key(fp), entry.model_dump_json(), ttl=self.config.cache_ttl
        )
        if not promoted_from_jail:
            await self._backend.delete(self.jail_key(fp))
        if self._metrics is not None:
            self._metrics.record_cache_store()
        logger.debug(f"Cached response for {fp[:12]} ({len(response.text)} chars)")
        return entry

    async def _jail(self, fp: str, response: ModelResponse) -> int:
        count = await self._backend.record_jail_observation(
            self.jail_key(fp),
            self._clock(),
            {
                "finish_reason": response.finish_reason,
                "has_warnings": "1" if response.has_warnings else "0",
                "text_length": str(len(response.text)),
            },
            ttl=self.config.jail_ttl,
        )
        if self._metrics is not None:
            self._metrics.record_jail_update()
        logger.debug(
            f"Cache jail updated for {fp[:12]} (count: {count}/{self.config.jail_threshold})"
        )

        if count >= self.config.jail_threshold:
            await self.store(fp, response, promoted_from_jail=True)
            if self._metrics is not None:
                self._metrics.record_jail_promotion()
            logger.info(
                f"Promoted jailed response {fp[:12]} to the cache after {count} observations"
            )
        return count


__all__ = ["MALFORMED_CACHE_ENTRY", "CacheEngine"]
