# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Quota ledger: per-classification token accounting over minute, hour and
day windows.

Usage is kept in fixed window buckets keyed by the window index
(``floor(now / window_seconds)``). Each bucket is a hash with ``tokens`` and
``requests`` fields that expires shortly after its window ends, so counters
reset at window boundaries without a sweeper.

Admission is a single atomic check-and-increment on the backend: two
concurrent admitters can never both observe room for more tokens than
actually remain.
"""

import json
import logging
import time
from collections.abc import Callable

from ..backends.base import BaseBackend, UsageLimits
from ..config import QuotaConfig
from ..exceptions import QuotaExceededError, StoreUnavailableError
from ..observability.metrics import ResilienceMetrics
from ..types.classification import validate_classification
from ..types.quota import DAY, HOUR, MINUTE, WINDOWS, Quota, QuotaCheckResult, UsageStats

logger = logging.getLogger(__name__)


class QuotaLedger:
    """
    Tracks token consumption per model classification and answers
    admission questions.

    Args:
        backend: Shared store
        config: Quota configuration (namespace, quotas, cache TTL)
        metrics: Metrics facade, tokens charged are counted there
        clock: Wall clock in epoch seconds, injectable for tests

    Example:
        >>> ledger = QuotaLedger(backend, QuotaConfig(quotas={"hifi": Quota(max_tokens_per_minute=100)}))
        >>> result = await ledger.admit("hifi", 40)
        >>> result.allowed, result.remaining
        (True, 60)
    """

    def __init__(
        self,
        backend: BaseBackend,
        config: QuotaConfig | None = None,
        metrics: ResilienceMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self.config = config or QuotaConfig()
        self._metrics = metrics
        self._clock = clock
        # classification -> (quota or None, monotonic time cached)
        self._quota_cache: dict[str, tuple[Quota | None, float]] = {}

    # ==========================================================================
    # Keys
    # ==========================================================================

    def usage_key(self, classification: str, window: str, now: float) -> str:
        """Bucket key for one window. The classification is hash-tagged."""
        index = int(now // WINDOWS[window])
        return f"{self.config.namespace}:usage:{{{classification}}}:{window}:{index}"

    def quota_key(self, classification: str) -> str:
        return f"{self.config.namespace}:quota:{classification}"

    def _window_keys(self, classification: str) -> tuple[str, str, str]:
        now = self._clock()
        return (
            self.usage_key(classification, MINUTE, now),
            self.usage_key(classification, HOUR, now),
            self.usage_key(classification, DAY, now),
        )

    def _window_ttls(self) -> tuple[int, int, int]:
        grace = self.config.window_grace
        return (
            WINDOWS[MINUTE] + grace,
            WINDOWS[HOUR] + grace,
            WINDOWS[DAY] + grace,
        )

    # ==========================================================================
    # Quota configuration
    # ==========================================================================

    async def get_quota(self, classification: str) -> Quota | None:
        """
        Quota for a classification, None when unlimited.

        A quota stored with set_quota() overrides the configured one. Reads
        go through a local cache for ``quota_cache_ttl`` seconds; when the
        store cannot be read the configured quota is used.
        """
        validate_classification(classification)
        cached = self._quota_cache.get(classification)
        if cached is not None and time.monotonic() - cached[1] < self.config.quota_cache_ttl:
            return cached[0]

        quota = self.config.quotas.get(classification)
        try:
            raw = await self._backend.get(self.quota_key(classification))
        except StoreUnavailableError as e:
            logger.warning(f"Using configured quota for {classification}: {e}")
            return quota

        if raw is not None:
            try:
                quota = Quota.from_dict(json.loads(raw))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring malformed stored quota for {classification}: {e}")

        self._quota_cache[classification] = (quota, time.monotonic())
        return quota

    async def set_quota(self, classification: str, quota: Quota) -> None:
        """Persist a quota override shared by every process using the store."""
        validate_classification(classification)
        await self._backend.set(self.quota_key(classification), json.dumps(quota.to_dict()))
        self._quota_cache[classification] = (quota, time.monotonic())
        logger.info(f"Quota for {classification} set to {quota.to_dict()}")

    def invalidate_quota_cache(self) -> None:
        self._quota_cache.clear()

    # ==========================================================================
    # Admission
    # ==========================================================================

    async def admit(self, classification: str, token_estimate: int) -> QuotaCheckResult:
        """
        Atomically check the quota and, if the tokens fit, charge them.

        Raises:
            StoreUnavailableError: If the store cannot be reached
            ValueError: For an unknown classification or negative estimate
        """
        if token_estimate < 0:
            raise ValueError("token_estimate must be non-negative")
        quota = await self.get_quota(classification)
        limits = UsageLimits(
            max_per_message=quota.max_tokens_per_message if quota else None,
            max_per_minute=quota.max_tokens_per_minute if quota else None,
            max_per_day=quota.max_tokens_per_day if quota else None,
        )
        check = await self._backend.check_and_increment_usage(
            self._window_keys(classification),
            self._window_ttls(),
            token_estimate,
            limits,
            enforce=True,
        )
        usage = check.to_usage()
        if check.allowed and self._metrics is not None:
            self._metrics.record_tokens(classification, token_estimate)

        if not check.allowed:
            logger.debug(
                f"Quota rejected {token_estimate} tokens for {classification}: {check.reason}"
            )
        return QuotaCheckResult(
            allowed=check.allowed,
            reason=check.reason,
            remaining=self._remaining(quota, usage),
            current_usage=usage,
            quota=quota,
        )

    async def require(self, classification: str, token_estimate: int) -> QuotaCheckResult:
        """admit() for callers that cannot defer: a rejection raises QuotaExceededError."""
        result = await self.admit(classification, token_estimate)
        if not result.allowed:
            raise QuotaExceededError(
                f"{token_estimate} tokens exceed the {result.reason} quota of {classification}",
                classification=classification,
                reason=result.reason,
                token_estimate=token_estimate,
            )
        return result

    async def record_consumption(self, classification: str, tokens_used: int) -> UsageStats:
        """
        Charge tokens without checking limits (e.g. usage reported after the
        call exceeded the estimate).
        """
        validate_classification(classification)
        if tokens_used <= 0:
            return await self.get_usage(classification)
        check = await self._backend.check_and_increment_usage(
            self._window_keys(classification),
            self._window_ttls(),
            tokens_used,
            UsageLimits(),
            enforce=False,
        )
        if self._metrics is not None:
            self._metrics.record_tokens(classification, tokens_used)
        return check.to_usage()

    async def read_usage(self, classification: str) -> UsageStats:
        """
        Live counters for a classification.

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        validate_classification(classification)
        minute_key, hour_key, day_key = self._window_keys(classification)
        minute = await self._backend.hash_get_all(minute_key)
        hour = await self._backend.hash_get_all(hour_key)
        day = await self._backend.hash_get_all(day_key)
        return UsageStats(
            current_minute_tokens=int(minute.get("tokens", 0)),
            last_hour_tokens=int(hour.get("tokens", 0)),
            last_24_hours_tokens=int(day.get("tokens", 0)),
            request_count=int(minute.get("requests", 0)),
        )

    async def get_usage(self, classification: str) -> UsageStats:
        """Live counters for a classification. Zeroed when the store is unreachable."""
        try:
            return await self.read_usage(classification)
        except StoreUnavailableError as e:
            logger.error(f"Failed to read usage for {classification}: {e}")
            return UsageStats()

    async def check_quota(self, classification: str, tokens: int = 0) -> QuotaCheckResult:
        """Read-only admission check. Nothing is charged."""
        quota = await self.get_quota(classification)
        usage = await self.get_usage(classification)
        return self.evaluate(quota, usage, tokens)

    @classmethod
    def evaluate(cls, quota: Quota | None, usage: UsageStats, tokens: int = 0) -> QuotaCheckResult:
        """Apply the admission checks to a usage snapshot without charging anything."""
        reason: str | None = None
        if quota is not None:
            if quota.max_tokens_per_message is not None and tokens > quota.max_tokens_per_message:
                reason = "per_message"
            elif (
                quota.max_tokens_per_minute is not None
                and usage.current_minute_tokens + tokens > quota.max_tokens_per_minute
            ):
                reason = "per_minute"
            elif (
                quota.max_tokens_per_day is not None
                and usage.last_24_hours_tokens + tokens > quota.max_tokens_per_day
            ):
                reason = "per_day"
        return QuotaCheckResult(
            allowed=reason is None,
            reason=reason,
            remaining=cls._remaining(quota, usage),
            current_usage=usage,
            quota=quota,
        )

    @staticmethod
    def _remaining(quota: Quota | None, usage: UsageStats) -> int | None:
        if quota is None or quota.max_tokens_per_minute is None:
            return None
        return max(quota.max_tokens_per_minute - usage.current_minute_tokens, 0)


__all__ = ["QuotaLedger"]
