# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Quota limits, live usage counters and admission results.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

# Window name -> length in seconds
MINUTE = "minute"
HOUR = "hour"
DAY = "day"
WINDOWS: dict[str, int] = {MINUTE: 60, HOUR: 3600, DAY: 86400}

# Reason codes returned by the backend's check-and-increment operation
REASON_ALLOWED = 0
REASON_PER_MESSAGE = 1
REASON_PER_MINUTE = 2
REASON_PER_DAY = 3

REASON_NAMES: dict[int, str | None] = {
    REASON_ALLOWED: None,
    REASON_PER_MESSAGE: "per_message",
    REASON_PER_MINUTE: "per_minute",
    REASON_PER_DAY: "per_day",
}


@dataclass
class Quota:
    """
    Token limits for one model classification. None means unlimited.

    Attributes:
        max_tokens_per_message: Largest single request that may be admitted
        max_tokens_per_minute: Tokens admitted per calendar minute
        max_tokens_per_day: Tokens admitted per calendar day
    """

    max_tokens_per_message: int | None = None
    max_tokens_per_minute: int | None = None
    max_tokens_per_day: int | None = None

    def __post_init__(self) -> None:
        for name in (
            "max_tokens_per_message",
            "max_tokens_per_minute",
            "max_tokens_per_day",
        ):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive or None")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Quota":
        return cls(
            max_tokens_per_message=data.get("max_tokens_per_message"),
            max_tokens_per_minute=data.get("max_tokens_per_minute"),
            max_tokens_per_day=data.get("max_tokens_per_day"),
        )


@dataclass
class UsageStats:
    """Live token counters for one classification."""

    current_minute_tokens: int = 0
    last_hour_tokens: int = 0
    last_24_hours_tokens: int = 0
    request_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class UsageCheck:
    """
    Raw result of the backend's atomic check-and-increment.

    Counter values are the post-operation values when the check passed,
    and the unchanged current values when it was rejected.
    """

    allowed: bool
    reason_code: int
    minute_tokens: int
    hour_tokens: int
    day_tokens: int
    minute_requests: int

    @property
    def reason(self) -> str | None:
        return REASON_NAMES.get(self.reason_code, "unknown")

    def to_usage(self) -> UsageStats:
        return UsageStats(
            current_minute_tokens=self.minute_tokens,
            last_hour_tokens=self.hour_tokens,
            last_24_hours_tokens=self.day_tokens,
            request_count=self.minute_requests,
        )


@dataclass
class QuotaCheckResult:
    """
    Outcome of an admission question against the quota ledger.

    Attributes:
        allowed: Whether the tokens fit
        reason: Which limit rejected them ("per_message", "per_minute", "per_day")
        remaining: Tokens left in the current minute after this decision,
            None when no per-minute limit applies
        current_usage: Counter snapshot taken by the same atomic operation
        quota: The quota the request was checked against, if any
    """

    allowed: bool
    reason: str | None = None
    remaining: int | None = None
    current_usage: UsageStats = field(default_factory=UsageStats)
    quota: Quota | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "remaining": self.remaining,
            "current_usage": self.current_usage.to_dict(),
            "quota": self.quota.to_dict() if self.quota else None,
        }


__all__ = [
    "DAY",
    "HOUR",
    "MINUTE",
    "REASON_ALLOWED",
    "REASON_NAMES",
    "REASON_PER_DAY",
    "REASON_PER_MESSAGE",
    "REASON_PER_MINUTE",
    "WINDOWS",
    "Quota",
    "QuotaCheckResult",
    "UsageCheck",
    "UsageStats",
]
