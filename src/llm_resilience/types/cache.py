# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Cache and jail entry models.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class CacheEntry(BaseModel):
    """
    A trusted model response served to identical requests.

    Attributes:
        fingerprint: Hash of the normalized request
        payload: The cached ModelResponse, as a dict
        created_at: When the entry was written
        hit_count: Lookups served from this entry (maintained in a separate
            counter key and filled in on read)
        promoted_from_jail: True when the entry started life as a jailed
            soft failure and was promoted after repeated observation
    """

    fingerprint: str
    payload: dict[str, Any]
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    hit_count: int = 0
    promoted_from_jail: bool = False


class JailResponseDetails(BaseModel):
    """Summary of the most recent soft failure observed for a fingerprint."""

    finish_reason: str
    has_warnings: bool = False
    text_length: int = 0


class JailEntry(BaseModel):
    """
    A soft-failure outcome that is not yet trusted as cacheable.

    Attributes:
        fingerprint: Hash of the normalized request
        observed_count: How many times the soft failure was seen in the window
        first_seen_at: First observation (the window starts here)
        last_seen_at: Latest observation
        last_response: Details of the latest observation
    """

    fingerprint: str
    observed_count: int
    first_seen_at: datetime
    last_seen_at: datetime
    last_response: JailResponseDetails | None = None

    @classmethod
    def from_hash(cls, fingerprint: str, data: dict[str, str]) -> "JailEntry":
        """Build an entry from the stored hash fields."""
        details = None
        if "finish_reason" in data:
            details = JailResponseDetails(
                finish_reason=data["finish_reason"],
                has_warnings=data.get("has_warnings") == "1",
                text_length=int(data.get("text_length", 0)),
            )
        return cls(
            fingerprint=fingerprint,
            observed_count=int(data.get("count", 0)),
            first_seen_at=datetime.fromtimestamp(
                float(data["first_seen"]), tz=timezone.utc
            ),
            last_seen_at=datetime.fromtimestamp(
                float(data["last_seen"]), tz=timezone.utc
            ),
            last_response=details,
        )


__all__ = ["CacheEntry", "JailEntry", "JailResponseDetails"]
