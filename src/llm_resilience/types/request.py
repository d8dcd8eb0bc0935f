# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Queued request types.

A RateLimitedRequest is what travels through the retry queues. It is
stored as JSON in the shared store, so it is a pydantic model: parsing a
stored entry validates it, and a value that fails validation is a
malformed queue entry.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .classification import validate_classification, validate_generation


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestMetadata(BaseModel):
    """
    Queue bookkeeping for a deferred request.

    Attributes:
        submitted_at: When the request entered its current queue. Refreshed
            on every move to generation 2 and used for backoff and age.
        first_submitted_at: When the request was first deferred. Never changes.
        generation: Retry tier the request currently sits in (1 or 2).
        attempts: Number of generation-2 enqueues so far.
        retry_after: Provider retry-after hint in seconds, counted from
            submitted_at. The request is not retried before it elapses.
    """

    submitted_at: datetime = Field(default_factory=_utcnow)
    first_submitted_at: datetime = Field(default_factory=_utcnow)
    generation: int = 1
    attempts: int = 0
    retry_after: float | None = None

    @model_validator(mode="after")
    def _validate_generation(self) -> "RequestMetadata":
        validate_generation(self.generation)
        if self.attempts < 0:
            raise ValueError("attempts must be non-negative")
        if self.retry_after is not None and self.retry_after < 0:
            raise ValueError("retry_after must be non-negative")
        return self

    @property
    def age_seconds(self) -> float:
        """Seconds since the request entered its current queue."""
        return (_utcnow() - self.submitted_at).total_seconds()


class RateLimitedRequest(BaseModel):
    """
    A model call that could not be admitted immediately.

    Attributes:
        id: Correlation id returned to the caller and used for polling.
        model_classification: Quota/queue partition of the target model.
        request: The serialized call (model id, messages, provider parameters).
        metadata: Queue bookkeeping, see RequestMetadata.
        token_estimate: Tokens charged against the quota on admission.
    """

    id: str
    model_classification: str
    request: dict[str, Any]
    metadata: RequestMetadata = Field(default_factory=RequestMetadata)
    token_estimate: int = 0

    @model_validator(mode="after")
    def _validate_request(self) -> "RateLimitedRequest":
        validate_classification(self.model_classification)
        if self.token_estimate < 0:
            raise ValueError("token_estimate must be non-negative")
        return self

    @property
    def generation(self) -> int:
        return self.metadata.generation

    def to_json(self) -> str:
        """Serialize for storage in a queue list."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> "RateLimitedRequest":
        """Parse a stored queue entry. Raises pydantic.ValidationError."""
        return cls.model_validate_json(raw)


@dataclass(frozen=True)
class QueueKey:
    """
    Address of one FIFO list: a (generation, classification) pair.

    Attributes:
        generation: Retry tier (1 or 2)
        classification: Model classification
    """

    generation: int
    classification: str

    def __post_init__(self) -> None:
        validate_generation(self.generation)
        validate_classification(self.classification)

    def render(self, prefix: str) -> str:
        """Render the store key for this queue under the given prefix."""
        return f"{prefix}:gen{self.generation}:{self.classification}"


__all__ = ["QueueKey", "RateLimitedRequest", "RequestMetadata"]
