# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Terminal outcome types stored in the response store.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class ErrorType(str, Enum):
    """Error taxonomy shared by the queue, the store and the polling endpoint.

    - QUOTA_EXCEEDED: soft and retryable, causes deferral into generation 1.
    - TRANSIENT_PROVIDER_ERROR: retryable, causes a move to generation 2.
    - WILL_NOT_RETRY: terminal, surfaced as 410 Gone.
    - MALFORMED_QUEUE_ENTRY: an unparseable queue item, logged and dropped.
    - STORE_UNAVAILABLE: the shared store is unreachable (500-class).
    - SERVER_ERROR: any other terminal failure, surfaced as 400.
    """

    QUOTA_EXCEEDED = "quota_exceeded"
    TRANSIENT_PROVIDER_ERROR = "transient_provider_error"
    WILL_NOT_RETRY = "will_not_retry"
    MALFORMED_QUEUE_ENTRY = "malformed_queue_entry"
    STORE_UNAVAILABLE = "store_unavailable"
    SERVER_ERROR = "server_error"


class ErrorDescriptor(BaseModel):
    """Terminal error recorded for a request."""

    type: str
    message: str = ""


class ProcessedResponse(BaseModel):
    """
    The terminal outcome of a deferred request.

    Exactly one of ``response`` and ``error`` is set. Reading it through the
    polling endpoint is destructive for successes, so a poller receives a
    payload at most once.

    Attributes:
        request_id: Correlation id of the request
        response: Provider result on success (JSON-serializable)
        error: Error descriptor on failure
        processed_at: When the outcome was produced
    """

    request_id: str
    response: Any | None = None
    error: ErrorDescriptor | None = None
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _validate_outcome(self) -> "ProcessedResponse":
        if self.error is not None and self.response is not None:
            raise ValueError("A processed response holds a response or an error, not both")
        return self

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def error_type(self) -> str | None:
        return self.error.type if self.error else None

    @classmethod
    def success(cls, request_id: str, response: Any) -> "ProcessedResponse":
        return cls(request_id=request_id, response=response)

    @classmethod
    def failure(
        cls, request_id: str, error_type: ErrorType | str, message: str = ""
    ) -> "ProcessedResponse":
        value = error_type.value if isinstance(error_type, ErrorType) else error_type
        return cls(request_id=request_id, error=ErrorDescriptor(type=value, message=message))


__all__ = ["ErrorDescriptor", "ErrorType", "ProcessedResponse"]
