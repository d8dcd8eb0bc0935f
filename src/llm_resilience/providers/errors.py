# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Error taxonomy for provider failures.

Our own exceptions map directly onto ErrorType. Exceptions raised by
provider SDKs are classified heuristically from their status code, error
code, message and headers, so no SDK needs to be imported here.
"""

import asyncio
import logging
from typing import Any

from ..exceptions import (
    MalformedQueueEntryError,
    QuotaExceededError,
    StoreUnavailableError,
    TransientProviderError,
    WillNotRetryError,
)
from ..types.response import ErrorType

logger = logging.getLogger(__name__)

RATE_LIMIT_CODES = frozenset({"rate_limit_exceeded", "rate_limited", "too_many_requests"})
RETRY_AFTER_HEADERS = ("x-retry-after", "retry-after", "retry-after-ms")

# Substrings that mark a 400/403/422 as a deterministic policy rejection
POLICY_MARKERS = (
    "content_filter",
    "content filter",
    "content_policy",
    "content policy",
    "responsibleaipolicyviolation",
    "safety",
    "policy violation",
    "invalid_prompt",
)
POLICY_STATUS_CODES = frozenset({400, 403, 422})


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _headers(exc: BaseException) -> dict[str, Any]:
    headers = getattr(exc, "headers", None)
    if headers is None:
        headers = getattr(getattr(exc, "response", None), "headers", None)
    if not headers:
        return {}
    try:
        return {str(k).lower(): v for k, v in dict(headers).items()}
    except (TypeError, ValueError):
        return {}


def _error_code(exc: BaseException) -> str | None:
    code = getattr(exc, "code", None)
    if isinstance(code, str):
        return code.lower()
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        nested = body.get("error", body)
        if isinstance(nested, dict) and isinstance(nested.get("code"), str):
            return str(nested["code"]).lower()
    return None


def retry_after_seconds(exc: BaseException) -> float | None:
    """Retry-after hint carried by an exception, in seconds."""
    if isinstance(exc, TransientProviderError) and exc.retry_after is not None:
        return exc.retry_after
    headers = _headers(exc)
    for name in RETRY_AFTER_HEADERS:
        value = headers.get(name)
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            if not value:
                continue
            value = value[0]
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            continue
        return seconds / 1000.0 if name.endswith("-ms") else seconds
    return None


def is_rate_limit_error(exc: BaseException) -> bool:
    """
    Whether an exception is a provider rate-limit rejection.

    Matches an error code of ``rate_limit_exceeded``, HTTP 429, a "rate
    limit" message or the presence of a retry-after header.
    """
    if _error_code(exc) in RATE_LIMIT_CODES:
        return True
    if _status_code(exc) == 429:
        return True
    message = str(exc).lower()
    if "rate limit" in message or "rate_limit" in message:
        return True
    headers = _headers(exc)
    return any(name in headers for name in RETRY_AFTER_HEADERS)


def is_policy_violation(exc: BaseException) -> bool:
    """Whether an exception is a deterministic content-policy rejection."""
    status = _status_code(exc)
    if status is not None and status not in POLICY_STATUS_CODES:
        return False
    text = f"{_error_code(exc) or ''} {exc}".lower()
    return any(marker in text for marker in POLICY_MARKERS)


def classify_error(exc: BaseException) -> ErrorType:
    """
    Map an exception onto the error taxonomy.

    Args:
        exc: Exception raised by a model call or a store operation

    Returns:
        The ErrorType that decides whether the request is retried

    Example:
        >>> classify_error(RateLimitError())
        <ErrorType.TRANSIENT_PROVIDER_ERROR: 'transient_provider_error'>
    """
    if isinstance(exc, StoreUnavailableError):
        return ErrorType.STORE_UNAVAILABLE
    if isinstance(exc, QuotaExceededError):
        return ErrorType.QUOTA_EXCEEDED
    if isinstance(exc, WillNotRetryError):
        return ErrorType.WILL_NOT_RETRY
    if isinstance(exc, TransientProviderError):
        return ErrorType.TRANSIENT_PROVIDER_ERROR
    if isinstance(exc, MalformedQueueEntryError):
        return ErrorType.MALFORMED_QUEUE_ENTRY

    if is_rate_limit_error(exc):
        return ErrorType.TRANSIENT_PROVIDER_ERROR
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorType.TRANSIENT_PROVIDER_ERROR

    status = _status_code(exc)
    if status is not None and (status >= 500 or status == 408):
        return ErrorType.TRANSIENT_PROVIDER_ERROR
    if is_policy_violation(exc) and (status is None or status in POLICY_STATUS_CODES):
        return ErrorType.WILL_NOT_RETRY

    logger.debug(f"Unclassified provider error {type(exc).__name__}: {exc}")
    return ErrorType.SERVER_ERROR


__all__ = [
    "classify_error",
    "is_policy_violation",
    "is_rate_limit_error",
    "retry_after_seconds",
]
