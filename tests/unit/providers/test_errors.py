"""Unit tests for the provider error taxonomy."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from llm_resilience.exceptions import (
    MalformedQueueEntryError,
    MessageTooLargeForQueueError,
    QuotaExceededError,
    RateLimitError,
    StoreUnavailableError,
    TransientProviderError,
    WillNotRetryError,
)
from llm_resilience.providers.errors import (
    classify_error,
    is_policy_violation,
    is_rate_limit_error,
    retry_after_seconds,
)
from llm_resilience.types.response import ErrorType


class APIError(Exception):
    """Stand-in for a provider SDK exception."""

    def __init__(self, message, status_code=None, code=None, headers=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.headers = headers
        self.body = body


class TestOwnExceptions:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (StoreUnavailableError("down"), ErrorType.STORE_UNAVAILABLE),
            (QuotaExceededError("full", classification="hifi"), ErrorType.QUOTA_EXCEEDED),
            (WillNotRetryError("blocked"), ErrorType.WILL_NOT_RETRY),
            (MessageTooLargeForQueueError(5000, 1000), ErrorType.WILL_NOT_RETRY),
            (TransientProviderError("503"), ErrorType.TRANSIENT_PROVIDER_ERROR),
            (RateLimitError(), ErrorType.TRANSIENT_PROVIDER_ERROR),
            (MalformedQueueEntryError("bad", queue_key="q"), ErrorType.MALFORMED_QUEUE_ENTRY),
        ],
    )
    def test_direct_mapping(self, exc, expected):
        assert classify_error(exc) is expected


class TestProviderExceptions:
    @pytest.mark.parametrize(
        "exc",
        [
            APIError("Too many requests", status_code=429),
            APIError("slow down", code="rate_limit_exceeded"),
            APIError("Rate limit reached for gpt-4o"),
            APIError("busy", headers={"Retry-After": "3"}),
            APIError("busy", body={"error": {"code": "rate_limited"}}),
        ],
    )
    def test_rate_limits_are_transient(self, exc):
        assert is_rate_limit_error(exc)
        assert classify_error(exc) is ErrorType.TRANSIENT_PROVIDER_ERROR

    @pytest.mark.parametrize(
        "exc",
        [
            asyncio.TimeoutError(),
            TimeoutError("read timeout"),
            ConnectionResetError("reset by peer"),
            APIError("bad gateway", status_code=502),
            APIError("request timeout", status_code=408),
        ],
    )
    def test_network_and_server_errors_are_transient(self, exc):
        assert classify_error(exc) is ErrorType.TRANSIENT_PROVIDER_ERROR

    @pytest.mark.parametrize(
        "exc",
        [
            APIError("The response was filtered due to content_filter", status_code=400),
            APIError("Blocked", status_code=400, code="content_policy_violation"),
            APIError("ResponsibleAIPolicyViolation", status_code=403),
            APIError("Request blocked by safety settings"),
        ],
    )
    def test_policy_rejections_never_retry(self, exc):
        assert is_policy_violation(exc)
        assert classify_error(exc) is ErrorType.WILL_NOT_RETRY

    def test_policy_marker_on_server_error_is_transient(self):
        exc = APIError("safety service unavailable", status_code=503)
        assert not is_policy_violation(exc)
        assert classify_error(exc) is ErrorType.TRANSIENT_PROVIDER_ERROR

    @pytest.mark.parametrize(
        "exc",
        [
            ValueError("unexpected payload"),
            APIError("invalid api key", status_code=401),
            APIError("bad request", status_code=400),
        ],
    )
    def test_everything_else_is_server_error(self, exc):
        assert classify_error(exc) is ErrorType.SERVER_ERROR

    def test_status_from_response_attribute(self):
        exc = Exception("upstream")
        exc.response = SimpleNamespace(status_code=500, headers={})
        assert classify_error(exc) is ErrorType.TRANSIENT_PROVIDER_ERROR


class TestRetryAfter:
    def test_from_transient_error(self):
        assert retry_after_seconds(TransientProviderError("x", retry_after=2.5)) == 2.5

    def test_from_headers(self):
        assert retry_after_seconds(APIError("x", headers={"retry-after": "4"})) == 4.0

    def test_milliseconds_header(self):
        assert retry_after_seconds(APIError("x", headers={"retry-after-ms": "1500"})) == 1.5

    def test_list_header_value(self):
        assert retry_after_seconds(APIError("x", headers={"x-retry-after": ["7"]})) == 7.0

    def test_unparseable(self):
        assert retry_after_seconds(APIError("x", headers={"retry-after": "soon"})) is None

    def test_missing(self):
        assert retry_after_seconds(ValueError("x")) is None
