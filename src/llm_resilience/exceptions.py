# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the LLM resilience layer.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from ResilienceError, making it easy to catch
every error raised by the resilience layer with a single except clause.

Provider failures are split by how the queue reacts to them:
TransientProviderError (and its RateLimitError subclass) is retried in a
later queue generation, while WillNotRetryError is written as a terminal
outcome and never queued again.
"""

from typing import Any


class ResilienceError(Exception):
    """Base exception for all resilience layer errors.

    Example:
        try:
            outcome = await gate.submit(request, execute)
        except ResilienceError as e:
            logger.error(f"Resilience layer error: {e}")
    """

    pass


class ConfigurationError(ResilienceError):
    """Raised when configuration is invalid.

    This exception is raised while wiring components together when the
    provided values are incompatible, for example a consumer configured for
    a classification that the queue manager does not know about.

    Example:
        try:
            service = create_resilience_service(config=config)
        except ConfigurationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise SystemExit(1)
    """

    pass


class StoreUnavailableError(ResilienceError):
    """Raised when the shared store cannot be reached.

    Backends translate client-level connection, timeout and protocol errors
    into this exception so callers never need to import the store client's
    exception types. Request paths surface it as a 500-class failure;
    diagnostics and statistics paths catch it and answer with degraded data.

    Attributes:
        operation: The store operation that failed (e.g. "list_pop").
            May be None if the failing operation is not known.

    Example:
        try:
            await store.put_response(request_id, outcome)
        except StoreUnavailableError as e:
            logger.error(f"Store down during {e.operation}: {e}")
    """

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class QuotaExceededError(ResilienceError):
    """Raised when a request does not fit in the remaining token quota.

    The admission gate never raises this to its callers, it defers the
    request instead. Middleware-style callers that cannot accept a deferral
    receive it from the quota ledger's ``require`` helper.

    Attributes:
        classification: The model classification whose quota was checked.
        reason: Which limit rejected the request
            ("per_message", "per_minute" or "per_day").
        token_estimate: The token estimate that did not fit.

    Example:
        try:
            await ledger.require("hifi", 5000)
        except QuotaExceededError as e:
            logger.info(f"Deferring: {e.reason} limit for {e.classification}")
    """

    def __init__(
        self,
        message: str,
        classification: str,
        reason: str | None = None,
        token_estimate: int | None = None,
    ):
        super().__init__(message)
        self.classification = classification
        self.reason = reason
        self.token_estimate = token_estimate


class ProviderError(ResilienceError):
    """Base class for failures reported by the underlying model provider.

    Attributes:
        status_code: HTTP status reported by the provider, if any.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Raised for provider failures that are expected to clear on retry.

    Network errors, timeouts and 5xx responses fall in this category. The
    queue consumer moves the request to generation 2 and retries it later,
    up to the configured attempt limit.

    Attributes:
        retry_after: Provider-suggested wait in seconds, if one was sent.

    Example:
        try:
            response = await provider.generate(request)
        except TimeoutError as e:
            raise TransientProviderError("Provider timed out") from e
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class RateLimitError(TransientProviderError):
    """Raised when the provider itself rejects a call with a rate limit."""

    def __init__(
        self,
        message: str = "Provider rate limit exceeded",
        status_code: int | None = 429,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code=status_code, retry_after=retry_after)


class WillNotRetryError(ProviderError):
    """Raised when a request must never be retried.

    Policy or safety blocks and permanently invalid requests fall in this
    category. The outcome is written to the response store as terminal and
    the polling endpoint reports it with 410 Gone.

    Example:
        if response.finish_reason == "content-filter" and strict:
            raise WillNotRetryError("Blocked by content policy", status_code=400)
    """

    pass


class MessageTooLargeForQueueError(WillNotRetryError):
    """Raised when a request is too large to ever be admitted.

    Attributes:
        token_estimate: Estimated tokens of the rejected request.
        max_tokens: The limit it was checked against.
    """

    def __init__(self, token_estimate: int, max_tokens: int):
        super().__init__(
            f"Message of ~{token_estimate} tokens exceeds the queue limit "
            f"of {max_tokens} tokens"
        )
        self.token_estimate = token_estimate
        self.max_tokens = max_tokens


class MalformedQueueEntryError(ResilienceError):
    """Raised when a queue item cannot be parsed.

    Raised by RetryQueueManager.peek_head. Dequeue never raises it:
    malformed entries are logged, counted and dropped there so a single bad
    item cannot stall a consumer.

    Attributes:
        queue_key: The queue the entry was popped from.
        raw: The raw stored value, truncated for logging.
    """

    def __init__(self, message: str, queue_key: str, raw: Any = None):
        super().__init__(message)
        self.queue_key = queue_key
        self.raw = raw


class RequestDeferredError(ResilienceError):
    """Raised by middleware-style wrappers when a call was queued.

    A middleware chain has to return a model result or raise, so the
    admission gate's middleware form reports a deferral with this
    exception. The correlation id is what the caller polls with.

    Attributes:
        request_id: Correlation id for the polling endpoint.
        reason: Why the request was deferred (an ErrorType value).

    Example:
        try:
            result = await chain.generate(params)
        except RequestDeferredError as e:
            return {"status": "queued", "requestId": e.request_id}
    """

    def __init__(self, request_id: str, reason: str):
        super().__init__(f"Request {request_id} deferred ({reason})")
        self.request_id = request_id
        self.reason = reason
