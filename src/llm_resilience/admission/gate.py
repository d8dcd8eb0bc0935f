# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Admission gate: execute a model call now or defer it into the retry queue.

Every call is first charged against the quota ledger with one atomic
check-and-increment. An admitted call runs inline; a rejected one is queued
in generation 1 under a fresh correlation id, and the caller polls for its
outcome. Nothing is dropped silently: even a request that can never run
gets a terminal outcome the caller can poll.

Inline provider failures are routed by the error taxonomy:

- transient and rate-limit errors: queued in generation 1
- will_not_retry: terminal outcome, never queued
- anything else: terminal server_error outcome
- store failures: raised (500-class)
"""

import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..cache.fingerprint import normalize
from ..exceptions import MessageTooLargeForQueueError, RequestDeferredError
from ..middleware.protocols import DoGenerate, GenerateParams
from ..middleware.state import Middleware, StatefulMiddlewareConfig, is_state_operation
from ..observability.metrics import ResilienceMetrics
from ..providers.errors import classify_error
from ..queue.manager import RetryQueueManager
from ..quota.estimator import estimate_tokens, reported_tokens
from ..quota.ledger import QuotaLedger
from ..responses.store import ResponseStore
from ..types.classification import classify_model, validate_classification
from ..types.request import RateLimitedRequest
from ..types.response import ErrorType, ProcessedResponse

logger = logging.getLogger(__name__)

CallExecutor = Callable[[dict[str, Any]], Awaitable[Any]]
"""Runs a serialized call against the model and returns its result."""


@dataclass
class Admitted:
    """The call was admitted and executed inline."""

    request_id: str
    response: Any
    token_estimate: int

    @property
    def admitted(self) -> bool:
        return True


@dataclass
class Deferred:
    """
    The call was not answered inline.

    Attributes:
        request_id: Correlation id to poll with
        reason: ErrorType value that caused the deferral
    """

    request_id: str
    reason: str

    @property
    def admitted(self) -> bool:
        return False


AdmissionDecision = Admitted | Deferred


def serialize_call(params: GenerateParams) -> dict[str, Any]:
    """JSON-safe copy of call parameters, without volatile or protocol keys."""
    return json.loads(json.dumps(normalize(params), default=str))


class AdmissionGate(Middleware):
    """
    Decides per request whether to execute now or defer.

    Args:
        ledger: Quota ledger
        queues: Retry queue manager, receives deferred requests in generation 1
        responses: Response store, receives pending markers and terminal outcomes
        metrics: Metrics facade
        model_classification: Fixed classification for every call; derived
            from the model id when None

    Example:
        >>> decision = await gate.submit({"model_id": "gpt-4o", "messages": msgs}, run)
        >>> if not decision.admitted:
        ...     return {"status": "queued", "requestId": decision.request_id}
    """

    middleware_id = "retry-rate-limiter"

    def __init__(
        self,
        ledger: QuotaLedger,
        queues: RetryQueueManager,
        responses: ResponseStore,
        metrics: ResilienceMetrics | None = None,
        model_classification: str | None = None,
    ) -> None:
        self._ledger = ledger
        self._queues = queues
        self._responses = responses
        self._metrics = metrics
        if model_classification is not None:
            validate_classification(model_classification)
        self.rate_limit_context: dict[str, Any] = {"model_classification": model_classification}

    def _classify(self, request: dict[str, Any], classification: str | None) -> str:
        if classification is None:
            classification = self.rate_limit_context.get("model_classification")
        if classification is None:
            classification = classify_model(request.get("model_id"))
        return validate_classification(classification)

    # ==========================================================================
    # Submission
    # ==========================================================================

    async def submit(
        self,
        request: dict[str, Any],
        execute: CallExecutor,
        *,
        classification: str | None = None,
        token_estimate: int | None = None,
        request_id: str | None = None,
    ) -> AdmissionDecision:
        """
        Admit and run a call, or defer it.

        Args:
            request: Serialized call (``model_id``, ``messages``, provider settings)
            execute: Runs the call when admitted
            classification: Overrides the classification derived from ``model_id``
            token_estimate: Overrides the estimate derived from the request size
            request_id: Correlation id to use; a UUID4 by default

        Returns:
            Admitted with the result, or Deferred with the id to poll

        Raises:
            StoreUnavailableError: The shared store cannot be reached
        """
        classification = self._classify(request, classification)
        estimate = token_estimate if token_estimate is not None else estimate_tokens(request)
        queued = RateLimitedRequest(
            id=request_id or str(uuid.uuid4()),
            model_classification=classification,
            request=request,
            token_estimate=estimate,
        )

        admission = await self._ledger.admit(classification, estimate)
        if not admission.allowed:
            if admission.reason == "per_message":
                return await self._terminal(
                    queued,
                    ErrorType.WILL_NOT_RETRY,
                    f"~{estimate} tokens exceed the per-message limit of {classification}",
                )
            return await self._defer(queued, ErrorType.QUOTA_EXCEEDED)

        try:
            response = await execute(request)
        except Exception as exc:
            error_type = classify_error(exc)
            if error_type is ErrorType.STORE_UNAVAILABLE:
                raise
            logger.info(f"Inline call {queued.id} failed ({error_type.value}): {exc}")
            if error_type in (ErrorType.TRANSIENT_PROVIDER_ERROR, ErrorType.QUOTA_EXCEEDED):
                return await self._defer(queued, error_type)
            if error_type is ErrorType.WILL_NOT_RETRY:
                return await self._terminal(queued, ErrorType.WILL_NOT_RETRY, str(exc))
            return await self._terminal(queued, ErrorType.SERVER_ERROR, str(exc))

        actual = reported_tokens(response)
        if actual is not None and actual > estimate:
            await self._ledger.record_consumption(classification, actual - estimate)
        if self._metrics is not None:
            self._metrics.record_admitted(classification)
        return Admitted(request_id=queued.id, response=response, token_estimate=estimate)

    async def _defer(self, queued: RateLimitedRequest, reason: ErrorType) -> Deferred:
        await self._responses.mark_pending(queued.id)
        try:
            await self._queues.enqueue(1, queued.model_classification, queued)
        except MessageTooLargeForQueueError as e:
            return await self._terminal(queued, ErrorType.WILL_NOT_RETRY, str(e))
        if self._metrics is not None:
            self._metrics.record_deferred(queued.model_classification, reason.value)
        logger.info(
            f"Deferred request {queued.id} ({queued.model_classification}, "
            f"~{queued.token_estimate} tokens): {reason.value}"
        )
        return Deferred(request_id=queued.id, reason=reason.value)

    async def _terminal(
        self, queued: RateLimitedRequest, error_type: ErrorType, message: str
    ) -> Deferred:
        await self._responses.put_response(
            queued.id, ProcessedResponse.failure(queued.id, error_type, message)
        )
        if self._metrics is not None:
            self._metrics.record_deferred(queued.model_classification, error_type.value)
            self._metrics.record_error(queued.model_classification, error_type.value)
        logger.warning(f"Request {queued.id} failed terminally ({error_type.value}): {message}")
        return Deferred(request_id=queued.id, reason=error_type.value)

    # ==========================================================================
    # Middleware form
    # ==========================================================================

    async def wrap_generate(self, params: GenerateParams, do_generate: DoGenerate) -> Any:
        """
        Gate a chain call. A deferral raises RequestDeferredError.

        Raises:
            RequestDeferredError: The call was queued or failed terminally
            StoreUnavailableError: The shared store cannot be reached
        """
        if is_state_operation(params):
            return await do_generate()

        async def execute(_request: dict[str, Any]) -> Any:
            return await do_generate()

        decision = await self.submit(serialize_call(params), execute)
        if isinstance(decision, Deferred):
            raise RequestDeferredError(decision.request_id, decision.reason)
        return decision.response

    async def serialize_state(
        self, params: GenerateParams, config: StatefulMiddlewareConfig
    ) -> dict[str, Any]:
        return {
            "rate_limit_context": dict(self.rate_limit_context),
            "timestamp": int(time.time() * 1000),
        }

    async def deserialize_state(
        self, state: Any, params: GenerateParams, config: StatefulMiddlewareConfig
    ) -> None:
        if not isinstance(state, dict):
            logger.warning(f"Ignoring rate limiter state of type {type(state).__name__}")
            return
        context = state.get("rate_limit_context")
        if context:
            self.rate_limit_context = dict(context)
        age_ms = int(time.time() * 1000) - int(state.get("timestamp") or 0)
        logger.debug(f"Rate limiter state restored: {self.rate_limit_context} (age={age_ms}ms)")


__all__ = [
    "AdmissionDecision",
    "AdmissionGate",
    "Admitted",
    "CallExecutor",
    "Deferred",
    "serialize_call",
]
