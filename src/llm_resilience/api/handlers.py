# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Framework-free endpoint logic.

Every handler returns an EndpointResponse; the HTTP adapter only renders
it. Status codes of the polling endpoint:

====  =========================================================
404   unknown request id (never deferred, expired or consumed)
202   deferred, no terminal outcome yet
200   success; the outcome is consumed by this poll
410   terminal will_not_retry error
400   any other terminal error
503   the shared store is unreachable
====  =========================================================

Diagnostics and model stats never fail on a store outage: they answer 200
with zeroed data and ``"degraded": true``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..exceptions import StoreUnavailableError
from ..observability.metrics import ResilienceMetrics
from ..queue.consumer import QueueConsumer
from ..queue.manager import RetryQueueManager
from ..quota.ledger import QuotaLedger
from ..responses.store import ResponseStore
from ..types.classification import GENERATIONS, validate_classification
from ..types.quota import UsageStats
from ..types.request import RateLimitedRequest
from ..types.response import ErrorType, ProcessedResponse

logger = logging.getLogger(__name__)


@dataclass
class EndpointResponse:
    """Status code and JSON body of an endpoint answer."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


# ==============================================================================
# Polling
# ==============================================================================


def _outcome_body(outcome: ProcessedResponse) -> dict[str, Any]:
    body: dict[str, Any] = {
        "request_id": outcome.request_id,
        "processed_at": outcome.processed_at.isoformat(),
    }
    error = outcome.error
    if error is None:
        body["status"] = "success"
        body["response"] = outcome.response
    else:
        body["status"] = "error"
        body["error"] = error.model_dump()
    return body


async def poll_request(responses: ResponseStore, request_id: str) -> EndpointResponse:
    """
    Check once for the outcome of a deferred request.

    A success is consumed atomically, so a second poll answers 404. Error
    outcomes are left in place until they expire or are removed.
    """
    try:
        outcome = await responses.get_response(request_id)
        if outcome is None:
            if await responses.is_pending(request_id):
                return EndpointResponse(202, {"status": "pending", "request_id": request_id})
            return EndpointResponse(404, {"status": "not_found", "request_id": request_id})

        if outcome.is_success:
            taken = await responses.take_response(request_id)
            if taken is None:
                # A concurrent poller consumed it first
                return EndpointResponse(404, {"status": "not_found", "request_id": request_id})
            return EndpointResponse(200, _outcome_body(taken))
    except StoreUnavailableError as e:
        logger.error(f"Polling {request_id} failed: {e}")
        return EndpointResponse(
            503,
            {
                "status": "error",
                "request_id": request_id,
                "error": ErrorType.STORE_UNAVAILABLE.value,
            },
        )

    if outcome.error_type == ErrorType.WILL_NOT_RETRY.value:
        return EndpointResponse(410, _outcome_body(outcome))
    return EndpointResponse(400, _outcome_body(outcome))


# ==============================================================================
# Diagnostics
# ==============================================================================


def _sample_entry(request: RateLimitedRequest) -> dict[str, Any]:
    messages = request.request.get("messages")
    return {
        "id": request.id,
        "model_id": request.request.get("model_id"),
        "message_count": len(messages) if isinstance(messages, list) else 0,
        "token_estimate": request.token_estimate,
        "generation": request.generation,
        "attempts": request.metadata.attempts,
        "submitted_at": request.metadata.submitted_at.isoformat(),
        "age_seconds": round(request.metadata.age_seconds, 3),
    }


async def get_diagnostics(
    queues: RetryQueueManager,
    metrics: ResilienceMetrics | None = None,
    sample_size: int | None = None,
) -> EndpointResponse:
    """Queue sizes, a bounded sample per queue, totals and the metrics summary."""
    limit = queues.config.diagnostics_sample_size if sample_size is None else sample_size
    degraded = False
    report: dict[str, dict[str, Any]] = {}
    totals: dict[str, int] = {f"generation_{generation}": 0 for generation in GENERATIONS}

    for classification in queues.config.classifications:
        per_generation: dict[str, Any] = {}
        for generation in GENERATIONS:
            name = f"generation_{generation}"
            try:
                size = await queues.get_queue_size(generation, classification)
                sample = await queues.peek_sample(generation, classification, limit)
            except StoreUnavailableError as e:
                logger.error(f"Diagnostics could not read {classification} gen{generation}: {e}")
                degraded = True
                size, sample = 0, []
            per_generation[name] = {
                "size": size,
                "sample": [_sample_entry(request) for request in sample],
            }
            totals[name] += size
        report[classification] = per_generation

    body = {
        "queues": report,
        "totals": {**totals, "total": sum(totals.values())},
        "metrics": metrics.get_summary() if metrics is not None else {"available": False},
        "degraded": degraded,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return EndpointResponse(200, body)


# ==============================================================================
# Model stats
# ==============================================================================


async def get_model_stats(
    ledger: QuotaLedger, classification: str, tokens: int = 0
) -> EndpointResponse:
    """Quota configuration merged with live usage and a read-only quota check."""
    try:
        validate_classification(classification)
    except ValueError as e:
        return EndpointResponse(404, {"status": "not_found", "error": str(e)})

    degraded = False
    quota = await ledger.get_quota(classification)
    try:
        usage = await ledger.read_usage(classification)
    except StoreUnavailableError as e:
        logger.error(f"Model stats for {classification} degraded: {e}")
        degraded = True
        usage = UsageStats()
    check = ledger.evaluate(quota, usage, tokens)

    return EndpointResponse(
        200,
        {
            "classification": classification,
            "quota": quota.to_dict() if quota else None,
            "stats": {
                "minute": usage.current_minute_tokens,
                "hour": usage.last_hour_tokens,
                "day": usage.last_24_hours_tokens,
                "requests_this_minute": usage.request_count,
            },
            "quota_check": check.to_dict(),
            "degraded": degraded,
        },
    )


# ==============================================================================
# Consumer trigger
# ==============================================================================


async def run_consumer_tick(consumer: QueueConsumer) -> EndpointResponse:
    """Run one consumer tick on demand (for cron-style deployments)."""
    try:
        result = await consumer.run_once()
    except Exception as e:
        logger.error(f"Consumer tick failed: {e}", exc_info=True)
        return EndpointResponse(500, {"success": False, "error": str(e)})
    return EndpointResponse(
        200,
        {
            "success": True,
            **result.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


__all__ = [
    "EndpointResponse",
    "get_diagnostics",
    "get_model_stats",
    "poll_request",
    "run_consumer_tick",
]
