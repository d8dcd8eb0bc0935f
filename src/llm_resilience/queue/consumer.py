# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Queue consumer: replays deferred requests and records their outcomes.

Each tick visits every classification concurrently. For one classification
it pops up to ``generation_one_batch_size`` requests from generation 1.
Generation 2 is only touched when generation 1 is empty, and only
``generation_two_batch_size`` requests whose backoff has elapsed are taken.

For every popped request:

- the quota ledger is asked again; a rejection moves the request to
  generation 2 (or abandons it once its retries are exhausted)
- the call is replayed through the executor with a timeout
- success and terminal failures are written to the response store

A popped request is no longer visible in the queue, so a crash between the
pop and the outcome write loses it. There is no acknowledgement scheme.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from types import TracebackType
from typing import Any

from pydantic import BaseModel
from typing_extensions import Self

from ..config import QueueConfig
from ..exceptions import (
    MalformedQueueEntryError,
    MessageTooLargeForQueueError,
    StoreUnavailableError,
)
from ..observability.metrics import ResilienceMetrics
from ..providers.errors import classify_error, retry_after_seconds
from ..quota.estimator import reported_tokens
from ..quota.ledger import QuotaLedger
from ..responses.store import ResponseStore
from ..types.request import RateLimitedRequest
from ..types.response import ErrorType, ProcessedResponse
from .manager import RetryQueueManager

logger = logging.getLogger(__name__)

RequestExecutor = Callable[[RateLimitedRequest], Awaitable[Any]]
"""Replays a queued call and returns the provider result."""

GENERATION_TWO_EXHAUSTED = "generation_two_exhausted"
MOVED_TO_GENERATION_TWO = "moved_to_gen2"
RETRY_LIMIT_MESSAGE = "retry limit exceeded"


@dataclass
class ConsumerRunResult:
    """
    Summary of one consumer tick.

    Attributes:
        processed: Requests that completed successfully
        moved_to_generation_two: Requests rejected again and moved to generation 2
        failed: Requests that ended with a terminal error outcome
        dropped: Malformed queue entries discarded
        duration: Wall time of the tick in seconds
    """

    processed: int = 0
    moved_to_generation_two: int = 0
    failed: int = 0
    dropped: int = 0
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class QueueConsumer:
    """
    Drains the retry queues in a polling loop.

    Args:
        queues: Retry queue manager
        ledger: Quota ledger consulted before every replay
        responses: Response store receiving terminal outcomes
        executor: Coroutine function replaying a queued call
        config: Queue configuration (batch sizes, backoff, timeouts)
        metrics: Metrics facade

    Example:
        >>> consumer = QueueConsumer(queues, ledger, responses, executor)
        >>> result = await consumer.run_once()
        >>> async with consumer:  # background loop every poll_interval seconds
        ...     await serve_forever()
    """

    def __init__(
        self,
        queues: RetryQueueManager,
        ledger: QuotaLedger,
        responses: ResponseStore,
        executor: RequestExecutor,
        config: QueueConfig | None = None,
        metrics: ResilienceMetrics | None = None,
    ) -> None:
        self._queues = queues
        self._ledger = ledger
        self._responses = responses
        self._executor = executor
        self.config = config or queues.config
        self._metrics = metrics

        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._tick_lock = asyncio.Lock()

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background polling task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Queue consumer started (poll_interval={self.config.poll_interval}s)")

    async def stop(self) -> None:
        """Stop the background polling task."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Queue consumer stopped")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def _run_loop(self) -> None:
        while self._running:
            try:
                result = await self.run_once()
                if result.processed or result.failed or result.moved_to_generation_two:
                    logger.info(f"Consumer tick: {result.to_dict()}")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in consumer loop: {e}", exc_info=True)
            await asyncio.sleep(self.config.poll_interval)

    # ==========================================================================
    # Tick
    # ==========================================================================

    async def run_once(self) -> ConsumerRunResult:
        """
        Run one bounded tick over every configured classification.

        Ticks never overlap within one consumer.
        """
        async with self._tick_lock:
            started = time.monotonic()
            deadline = started + self.config.max_tick_duration
            result = ConsumerRunResult()
            await asyncio.gather(
                *(
                    self._drain_classification(classification, deadline, result)
                    for classification in self.config.classifications
                )
            )
            result.duration = time.monotonic() - started
            if self._metrics is not None:
                self._metrics.record_consumer_tick()
            return result

    async def _drain_classification(
        self, classification: str, deadline: float, result: ConsumerRunResult
    ) -> None:
        try:
            for _ in range(self.config.generation_one_batch_size):
                if time.monotonic() >= deadline:
                    return
                popped = await self._queues.pop(1, classification)
                result.dropped += popped.dropped
                if popped.request is None:
                    break
                await self._process_safely(popped.request, result)

            if await self._queues.get_queue_size(1, classification) > 0:
                return

            for _ in range(self.config.generation_two_batch_size):
                if time.monotonic() >= deadline:
                    return
                if not await self._take_generation_two(classification, result):
                    break
            remaining = await self._queues.get_queue_size(2, classification)
            if remaining:
                logger.debug(f"{remaining} requests left in generation 2 for {classification}")
        except StoreUnavailableError as e:
            logger.error(f"Store unavailable while draining {classification}: {e}")

    def is_due(self, request: RateLimitedRequest) -> bool:
        """
        Whether a generation-2 request may be retried.

        It waits for its backoff, or for the provider's retry-after hint
        when that is longer. The hint is capped at ``retry_backoff_max``.
        """
        wait = self.config.retry_backoff(request.metadata.attempts)
        hint = request.metadata.retry_after
        if hint is not None:
            wait = max(wait, min(hint, self.config.retry_backoff_max))
        return request.metadata.age_seconds >= wait

    async def _take_generation_two(
        self, classification: str, result: ConsumerRunResult
    ) -> bool:
        """Process the generation-2 head if it is due. Returns False to stop."""
        try:
            head = await self._queues.peek_head(2, classification)
        except MalformedQueueEntryError:
            head = None  # pop() below discards it
        else:
            if head is None or not self.is_due(head):
                return False

        popped = await self._queues.pop(2, classification)
        result.dropped += popped.dropped
        request = popped.request
        if request is None:
            return False
        if (head is None or request.id != head.id) and not self.is_due(request):
            # Another worker took the head first
            await self._queues.requeue(request)
            return False
        await self._process_safely(request, result)
        return True

    # ==========================================================================
    # Processing one request
    # ==========================================================================

    async def _process_safely(self, request: RateLimitedRequest, result: ConsumerRunResult) -> None:
        try:
            await self.process_request(request, result)
        except StoreUnavailableError as e:
            result.failed += 1
            logger.error(f"Store unavailable while processing {request.id}; request lost: {e}")

    async def process_request(
        self, request: RateLimitedRequest, result: ConsumerRunResult | None = None
    ) -> ErrorType | None:
        """
        Admit, replay and record one popped request.

        Returns:
            None on success, otherwise the ErrorType that decided its fate

        Raises:
            StoreUnavailableError: The store failed while recording the outcome
        """
        result = result if result is not None else ConsumerRunResult()
        classification = request.model_classification

        admission = await self._ledger.admit(classification, request.token_estimate)
        if not admission.allowed:
            if admission.reason == "per_message":
                await self._fail(
                    request,
                    ErrorType.WILL_NOT_RETRY,
                    "message exceeds the per-message token limit",
                    result,
                )
                return ErrorType.WILL_NOT_RETRY
            await self._retry_later(request, result)
            return ErrorType.QUOTA_EXCEEDED

        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._executor(request), timeout=self.config.request_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error_type = classify_error(exc)
            self._record_duration(request, started)
            if error_type is ErrorType.STORE_UNAVAILABLE:
                raise
            logger.info(f"Queued request {request.id} failed ({error_type.value}): {exc}")
            if error_type in (ErrorType.TRANSIENT_PROVIDER_ERROR, ErrorType.QUOTA_EXCEEDED):
                await self._retry_later(request, result, retry_after_seconds(exc))
            elif error_type is ErrorType.WILL_NOT_RETRY:
                await self._fail(request, ErrorType.WILL_NOT_RETRY, str(exc), result)
            else:
                await self._fail(request, ErrorType.SERVER_ERROR, str(exc), result)
            return error_type

        self._record_duration(request, started)
        actual = reported_tokens(response)
        if actual is not None and actual > request.token_estimate:
            await self._ledger.record_consumption(
                classification, actual - request.token_estimate
            )

        if isinstance(response, BaseModel):
            response = response.model_dump(mode="json")
        await self._responses.put_response(
            request.id, ProcessedResponse.success(request.id, response)
        )
        result.processed += 1
        if self._metrics is not None:
            self._metrics.record_message_processed(classification, request.generation)
        logger.debug(f"Processed queued request {request.id} from generation {request.generation}")
        return None

    def _record_duration(self, request: RateLimitedRequest, started: float) -> None:
        if self._metrics is not None:
            self._metrics.record_processing_duration(
                request.model_classification,
                request.generation,
                time.monotonic() - started,
            )

    async def _retry_later(
        self,
        request: RateLimitedRequest,
        result: ConsumerRunResult,
        retry_after: float | None = None,
    ) -> None:
        classification = request.model_classification
        if request.metadata.attempts >= self.config.max_generation_two_attempts:
            if self._metrics is not None:
                self._metrics.record_error(classification, GENERATION_TWO_EXHAUSTED)
            logger.warning(
                f"Request {request.id} abandoned after "
                f"{request.metadata.attempts} generation-2 attempts"
            )
            await self._fail(request, ErrorType.WILL_NOT_RETRY, RETRY_LIMIT_MESSAGE, result)
            return
        try:
            moved = await self._queues.move_to_generation_two(request, retry_after)
        except MessageTooLargeForQueueError as e:
            await self._fail(request, ErrorType.WILL_NOT_RETRY, str(e), result)
            return
        result.moved_to_generation_two += 1
        if self._metrics is not None:
            self._metrics.record_error(classification, MOVED_TO_GENERATION_TWO)
        logger.debug(
            f"Moved {request.id} to generation 2 (attempt {moved.metadata.attempts})"
        )

    async def _fail(
        self,
        request: RateLimitedRequest,
        error_type: ErrorType,
        message: str,
        result: ConsumerRunResult,
    ) -> None:
        await self._responses.put_response(
            request.id, ProcessedResponse.failure(request.id, error_type, message)
        )
        result.failed += 1
        if self._metrics is not None:
            self._metrics.record_error(request.model_classification, error_type.value)
            self._metrics.record_message_processed(
                request.model_classification, request.generation
            )


__all__ = [
    "GENERATION_TWO_EXHAUSTED",
    "MOVED_TO_GENERATION_TWO",
    "RETRY_LIMIT_MESSAGE",
    "ConsumerRunResult",
    "QueueConsumer",
    "RequestExecutor",
]
