"""
Unit tests for the queue consumer.

Tests cover:
- Successful replay stored as a consumable outcome
- Quota rejection moving a request to generation 2
- Retry exhaustion and per-message rejections ending as will_not_retry
- Provider error routing and executor timeouts
- Generation 2 only drained once generation 1 is empty and backoff elapsed
- Background start/stop
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from llm_resilience.config import QueueConfig, QuotaConfig
from llm_resilience.exceptions import (
    StoreUnavailableError,
    TransientProviderError,
    WillNotRetryError,
)
from llm_resilience.observability.constants import (
    ERRORS_TOTAL,
    MESSAGES_PROCESSED_TOTAL,
    QUEUE_SIZE,
)
from llm_resilience.queue.consumer import (
    GENERATION_TWO_EXHAUSTED,
    MOVED_TO_GENERATION_TWO,
    RETRY_LIMIT_MESSAGE,
    QueueConsumer,
)
from llm_resilience.queue.manager import RetryQueueManager
from llm_resilience.quota.ledger import QuotaLedger
from llm_resilience.responses.store import ResponseStore
from llm_resilience.types.model import ModelResponse, TokenUsage
from llm_resilience.types.quota import Quota
from llm_resilience.types.response import ErrorType


class ScriptedExecutor:
    """Executor double returning or raising scripted outcomes in order."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    async def __call__(self, request):
        self.calls.append(request.id)
        outcome = self.outcomes.pop(0) if self.outcomes else {"text": "ok"}
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def queues(backend, queue_config, metrics) -> RetryQueueManager:
    return RetryQueueManager(backend, queue_config, metrics)


@pytest.fixture
def ledger(backend, metrics) -> QuotaLedger:
    config = QuotaConfig(
        namespace="test-stats",
        quotas={"hifi": Quota(max_tokens_per_message=500, max_tokens_per_minute=100)},
    )
    return QuotaLedger(backend, config, metrics)


@pytest.fixture
def responses(backend, queue_config) -> ResponseStore:
    return ResponseStore(backend, queue_config)


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def consumer(queues, ledger, responses, executor, queue_config, metrics) -> QueueConsumer:
    return QueueConsumer(queues, ledger, responses, executor, queue_config, metrics)


class TestProcessRequest:
    @pytest.mark.asyncio
    async def test_success_stored(self, consumer, responses, make_request, collector) -> None:
        request = make_request()
        await responses.mark_pending(request.id)

        assert await consumer.process_request(request) is None

        outcome = await responses.take_response(request.id)
        assert outcome.is_success
        assert outcome.response == {"text": "ok"}
        assert await responses.is_pending(request.id) is False
        labels = {"classification": "hifi", "generation": "1"}
        assert collector.get_counter(MESSAGES_PROCESSED_TOTAL, labels) == 1

    @pytest.mark.asyncio
    async def test_model_response_dumped(self, queues, ledger, responses, queue_config, make_request) -> None:
        response = ModelResponse(text="hi", usage=TokenUsage(total_tokens=5))
        consumer = QueueConsumer(queues, ledger, responses, ScriptedExecutor(response), queue_config)
        request = make_request()

        await consumer.process_request(request)

        stored = (await responses.get_response(request.id)).response
        assert stored["text"] == "hi"
        assert stored["usage"]["total_tokens"] == 5

    @pytest.mark.asyncio
    async def test_quota_rejection_moves_to_generation_two(
        self, consumer, ledger, queues, responses, make_request, collector
    ) -> None:
        await ledger.admit("hifi", 95)
        request = make_request(token_estimate=10)
        await responses.mark_pending(request.id)

        assert await consumer.process_request(request) is ErrorType.QUOTA_EXCEEDED

        moved = await queues.dequeue(2, "hifi")
        assert moved.id == request.id
        assert moved.metadata.attempts == 1
        assert await responses.is_pending(request.id) is True
        labels = {"classification": "hifi", "error_type": MOVED_TO_GENERATION_TWO}
        assert collector.get_counter(ERRORS_TOTAL, labels) == 1

    @pytest.mark.asyncio
    async def test_retry_exhaustion(
        self, consumer, ledger, queues, responses, make_request, collector
    ) -> None:
        await ledger.admit("hifi", 100)
        request = make_request()
        request = request.model_copy(
            update={"metadata": request.metadata.model_copy(update={"generation": 2, "attempts": 3})}
        )

        await consumer.process_request(request)

        outcome = await responses.get_response(request.id)
        assert outcome.error_type == "will_not_retry"
        assert outcome.error.message == RETRY_LIMIT_MESSAGE
        assert await queues.get_queue_size(2, "hifi") == 0
        labels = {"classification": "hifi", "error_type": GENERATION_TWO_EXHAUSTED}
        assert collector.get_counter(ERRORS_TOTAL, labels) == 1

    @pytest.mark.asyncio
    async def test_per_message_rejection_is_terminal(
        self, consumer, queues, responses, executor, make_request
    ) -> None:
        request = make_request(token_estimate=501)

        assert await consumer.process_request(request) is ErrorType.WILL_NOT_RETRY

        outcome = await responses.get_response(request.id)
        assert outcome.error_type == "will_not_retry"
        assert executor.calls == []
        assert await queues.get_queue_size(2, "hifi") == 0

    @pytest.mark.asyncio
    async def test_will_not_retry_error(self, queues, ledger, responses, queue_config, make_request) -> None:
        executor = ScriptedExecutor(WillNotRetryError("blocked by content filter", status_code=400))
        consumer = QueueConsumer(queues, ledger, responses, executor, queue_config)
        request = make_request()

        assert await consumer.process_request(request) is ErrorType.WILL_NOT_RETRY
        outcome = await responses.get_response(request.id)
        assert outcome.error.type == "will_not_retry"
        assert "content filter" in outcome.error.message

    @pytest.mark.asyncio
    async def test_transient_error_moves_to_generation_two(
        self, queues, ledger, responses, queue_config, make_request
    ) -> None:
        executor = ScriptedExecutor(TransientProviderError("upstream 503", status_code=503))
        consumer = QueueConsumer(queues, ledger, responses, executor, queue_config)
        request = make_request()

        assert await consumer.process_request(request) is ErrorType.TRANSIENT_PROVIDER_ERROR
        assert await queues.get_queue_size(2, "hifi") == 1
        assert await responses.get_response(request.id) is None

    @pytest.mark.asyncio
    async def test_retry_after_hint_delays_generation_two(
        self, queues, ledger, responses, queue_config, make_request
    ) -> None:
        executor = ScriptedExecutor(
            TransientProviderError("slow down", status_code=429, retry_after=45.0)
        )
        consumer = QueueConsumer(queues, ledger, responses, executor, queue_config)

        await consumer.process_request(make_request())

        head = await queues.peek_head(2, "hifi")
        assert head.metadata.retry_after == 45.0
        assert queue_config.retry_backoff(head.metadata.attempts) == 0.0
        assert consumer.is_due(head) is False

    @pytest.mark.asyncio
    async def test_unknown_error_is_server_error(
        self, queues, ledger, responses, queue_config, make_request
    ) -> None:
        executor = ScriptedExecutor(KeyError("choices"))
        consumer = QueueConsumer(queues, ledger, responses, executor, queue_config)
        request = make_request()

        assert await consumer.process_request(request) is ErrorType.SERVER_ERROR
        assert (await responses.get_response(request.id)).error_type == "server_error"

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, queues, ledger, responses, make_request) -> None:
        async def slow(request):
            await asyncio.sleep(10)

        config = QueueConfig(queue_prefix="test-queue", retry_backoff_base=0.0, request_timeout=0.05)
        consumer = QueueConsumer(queues, ledger, responses, slow, config)

        result = await consumer.process_request(make_request())

        assert result is ErrorType.TRANSIENT_PROVIDER_ERROR
        assert await queues.get_queue_size(2, "hifi") == 1

    @pytest.mark.asyncio
    async def test_reported_usage_above_estimate_charged(
        self, queues, ledger, responses, queue_config, make_request
    ) -> None:
        response = ModelResponse(text="hi", usage=TokenUsage(total_tokens=30))
        consumer = QueueConsumer(queues, ledger, responses, ScriptedExecutor(response), queue_config)

        await consumer.process_request(make_request(token_estimate=10))

        assert (await ledger.get_usage("hifi")).current_minute_tokens == 30

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, queues, ledger, responses, queue_config, make_request) -> None:
        executor = ScriptedExecutor(StoreUnavailableError("down", operation="get"))
        consumer = QueueConsumer(queues, ledger, responses, executor, queue_config)
        with pytest.raises(StoreUnavailableError):
            await consumer.process_request(make_request())


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_empty_tick(self, consumer) -> None:
        result = await consumer.run_once()
        assert (result.processed, result.failed, result.moved_to_generation_two) == (0, 0, 0)
        assert result.duration >= 0

    @pytest.mark.asyncio
    async def test_processes_generation_one(self, consumer, queues, responses, executor, make_request) -> None:
        requests = [make_request() for _ in range(3)]
        for request in requests:
            await queues.enqueue(1, "hifi", request)

        result = await consumer.run_once()

        assert result.processed == 3
        assert executor.calls == [r.id for r in requests]
        for request in requests:
            assert (await responses.get_response(request.id)).is_success

    @pytest.mark.asyncio
    async def test_generation_one_batch_bounded(self, queues, ledger, responses, make_request) -> None:
        config = QueueConfig(queue_prefix="test-queue", retry_backoff_base=0.0, generation_one_batch_size=2)
        consumer = QueueConsumer(queues, ledger, responses, ScriptedExecutor(), config)
        for _ in range(5):
            await queues.enqueue(1, "hifi", make_request())

        result = await consumer.run_once()

        assert result.processed == 2
        assert await queues.get_queue_size(1, "hifi") == 3

    @pytest.mark.asyncio
    async def test_generation_two_waits_for_generation_one(
        self, queues, ledger, responses, make_request
    ) -> None:
        config = QueueConfig(queue_prefix="test-queue", retry_backoff_base=0.0, generation_one_batch_size=1)
        executor = ScriptedExecutor()
        consumer = QueueConsumer(queues, ledger, responses, executor, config)
        first, second = make_request(), make_request()
        await queues.enqueue(1, "hifi", first)
        await queues.enqueue(1, "hifi", second)
        retried = await queues.move_to_generation_two(make_request())

        await consumer.run_once()
        assert executor.calls == [first.id]
        assert await queues.get_queue_size(2, "hifi") == 1

        await consumer.run_once()
        assert executor.calls == [first.id, second.id, retried.id]
        assert await queues.get_queue_size(2, "hifi") == 0

    @pytest.mark.asyncio
    async def test_generation_two_backoff(self, queues, ledger, responses, make_request) -> None:
        config = QueueConfig(queue_prefix="test-queue", retry_backoff_base=60.0)
        executor = ScriptedExecutor()
        consumer = QueueConsumer(queues, ledger, responses, executor, config)
        fresh = await queues.move_to_generation_two(make_request())

        await consumer.run_once()
        assert executor.calls == []
        assert consumer.is_due(fresh) is False

        old = fresh.model_copy(
            update={
                "metadata": fresh.metadata.model_copy(
                    update={"submitted_at": datetime.now(timezone.utc) - timedelta(seconds=61)}
                )
            }
        )
        assert consumer.is_due(old) is True

    @pytest.mark.asyncio
    async def test_generation_two_honours_retry_after(
        self, consumer, queues, executor, queue_config, make_request
    ) -> None:
        hinted = await queues.move_to_generation_two(make_request(), retry_after=30.0)

        await consumer.run_once()
        assert executor.calls == []
        assert await queues.get_queue_size(2, "hifi") == 1

        def aged(seconds: float, hint: float):
            return hinted.model_copy(
                update={
                    "metadata": hinted.metadata.model_copy(
                        update={
                            "submitted_at": datetime.now(timezone.utc) - timedelta(seconds=seconds),
                            "retry_after": hint,
                        }
                    )
                }
            )

        assert consumer.is_due(aged(31, 30.0)) is True
        # Hints never hold a request longer than the longest backoff
        assert consumer.is_due(aged(queue_config.retry_backoff_max + 1, 10_000.0)) is True

    @pytest.mark.asyncio
    async def test_tick_refreshes_generation_two_gauge(
        self, consumer, queues, backend, make_request, collector
    ) -> None:
        request = make_request()
        waiting = request.model_copy(
            update={
                "metadata": request.metadata.model_copy(
                    update={"generation": 2, "attempts": 1, "retry_after": 30.0}
                )
            }
        )
        # Pushed behind the manager's back, so only the tick can report it
        await backend.list_push(queues.queue_key(2, "hifi"), waiting.to_json())

        await consumer.run_once()

        labels = {"classification": "hifi", "generation": "2"}
        assert collector.get_gauge(QUEUE_SIZE, labels) == 1.0

    @pytest.mark.asyncio
    async def test_rejection_in_tick_counts_move(self, consumer, ledger, queues, make_request) -> None:
        await ledger.admit("hifi", 100)
        await queues.enqueue(1, "hifi", make_request())

        result = await consumer.run_once()

        assert result.moved_to_generation_two == 1
        assert result.processed == 0
        assert await queues.get_queue_size(1, "hifi") == 0

    @pytest.mark.asyncio
    async def test_malformed_entries_counted(self, consumer, queues, backend, make_request) -> None:
        await backend.list_push(queues.queue_key(1, "lofi"), "garbage")
        await queues.enqueue(1, "lofi", make_request("lofi"))

        result = await consumer.run_once()

        assert result.dropped == 1
        assert result.processed == 1

    @pytest.mark.asyncio
    async def test_all_classifications_visited(self, consumer, queues, executor, make_request) -> None:
        for classification in ("hifi", "lofi", "completions", "embedding"):
            await queues.enqueue(1, classification, make_request(classification))
        result = await consumer.run_once()
        assert result.processed == 4
        assert len(executor.calls) == 4


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop(self, queues, ledger, responses, make_request) -> None:
        config = QueueConfig(queue_prefix="test-queue", poll_interval=0.01)
        consumer = QueueConsumer(queues, ledger, responses, ScriptedExecutor(), config)
        request = make_request()
        await queues.enqueue(1, "hifi", request)

        await consumer.start()
        assert consumer.is_running
        for _ in range(100):
            if await responses.get_response(request.id) is not None:
                break
            await asyncio.sleep(0.01)
        await consumer.stop()

        assert not consumer.is_running
        assert (await responses.get_response(request.id)).is_success

    @pytest.mark.asyncio
    async def test_context_manager(self, consumer) -> None:
        async with consumer:
            assert consumer.is_running
        assert not consumer.is_running

    @pytest.mark.asyncio
    async def test_start_twice(self, consumer) -> None:
        await consumer.start()
        task = consumer._task
        await consumer.start()
        assert consumer._task is task
        await consumer.stop()
