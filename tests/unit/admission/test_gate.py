"""
Unit tests for the admission gate.

Tests cover:
- Inline execution when the quota has room
- Deferral into generation 1 with a pending marker
- Per-message rejections and will_not_retry errors as terminal outcomes
- Inline provider error routing
- Middleware form raising RequestDeferredError
- Rate limit context serialization through the state protocol
"""

from __future__ import annotations

from typing import Any

import pytest

from llm_resilience.admission.gate import (
    AdmissionGate,
    Admitted,
    Deferred,
    serialize_call,
)
from llm_resilience.config import QueueConfig, QuotaConfig
from llm_resilience.exceptions import (
    RateLimitError,
    RequestDeferredError,
    StoreUnavailableError,
    WillNotRetryError,
)
from llm_resilience.middleware.state import STATE_PROTOCOL, StatefulMiddlewareConfig
from llm_resilience.observability.constants import (
    REQUESTS_ADMITTED_TOTAL,
    REQUESTS_DEFERRED_TOTAL,
)
from llm_resilience.queue.manager import RetryQueueManager
from llm_resilience.quota.ledger import QuotaLedger
from llm_resilience.responses.store import ResponseStore
from llm_resilience.types.model import ModelResponse, TokenUsage
from llm_resilience.types.quota import Quota

REQUEST = {
    "model_id": "gpt-4o",
    "messages": [{"role": "user", "content": "Summarize the report"}],
}


def executor(result: Any = None):
    calls: list[dict] = []

    async def run(request: dict) -> Any:
        calls.append(request)
        if isinstance(result, BaseException):
            raise result
        return result if result is not None else {"text": "done"}

    run.calls = calls  # type: ignore[attr-defined]
    return run


@pytest.fixture
def ledger(backend, metrics) -> QuotaLedger:
    config = QuotaConfig(
        namespace="test-stats",
        quotas={"hifi": Quota(max_tokens_per_message=500, max_tokens_per_minute=100)},
    )
    return QuotaLedger(backend, config, metrics)


@pytest.fixture
def queues(backend, queue_config, metrics) -> RetryQueueManager:
    return RetryQueueManager(backend, queue_config, metrics)


@pytest.fixture
def responses(backend, queue_config) -> ResponseStore:
    return ResponseStore(backend, queue_config)


@pytest.fixture
def gate(ledger, queues, responses, metrics) -> AdmissionGate:
    return AdmissionGate(ledger, queues, responses, metrics)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_admitted_runs_inline(self, gate, queues, collector) -> None:
        run = executor()
        decision = await gate.submit(REQUEST, run, token_estimate=40)

        assert isinstance(decision, Admitted)
        assert decision.admitted is True
        assert decision.response == {"text": "done"}
        assert run.calls == [REQUEST]
        assert await queues.get_queue_size(1, "hifi") == 0
        assert collector.get_counter(REQUESTS_ADMITTED_TOTAL, {"classification": "hifi"}) == 1

    @pytest.mark.asyncio
    async def test_default_estimate_from_request_size(self, gate, ledger) -> None:
        decision = await gate.submit(REQUEST, executor())
        assert decision.token_estimate > 0
        usage = await ledger.get_usage("hifi")
        assert usage.current_minute_tokens == decision.token_estimate

    @pytest.mark.asyncio
    async def test_deferred_when_quota_full(self, gate, ledger, queues, responses, collector) -> None:
        await ledger.admit("hifi", 95)
        run = executor()

        decision = await gate.submit(REQUEST, run, token_estimate=10)

        assert isinstance(decision, Deferred)
        assert decision.reason == "quota_exceeded"
        assert run.calls == []
        assert await responses.is_pending(decision.request_id)
        queued = await queues.dequeue(1, "hifi")
        assert queued.id == decision.request_id
        assert queued.request == REQUEST
        assert queued.token_estimate == 10
        labels = {"classification": "hifi", "error_type": "quota_exceeded"}
        assert collector.get_counter(REQUESTS_DEFERRED_TOTAL, labels) == 1

    @pytest.mark.asyncio
    async def test_request_ids_unique(self, gate, ledger) -> None:
        await ledger.admit("hifi", 100)
        first = await gate.submit(REQUEST, executor(), token_estimate=10)
        second = await gate.submit(REQUEST, executor(), token_estimate=10)
        assert first.request_id != second.request_id

    @pytest.mark.asyncio
    async def test_explicit_request_id(self, gate, ledger) -> None:
        await ledger.admit("hifi", 100)
        decision = await gate.submit(REQUEST, executor(), token_estimate=10, request_id="abc")
        assert decision.request_id == "abc"

    @pytest.mark.asyncio
    async def test_per_message_is_terminal(self, gate, queues, responses) -> None:
        decision = await gate.submit(REQUEST, executor(), token_estimate=501)

        assert decision.reason == "will_not_retry"
        outcome = await responses.get_response(decision.request_id)
        assert outcome.error_type == "will_not_retry"
        assert await queues.get_queue_size(1, "hifi") == 0

    @pytest.mark.asyncio
    async def test_classification_override(self, gate, queues, ledger) -> None:
        await ledger.admit("hifi", 100)
        decision = await gate.submit(REQUEST, executor(), classification="lofi", token_estimate=10)
        assert isinstance(decision, Admitted)

    @pytest.mark.asyncio
    async def test_classification_from_model_id(self, gate, ledger, queues) -> None:
        await ledger.set_quota("lofi", Quota(max_tokens_per_minute=5))
        request = {**REQUEST, "model_id": "gpt-3.5-turbo"}
        decision = await gate.submit(request, executor(), token_estimate=10)
        assert await queues.get_queue_size(1, "lofi") == 1
        assert isinstance(decision, Deferred)

    @pytest.mark.asyncio
    async def test_unknown_classification(self, gate) -> None:
        with pytest.raises(ValueError):
            await gate.submit(REQUEST, executor(), classification="ultra")

    @pytest.mark.asyncio
    async def test_oversized_deferral_is_terminal(self, ledger, responses, backend) -> None:
        queues = RetryQueueManager(
            backend, QueueConfig(queue_prefix="test-queue", max_message_tokens=1800, token_buffer=1500)
        )
        gate = AdmissionGate(ledger, queues, responses)
        await ledger.admit("hifi", 100)

        decision = await gate.submit(REQUEST, executor(), token_estimate=400)

        assert decision.reason == "will_not_retry"
        assert (await responses.get_response(decision.request_id)).error_type == "will_not_retry"
        assert await responses.is_pending(decision.request_id) is False

    @pytest.mark.asyncio
    async def test_reported_usage_above_estimate_charged(self, gate, ledger) -> None:
        response = ModelResponse(text="ok", usage=TokenUsage(total_tokens=60))
        await gate.submit(REQUEST, executor(response), token_estimate=20)
        assert (await ledger.get_usage("hifi")).current_minute_tokens == 60


class TestInlineErrors:
    @pytest.mark.asyncio
    async def test_rate_limit_error_deferred(self, gate, queues) -> None:
        decision = await gate.submit(REQUEST, executor(RateLimitError()), token_estimate=10)
        assert decision.reason == "transient_provider_error"
        assert await queues.get_queue_size(1, "hifi") == 1

    @pytest.mark.asyncio
    async def test_will_not_retry_terminal(self, gate, queues, responses) -> None:
        error = WillNotRetryError("content policy violation", status_code=400)
        decision = await gate.submit(REQUEST, executor(error), token_estimate=10)

        assert decision.reason == "will_not_retry"
        assert await queues.get_queue_size(1, "hifi") == 0
        outcome = await responses.get_response(decision.request_id)
        assert "content policy" in outcome.error.message

    @pytest.mark.asyncio
    async def test_unknown_error_is_server_error(self, gate, responses) -> None:
        decision = await gate.submit(REQUEST, executor(RuntimeError("bad payload")), token_estimate=10)
        assert decision.reason == "server_error"
        assert (await responses.get_response(decision.request_id)).error_type == "server_error"

    @pytest.mark.asyncio
    async def test_store_error_raises(self, gate) -> None:
        with pytest.raises(StoreUnavailableError):
            await gate.submit(REQUEST, executor(StoreUnavailableError("down")), token_estimate=10)


class TestMiddlewareForm:
    @pytest.mark.asyncio
    async def test_admitted_returns_result(self, gate) -> None:
        async def do_generate():
            return ModelResponse(text="hi")

        result = await gate.wrap_generate(dict(REQUEST), do_generate)
        assert result.text == "hi"

    @pytest.mark.asyncio
    async def test_deferral_raises(self, gate, ledger, queues) -> None:
        await ledger.admit("hifi", 100)

        async def do_generate():
            raise AssertionError("must not run")

        with pytest.raises(RequestDeferredError) as exc_info:
            await gate.wrap_generate(dict(REQUEST), do_generate)

        assert exc_info.value.reason == "quota_exceeded"
        queued = await queues.dequeue(1, "hifi")
        assert queued.id == exc_info.value.request_id

    @pytest.mark.asyncio
    async def test_state_operation_bypasses_quota(self, gate, ledger) -> None:
        await ledger.admit("hifi", 100)
        params = {
            **REQUEST,
            "provider_options": {STATE_PROTOCOL.OPTIONS_ROOT: {"collect": True, "results": []}},
        }

        async def do_generate():
            return "synthetic"

        assert await gate.wrap_generate(params, do_generate) == "synthetic"

    def test_serialize_call_strips_protocol_keys(self) -> None:
        params = {
            **REQUEST,
            "temperature": None,
            "headers": {"x": "y"},
            "provider_options": {STATE_PROTOCOL.OPTIONS_ROOT: {"collect": True}, "openai": {"user": "u"}},
        }
        assert serialize_call(params) == {
            **REQUEST,
            "provider_options": {"openai": {"user": "u"}},
        }


class TestState:
    @pytest.mark.asyncio
    async def test_round_trip(self, ledger, queues, responses) -> None:
        config = StatefulMiddlewareConfig(middleware_id="retry-rate-limiter")
        source = AdmissionGate(ledger, queues, responses, model_classification="lofi")
        state = await source.serialize_state({}, config)

        assert state["rate_limit_context"] == {"model_classification": "lofi"}
        assert isinstance(state["timestamp"], int)

        target = AdmissionGate(ledger, queues, responses)
        await target.deserialize_state(state, {}, config)
        assert target.rate_limit_context == {"model_classification": "lofi"}

    @pytest.mark.asyncio
    async def test_restored_context_drives_classification(self, ledger, queues, responses) -> None:
        gate = AdmissionGate(ledger, queues, responses)
        await gate.deserialize_state(
            {"rate_limit_context": {"model_classification": "embedding"}, "timestamp": 0},
            {},
            StatefulMiddlewareConfig(middleware_id="retry-rate-limiter"),
        )
        await ledger.set_quota("embedding", Quota(max_tokens_per_minute=1))
        decision = await gate.submit(REQUEST, executor(), token_estimate=10)
        assert isinstance(decision, Deferred)
        assert await queues.get_queue_size(1, "embedding") == 1

    @pytest.mark.asyncio
    async def test_invalid_state_ignored(self, gate) -> None:
        await gate.deserialize_state("garbage", {}, StatefulMiddlewareConfig(middleware_id="x"))
        assert gate.rate_limit_context == {"model_classification": None}

    def test_invalid_fixed_classification(self, ledger, queues, responses) -> None:
        with pytest.raises(ValueError):
            AdmissionGate(ledger, queues, responses, model_classification="ultra")
