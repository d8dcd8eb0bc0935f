# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Middleware state protocol.

A multi-step call sequence can be paused and resumed without re-running
side-effecting steps: every participating middleware snapshots its own
opaque state during a COLLECT pass and gets it back during a RESTORE pass.

Both passes are ordinary generate calls through the chain. The signals
travel in ``params["provider_options"][STATE_PROTOCOL.OPTIONS_ROOT]``:

- ``collect``: every stateful middleware appends ``[middleware_id, state]``
  to ``results``
- ``restore``: every stateful middleware takes the first entry of
  ``results`` and applies it
- ``results``: the accumulated entries, in chain order

The innermost link (MiddlewareStateManager) answers state operations with
a synthetic result, so they never reach the model.
"""

import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from ..types.model import FINISH_STOP, ModelResponse, StreamPart, TokenUsage
from .protocols import DoGenerate, DoStream, GenerateParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateProtocol:
    """Option names of the state protocol."""

    OPTIONS_ROOT: str = "__middlewareState"
    COLLECT: str = "collect"
    RESTORE: str = "restore"
    RESULTS: str = "results"


STATE_PROTOCOL = StateProtocol()

STATE_OPERATION_RESULT_ID = "state-operation-result"


# ==============================================================================
# Options helpers
# ==============================================================================


def state_bag(params: GenerateParams, create: bool = False) -> dict[str, Any] | None:
    """
    The protocol bag inside ``params["provider_options"]``.

    With ``create`` the bag (and ``provider_options``) is added when missing;
    otherwise params are left untouched.
    """
    if create:
        return _ensure_state_bag(params)
    options = params.get("provider_options")
    if options is None:
        return None
    return options.get(STATE_PROTOCOL.OPTIONS_ROOT)


def _ensure_state_bag(params: GenerateParams) -> dict[str, Any]:
    options = params.get("provider_options")
    if options is None:
        options = params["provider_options"] = {}
    bag: dict[str, Any] | None = options.get(STATE_PROTOCOL.OPTIONS_ROOT)
    if bag is None:
        bag = options[STATE_PROTOCOL.OPTIONS_ROOT] = {}
    return bag


def is_state_collection_request(params: GenerateParams) -> bool:
    bag = state_bag(params)
    return bag is not None and bag.get(STATE_PROTOCOL.COLLECT) is True


def is_state_restoration_request(params: GenerateParams) -> bool:
    bag = state_bag(params)
    return bag is not None and bag.get(STATE_PROTOCOL.RESTORE) is True


def is_state_operation(params: GenerateParams) -> bool:
    return is_state_collection_request(params) or is_state_restoration_request(params)


# ==============================================================================
# Middleware base and stateful wrapper
# ==============================================================================


@dataclass(frozen=True)
class StatefulMiddlewareConfig:
    """Configuration handed to serialize/deserialize hooks."""

    middleware_id: str


class Middleware:
    """
    Base class for a link in a middleware chain.

    The defaults pass every call through unchanged and carry no state.
    """

    middleware_id: str = "middleware"

    async def wrap_generate(self, params: GenerateParams, do_generate: DoGenerate) -> Any:
        return await do_generate()

    def wrap_stream(
        self, params: GenerateParams, do_stream: DoStream
    ) -> AsyncIterator[StreamPart]:
        return do_stream()

    async def serialize_state(
        self, params: GenerateParams, config: StatefulMiddlewareConfig
    ) -> Any:
        return {}

    async def deserialize_state(
        self, state: Any, params: GenerateParams, config: StatefulMiddlewareConfig
    ) -> None:
        return None


class StatefulMiddleware(Middleware):
    """
    Makes a middleware take part in the state protocol.

    During a state operation the wrapped middleware's own logic is skipped:
    its state is collected or restored and the call moves on to the next
    link. Serializer and deserializer failures are logged, never raised.

    Args:
        middleware: The middleware to wrap
        middleware_id: Stable id; defaults to the wrapped middleware's id
    """

    def __init__(self, middleware: Middleware, middleware_id: str | None = None) -> None:
        self._inner = middleware
        self.middleware_id = middleware_id or middleware.middleware_id
        self.config = StatefulMiddlewareConfig(middleware_id=self.middleware_id)

    @property
    def inner(self) -> Middleware:
        return self._inner

    async def wrap_generate(self, params: GenerateParams, do_generate: DoGenerate) -> Any:
        handled = False
        if is_state_collection_request(params):
            await self._collect(params)
            handled = True
        if is_state_restoration_request(params):
            await self._restore(params)
            handled = True
        if handled:
            return await do_generate()
        return await self._inner.wrap_generate(params, do_generate)

    def wrap_stream(
        self, params: GenerateParams, do_stream: DoStream
    ) -> AsyncIterator[StreamPart]:
        return self._inner.wrap_stream(params, do_stream)

    async def serialize_state(
        self, params: GenerateParams, config: StatefulMiddlewareConfig
    ) -> Any:
        return await self._inner.serialize_state(params, config)

    async def deserialize_state(
        self, state: Any, params: GenerateParams, config: StatefulMiddlewareConfig
    ) -> None:
        await self._inner.deserialize_state(state, params, config)

    async def _collect(self, params: GenerateParams) -> Any:
        state: Any = {}
        try:
            state = await self.serialize_state(params, self.config)
        except Exception:
            logger.exception(f"Failed to serialize state of middleware {self.middleware_id}")

        bag = _ensure_state_bag(params)
        results = bag.setdefault(STATE_PROTOCOL.RESULTS, [])
        if not isinstance(results, list):
            raise TypeError(f"{STATE_PROTOCOL.RESULTS} must be a list, got {type(results).__name__}")

        if results:
            last_id, last_state = results[-1]
            if last_id == self.middleware_id and last_state is state:
                return state
        results.append([self.middleware_id, state])
        return state

    async def _restore(self, params: GenerateParams) -> None:
        bag = _ensure_state_bag(params)
        results = bag.get(STATE_PROTOCOL.RESULTS)
        if results is None:
            logger.warning(f"No state bag found during restoration of {self.middleware_id}")
            return
        if not results:
            logger.warning(f"No state left during restoration of {self.middleware_id}")
            return
        middleware_id, state = results.pop(0)
        if middleware_id != self.middleware_id:
            logger.warning(
                f"Middleware id mismatch during state restoration: "
                f"expected {self.middleware_id}, found {middleware_id}"
            )
            return
        try:
            await self.deserialize_state(state, params, self.config)
        except Exception:
            logger.exception(f"Failed to restore state of middleware {self.middleware_id}")


# ==============================================================================
# Envelope and manager
# ==============================================================================


class MiddlewareStateEnvelope(BaseModel):
    """
    Snapshot produced by a COLLECT pass.

    Attributes:
        state: ``[middleware_id, state]`` entries in chain order
        timestamp: Epoch milliseconds when the snapshot was taken
    """

    state: list[tuple[str, Any]] = Field(default_factory=list)
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    def as_mapping(self) -> dict[str, Any]:
        """State blobs keyed by middleware id."""
        return {middleware_id: blob for middleware_id, blob in self.state}

    def to_dict(self) -> dict[str, Any]:
        return {"state": [list(entry) for entry in self.state], "timestamp": self.timestamp}

    @classmethod
    def from_value(cls, value: "MiddlewareStateEnvelope | list[Any] | dict[str, Any]") -> "MiddlewareStateEnvelope":
        """Accept an envelope, a bare entry list or a ``{"state", "timestamp"}`` dict."""
        if isinstance(value, MiddlewareStateEnvelope):
            return value
        if isinstance(value, list):
            return cls(state=[tuple(entry) for entry in value])
        return cls.model_validate(value)


def _prompt_text(messages: Any) -> str:
    """Concatenated text parts of a message list."""
    texts: list[str] = []
    for message in messages or []:
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str) and content:
            texts.append(content)
        elif isinstance(content, list):
            texts.extend(
                part["text"]
                for part in content
                if isinstance(part, dict) and part.get("type") == "text" and part.get("text")
            )
    return "\n".join(texts)


class MiddlewareStateManager(Middleware):
    """
    Innermost link of a chain; drives COLLECT and RESTORE passes.

    State operations stop here with a synthetic result instead of calling
    the model. Every other call passes through.

    Example:
        >>> envelope = await manager.collect_state(chain)
        >>> saved = envelope.to_dict()
        >>> await manager.restore_state(chain, saved)
    """

    middleware_id = "state-manager"

    async def wrap_generate(self, params: GenerateParams, do_generate: DoGenerate) -> Any:
        if not is_state_operation(params):
            return await do_generate()
        return ModelResponse(
            text=f"Response to: {_prompt_text(params.get('messages'))}",
            finish_reason=FINISH_STOP,
            usage=TokenUsage(),
            provider_metadata={
                "id": STATE_OPERATION_RESULT_ID,
                "model_id": params.get("model_id"),
            },
        )

    async def collect_state(self, chain: Any) -> MiddlewareStateEnvelope:
        """Run a COLLECT pass through ``chain`` and return the snapshot."""
        items: list[Any] = []
        logger.debug("Taking snapshot of middleware state")
        await chain.generate(
            self._protocol_params(
                {STATE_PROTOCOL.RESULTS: items, STATE_PROTOCOL.COLLECT: True},
                "Serializing pipeline state",
            )
        )
        return MiddlewareStateEnvelope(state=[tuple(item) for item in items])

    async def restore_state(
        self,
        chain: Any,
        state: "MiddlewareStateEnvelope | list[Any] | dict[str, Any]",
    ) -> None:
        """Run a RESTORE pass through ``chain`` with a previous snapshot."""
        envelope = MiddlewareStateEnvelope.from_value(state)
        logger.debug(f"Restoring middleware state taken at {envelope.timestamp}")
        await chain.generate(
            self._protocol_params(
                {
                    STATE_PROTOCOL.RESULTS: [list(entry) for entry in envelope.state],
                    STATE_PROTOCOL.RESTORE: True,
                },
                "Restoring pipeline state",
            )
        )

    @staticmethod
    def _protocol_params(bag: dict[str, Any], text: str) -> GenerateParams:
        return {
            "messages": [{"role": "user", "content": [{"type": "text", "text": text}]}],
            "provider_options": {STATE_PROTOCOL.OPTIONS_ROOT: bag},
        }


__all__ = [
    "STATE_OPERATION_RESULT_ID",
    "STATE_PROTOCOL",
    "Middleware",
    "MiddlewareStateEnvelope",
    "MiddlewareStateManager",
    "StateProtocol",
    "StatefulMiddleware",
    "StatefulMiddlewareConfig",
    "is_state_collection_request",
    "is_state_operation",
    "is_state_restoration_request",
    "state_bag",
]
