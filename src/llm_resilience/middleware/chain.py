# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Composition of middleware around a language model."""

from collections.abc import AsyncIterator, Sequence
from functools import partial
from typing import Any

from ..types.model import StreamPart
from .protocols import GenerateParams, LanguageModelProtocol
from .state import Middleware, MiddlewareStateEnvelope, MiddlewareStateManager


class MiddlewareChain:
    """
    Runs calls through middleware, outermost first, down to the model.

    The state manager is always the innermost link, so COLLECT and RESTORE
    passes visit every middleware and then stop before the model.

    Args:
        middlewares: Middleware in outermost-first order
        model: The wrapped language model
        state_manager: Innermost link; a fresh MiddlewareStateManager by default

    Example:
        >>> chain = MiddlewareChain([StatefulMiddleware(gate), cache], model)
        >>> response = await chain.generate({"messages": messages})
        >>> envelope = await chain.collect_state()
    """

    def __init__(
        self,
        middlewares: Sequence[Middleware],
        model: LanguageModelProtocol,
        state_manager: MiddlewareStateManager | None = None,
    ) -> None:
        self._model = model
        self.state_manager = state_manager or MiddlewareStateManager()
        self._links: list[Middleware] = [*middlewares, self.state_manager]

    @property
    def model_id(self) -> str:
        return self._model.model_id

    @property
    def middlewares(self) -> list[Middleware]:
        """Configured middleware, without the state manager."""
        return self._links[:-1]

    def _prepare(self, params: GenerateParams) -> GenerateParams:
        # Shallow copy: provider_options stays shared so protocol results reach the caller
        prepared = dict(params)
        prepared.setdefault("model_id", self._model.model_id)
        return prepared

    async def generate(self, params: GenerateParams) -> Any:
        """Run one generation through every link."""
        prepared = self._prepare(params)

        async def call(index: int) -> Any:
            if index == len(self._links):
                return await self._model.generate(prepared)
            return await self._links[index].wrap_generate(prepared, partial(call, index + 1))

        return await call(0)

    def stream(self, params: GenerateParams) -> AsyncIterator[StreamPart]:
        """Run one streamed generation through every link."""
        prepared = self._prepare(params)

        def call(index: int) -> AsyncIterator[StreamPart]:
            if index == len(self._links):
                return self._model.stream(prepared)
            return self._links[index].wrap_stream(prepared, partial(call, index + 1))

        return call(0)

    async def collect_state(self) -> MiddlewareStateEnvelope:
        return await self.state_manager.collect_state(self)

    async def restore_state(
        self, state: MiddlewareStateEnvelope | list[Any] | dict[str, Any]
    ) -> None:
        await self.state_manager.restore_state(self, state)


__all__ = ["MiddlewareChain"]
