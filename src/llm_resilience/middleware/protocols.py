# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocols for the language model wrapped by a middleware chain."""

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from ..types.model import StreamPart

GenerateParams = dict[str, Any]
"""Call parameters: ``model_id``, ``messages``, ``provider_options`` and provider settings."""

DoGenerate = Callable[[], Awaitable[Any]]
"""Invokes the next link of the chain (ultimately the model) for one generation."""

DoStream = Callable[[], AsyncIterator[StreamPart]]
"""Invokes the next link of the chain for one streamed generation."""


@runtime_checkable
class LanguageModelProtocol(Protocol):
    """
    Minimal protocol for the model at the bottom of a middleware chain.

    Provider SDKs are adapted to this shape outside the library; the
    resilience layer only needs a model id and the two call styles.
    """

    @property
    def model_id(self) -> str:
        """Provider model id, used for classification and fingerprints."""
        ...

    async def generate(self, params: GenerateParams) -> Any:
        """Run one generation and return its result."""
        ...

    def stream(self, params: GenerateParams) -> AsyncIterator[StreamPart]:
        """Run one generation and yield its parts."""
        ...


__all__ = ["DoGenerate", "DoStream", "GenerateParams", "LanguageModelProtocol"]
