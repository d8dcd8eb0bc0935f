# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Provider-facing result types.

The resilience layer does not speak any provider wire protocol. Providers
are adapted to these small shapes: a ModelResponse for a whole generation
and a stream of StreamPart values for streaming calls.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

# Finish reasons understood by the cache outcome classifier
FINISH_STOP = "stop"
FINISH_LENGTH = "length"
FINISH_CONTENT_FILTER = "content-filter"
FINISH_TOOL_CALLS = "tool-calls"
FINISH_ERROR = "error"
FINISH_OTHER = "other"


class TokenUsage(BaseModel):
    """Token accounting reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ModelResponse(BaseModel):
    """
    A completed model generation.

    Attributes:
        text: Generated text
        finish_reason: Why generation stopped (see FINISH_* constants)
        warnings: Provider warnings attached to the call
        usage: Token usage, when reported
        provider_metadata: Opaque provider details passed through unchanged
    """

    text: str = ""
    finish_reason: str = FINISH_STOP
    warnings: list[Any] = Field(default_factory=list)
    usage: TokenUsage | None = None
    provider_metadata: dict[str, Any] | None = None

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


StreamPartType = Literal["text-delta", "finish", "error"]


@dataclass
class StreamPart:
    """
    One element of a streamed generation.

    Attributes:
        type: "text-delta", "finish" or "error"
        delta: Text fragment for text-delta parts
        finish_reason: Finish reason carried by the finish part
        usage: Usage carried by the finish part
        warnings: Provider warnings carried by the finish part
        error: Error payload carried by an error part
    """

    type: StreamPartType
    delta: str = ""
    finish_reason: str | None = None
    usage: TokenUsage | None = None
    warnings: list[Any] = field(default_factory=list)
    error: Any = None


__all__ = [
    "FINISH_CONTENT_FILTER",
    "FINISH_ERROR",
    "FINISH_LENGTH",
    "FINISH_OTHER",
    "FINISH_STOP",
    "FINISH_TOOL_CALLS",
    "ModelResponse",
    "StreamPart",
    "StreamPartType",
    "TokenUsage",
]
