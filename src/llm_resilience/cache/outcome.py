# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Classification of model results for the caching policy."""

import logging
from enum import Enum
from typing import Any

from pydantic import ValidationError

from ..types.model import FINISH_CONTENT_FILTER, FINISH_ERROR, FINISH_OTHER, ModelResponse

logger = logging.getLogger(__name__)

UNTRUSTED_FINISH_REASONS: frozenset[str] = frozenset(
    {FINISH_ERROR, FINISH_OTHER, FINISH_CONTENT_FILTER}
)
SOFT_FAILURE_FINISH_REASONS: frozenset[str] = frozenset({FINISH_OTHER, FINISH_CONTENT_FILTER})


class CacheOutcome(str, Enum):
    """How the cache treats a completed model call.

    - SUCCESS: cached immediately.
    - SOFT_FAILURE: deterministic but undesirable (content filter, "other"
      finish, warnings); jailed until seen K times in the window.
    - HARD_FAILURE: never cached, never jailed.
    """

    SUCCESS = "success"
    SOFT_FAILURE = "soft_failure"
    HARD_FAILURE = "hard_failure"


def as_model_response(result: Any) -> ModelResponse | None:
    """Coerce a model result to a ModelResponse, None if it has another shape."""
    if isinstance(result, ModelResponse):
        return result
    if isinstance(result, dict):
        try:
            return ModelResponse.model_validate(result)
        except ValidationError as e:
            logger.debug(f"Result is not a model response: {e}")
    return None


def classify_response(response: ModelResponse | None) -> CacheOutcome:
    """
    Decide whether a result may be cached, jailed or neither.

    Success needs non-empty text, a trusted finish reason and no warnings.
    A soft failure is any non-error finish that is "other", a content
    filter, or carries warnings. Everything else is a hard failure.
    """
    if response is None:
        return CacheOutcome.HARD_FAILURE
    finish_reason = response.finish_reason
    if (
        response.text
        and finish_reason not in UNTRUSTED_FINISH_REASONS
        and not response.has_warnings
    ):
        return CacheOutcome.SUCCESS
    if finish_reason != FINISH_ERROR and (
        finish_reason in SOFT_FAILURE_FINISH_REASONS or response.has_warnings
    ):
        return CacheOutcome.SOFT_FAILURE
    return CacheOutcome.HARD_FAILURE


__all__ = [
    "SOFT_FAILURE_FINISH_REASONS",
    "UNTRUSTED_FINISH_REASONS",
    "CacheOutcome",
    "as_model_response",
    "classify_response",
]
