"""Unit tests for cache outcome classification."""

import pytest

from llm_resilience.cache.outcome import CacheOutcome, as_model_response, classify_response
from llm_resilience.types.model import ModelResponse


@pytest.mark.parametrize(
    "response,expected",
    [
        (ModelResponse(text="Paris", finish_reason="stop"), CacheOutcome.SUCCESS),
        (ModelResponse(text="Paris is", finish_reason="length"), CacheOutcome.SUCCESS),
        (ModelResponse(text="Paris", finish_reason="tool-calls"), CacheOutcome.SUCCESS),
        (ModelResponse(text="", finish_reason="content-filter"), CacheOutcome.SOFT_FAILURE),
        (ModelResponse(text="partial", finish_reason="other"), CacheOutcome.SOFT_FAILURE),
        (
            ModelResponse(text="Paris", finish_reason="stop", warnings=["unsupported setting"]),
            CacheOutcome.SOFT_FAILURE,
        ),
        (ModelResponse(text="", finish_reason="stop"), CacheOutcome.HARD_FAILURE),
        (ModelResponse(text="oops", finish_reason="error"), CacheOutcome.HARD_FAILURE),
        (
            ModelResponse(text="", finish_reason="error", warnings=["x"]),
            CacheOutcome.HARD_FAILURE,
        ),
        (None, CacheOutcome.HARD_FAILURE),
    ],
)
def test_classify_response(response, expected):
    assert classify_response(response) is expected


class TestAsModelResponse:
    def test_passthrough(self):
        response = ModelResponse(text="x")
        assert as_model_response(response) is response

    def test_from_dict(self):
        response = as_model_response({"text": "x", "finish_reason": "length"})
        assert response == ModelResponse(text="x", finish_reason="length")

    @pytest.mark.parametrize("result", ["text", 42, None, {"text": ["not", "a", "string"]}])
    def test_other_shapes(self, result):
        assert as_model_response(result) is None
