"""Unit tests for request fingerprints."""

import json

import pytest

from llm_resilience.cache.fingerprint import (
    UNKNOWN_MODEL_ID,
    canonical_json,
    fingerprint,
    normalize,
)
from llm_resilience.middleware.state import STATE_PROTOCOL

MESSAGES = [{"role": "user", "content": "What is the capital of France?"}]


class TestNormalize:
    def test_drops_none_and_callables(self):
        assert normalize({"a": 1, "b": None, "c": print, "d": [1, None, len]}) == {"a": 1, "d": [1]}

    def test_drops_volatile_keys_at_any_depth(self):
        value = {
            "timestamp": 1,
            "nested": {"request_id": "x", "headers": {"a": "b"}, "keep": True},
        }
        assert normalize(value) == {"nested": {"keep": True}}

    def test_tuples_become_lists(self):
        assert normalize({"stop": ("a", "b")}) == {"stop": ["a", "b"]}


class TestFingerprint:
    def test_deterministic(self):
        a = fingerprint("gpt-4o", {"messages": MESSAGES, "temperature": 0})
        b = fingerprint("gpt-4o", {"temperature": 0, "messages": MESSAGES})
        assert a == b
        assert len(a) == 64

    def test_model_id_matters(self):
        assert fingerprint("gpt-4o", {"messages": MESSAGES}) != fingerprint(
            "gpt-4o-mini", {"messages": MESSAGES}
        )

    def test_params_matter(self):
        assert fingerprint("gpt-4o", {"messages": MESSAGES, "temperature": 0}) != fingerprint(
            "gpt-4o", {"messages": MESSAGES, "temperature": 1}
        )

    def test_model_id_in_params_ignored(self):
        assert fingerprint("gpt-4o", {"messages": MESSAGES, "model_id": "other"}) == fingerprint(
            "gpt-4o", {"messages": MESSAGES}
        )

    @pytest.mark.parametrize(
        "extra",
        [
            {"timestamp": 1700000000},
            {"request_id": "abc"},
            {"headers": {"authorization": "Bearer x"}},
            {"abort_signal": "signal"},
            {"seed": None},
            {"provider_options": {STATE_PROTOCOL.OPTIONS_ROOT: {"collect": True}}},
        ],
    )
    def test_volatile_values_ignored(self, extra):
        base = {"messages": MESSAGES, "provider_options": {}}
        assert fingerprint("gpt-4o", {**base, **extra}) == fingerprint("gpt-4o", base)

    def test_missing_model_id(self):
        assert fingerprint(None, {"messages": MESSAGES}) == fingerprint(
            UNKNOWN_MODEL_ID, {"messages": MESSAGES}
        )

    def test_canonical_json_is_compact_and_sorted(self):
        rendered = canonical_json("m", {"b": 1, "a": {"d": 2, "c": 3}})
        assert rendered == '{"model_id":"m","params":{"a":{"c":3,"d":2},"b":1}}'
        assert json.loads(rendered)["model_id"] == "m"
