# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Request fingerprints for the response cache.

A fingerprint is the SHA-256 of a canonical JSON rendering of the model id
and the call parameters. Canonical means: object keys sorted, ``None``
values and callables dropped at every depth, compact separators, and
volatile keys (timestamps, request ids, abort signals, headers and the
middleware state bag) excluded. Two calls that differ only in those
respects share a fingerprint.
"""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from ..middleware.state import STATE_PROTOCOL

UNKNOWN_MODEL_ID = "unknown"

VOLATILE_KEYS: frozenset[str] = frozenset(
    {
        "timestamp",
        "request_id",
        "abort_signal",
        "headers",
        STATE_PROTOCOL.OPTIONS_ROOT,
    }
)


def normalize(value: Any) -> Any:
    """Strip volatile keys, None values and callables, recursively."""
    if isinstance(value, Mapping):
        return {
            str(key): normalize(item)
            for key, item in value.items()
            if key not in VOLATILE_KEYS and item is not None and not callable(item)
        }
    if isinstance(value, (list, tuple)):
        return [normalize(item) for item in value if item is not None and not callable(item)]
    return value


def canonical_json(model_id: str | None, params: Mapping[str, Any]) -> str:
    key_data = {"model_id": model_id or UNKNOWN_MODEL_ID, "params": normalize(params)}
    return json.dumps(key_data, sort_keys=True, separators=(",", ":"), default=str)


def fingerprint(model_id: str | None, params: Mapping[str, Any]) -> str:
    """
    Deterministic hash of a normalized request.

    ``model_id`` inside ``params`` is ignored in favour of the argument so
    callers that do and do not repeat it agree.

    Example:
        >>> fingerprint("gpt-4o", {"messages": [{"role": "user", "content": "hi"}]})
        '6f0c...'
    """
    params = {key: value for key, value in params.items() if key != "model_id"}
    digest = hashlib.sha256(canonical_json(model_id, params).encode("utf-8"))
    return digest.hexdigest()


__all__ = ["UNKNOWN_MODEL_ID", "VOLATILE_KEYS", "canonical_json", "fingerprint", "normalize"]
