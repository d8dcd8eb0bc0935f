# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Failure-aware response cache with a soft-failure jail."""

from .engine import MALFORMED_CACHE_ENTRY, CacheEngine
from .fingerprint import VOLATILE_KEYS, canonical_json, fingerprint, normalize
from .outcome import CacheOutcome, as_model_response, classify_response

__all__ = [
    "MALFORMED_CACHE_ENTRY",
    "VOLATILE_KEYS",
    "CacheEngine",
    "CacheOutcome",
    "as_model_response",
    "canonical_json",
    "classify_response",
    "fingerprint",
    "normalize",
]
