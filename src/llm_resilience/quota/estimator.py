# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Token estimation for admission decisions."""

import json
import logging
import math
from typing import Any

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
FALLBACK_TOKEN_ESTIMATE = 1000


def estimate_tokens(request: Any) -> int:
    """
    Estimate the tokens a serialized call will consume.

    Uses roughly four characters per token over the JSON form of the
    request. Requests that cannot be serialized are charged
    FALLBACK_TOKEN_ESTIMATE.
    """
    try:
        serialized = json.dumps(request)
    except (TypeError, ValueError) as e:
        logger.debug(f"Cannot serialize request for token estimate: {e}")
        return FALLBACK_TOKEN_ESTIMATE
    return math.ceil(len(serialized) / CHARS_PER_TOKEN)


def reported_tokens(response: Any) -> int | None:
    """Total tokens a provider reported for a completed call, if any."""
    usage = getattr(response, "usage", None)
    if usage is None and isinstance(response, dict):
        usage = response.get("usage")
    if usage is None:
        return None
    total = usage.get("total_tokens") if isinstance(usage, dict) else getattr(usage, "total_tokens", None)
    return total if isinstance(total, int) and total > 0 else None


__all__ = [
    "CHARS_PER_TOKEN",
    "FALLBACK_TOKEN_ESTIMATE",
    "estimate_tokens",
    "reported_tokens",
]
