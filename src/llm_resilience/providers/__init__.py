# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Provider error classification.

The resilience layer never imports a provider SDK. Provider failures are
mapped onto the ErrorType taxonomy by inspecting the exceptions they raise.

Exported functions:
    classify_error: Map any exception onto an ErrorType.
    is_rate_limit_error: Detect provider rate-limit rejections.
    is_policy_violation: Detect deterministic content-policy rejections.
    retry_after_seconds: Extract a retry-after hint.
"""

from .errors import (
    classify_error,
    is_policy_violation,
    is_rate_limit_error,
    retry_after_seconds,
)

__all__ = [
    "classify_error",
    "is_policy_violation",
    "is_rate_limit_error",
    "retry_after_seconds",
]
