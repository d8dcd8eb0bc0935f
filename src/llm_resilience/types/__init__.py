# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Type definitions and constants."""

from .cache import CacheEntry, JailEntry, JailResponseDetails
from .classification import (
    COMPLETIONS,
    EMBEDDING,
    GENERATIONS,
    HIFI,
    LOFI,
    MODEL_CLASSIFICATIONS,
    ModelClassification,
    classify_model,
    validate_classification,
    validate_generation,
)
from .model import ModelResponse, StreamPart, TokenUsage
from .quota import Quota, QuotaCheckResult, UsageCheck, UsageStats
from .request import QueueKey, RateLimitedRequest, RequestMetadata
from .response import ErrorDescriptor, ErrorType, ProcessedResponse

__all__ = [
    "COMPLETIONS",
    "EMBEDDING",
    "GENERATIONS",
    "HIFI",
    "LOFI",
    "MODEL_CLASSIFICATIONS",
    # Cache types
    "CacheEntry",
    "ErrorDescriptor",
    "ErrorType",
    "JailEntry",
    "JailResponseDetails",
    # Classification
    "ModelClassification",
    # Provider result types
    "ModelResponse",
    "ProcessedResponse",
    "QueueKey",
    # Quota types
    "Quota",
    "QuotaCheckResult",
    # Queue types
    "RateLimitedRequest",
    "RequestMetadata",
    "StreamPart",
    "TokenUsage",
    "UsageCheck",
    "UsageStats",
    "classify_model",
    "validate_classification",
    "validate_generation",
]
