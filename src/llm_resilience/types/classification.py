# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
# llm_resilience/types/classification.py
"""
Model classification constants.

Quotas and retry queues are partitioned by the cost/latency profile of the
model a request targets rather than by the exact model id.

Constants:
    HIFI: Large, expensive chat models
    LOFI: Small, cheap chat models
    COMPLETIONS: Plain completion models
    EMBEDDING: Embedding models
    MODEL_CLASSIFICATIONS: All classifications, in consumer processing order

Example:
    >>> from llm_resilience.types import classify_model
    >>> classify_model("azure:gpt-4o")
    'hifi'
"""

ModelClassification = str  # Type alias for clarity

HIFI = "hifi"
LOFI = "lofi"
COMPLETIONS = "completions"
EMBEDDING = "embedding"

MODEL_CLASSIFICATIONS: tuple[str, ...] = (HIFI, LOFI, COMPLETIONS, EMBEDDING)

GENERATIONS: tuple[int, ...] = (1, 2)


def classify_model(model_id: str | None) -> ModelClassification:
    """
    Map a provider model id (or alias) onto a model classification.

    Unknown ids fall back to HIFI so that they are held to the strictest
    quota rather than slipping through an unconfigured one.
    """
    if not model_id:
        return HIFI
    normalized = model_id.lower()
    if (
        HIFI in normalized
        or "gpt-4" in normalized
        or ("gemini" in normalized and "pro" in normalized)
    ):
        return HIFI
    if (
        LOFI in normalized
        or "gpt-3.5" in normalized
        or ("gemini" in normalized and "flash" in normalized)
    ):
        return LOFI
    if EMBEDDING in normalized:
        return EMBEDDING
    if COMPLETIONS in normalized:
        return COMPLETIONS
    return HIFI


def validate_classification(classification: str) -> str:
    """Return the classification unchanged, or raise ValueError if unknown."""
    if classification not in MODEL_CLASSIFICATIONS:
        raise ValueError(
            f"Unknown model classification {classification!r}; "
            f"expected one of {', '.join(MODEL_CLASSIFICATIONS)}"
        )
    return classification


def validate_generation(generation: int) -> int:
    """Return the generation unchanged, or raise ValueError if unknown."""
    if generation not in GENERATIONS:
        raise ValueError(f"Unknown queue generation {generation!r}; expected 1 or 2")
    return generation
