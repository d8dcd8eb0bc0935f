# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Quota ledger and token estimation."""

from .estimator import FALLBACK_TOKEN_ESTIMATE, estimate_tokens, reported_tokens
from .ledger import QuotaLedger

__all__ = ["FALLBACK_TOKEN_ESTIMATE", "QuotaLedger", "estimate_tokens", "reported_tokens"]
