# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Admission gate in front of every model call."""

from .gate import (
    AdmissionDecision,
    AdmissionGate,
    Admitted,
    CallExecutor,
    Deferred,
    serialize_call,
)

__all__ = [
    "AdmissionDecision",
    "AdmissionGate",
    "Admitted",
    "CallExecutor",
    "Deferred",
    "serialize_call",
]
