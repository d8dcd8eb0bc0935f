# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Middleware chain and the middleware state protocol.

Classes:
    Middleware: Base class for a link in a chain.
    StatefulMiddleware: Adds COLLECT/RESTORE participation to a middleware.
    MiddlewareStateManager: Innermost link that drives state passes.
    MiddlewareStateEnvelope: Snapshot produced by a COLLECT pass.
    MiddlewareChain: Runs calls through middleware down to the model.

Protocols:
    LanguageModelProtocol: The model at the bottom of a chain.
"""

from .chain import MiddlewareChain
from .protocols import DoGenerate, DoStream, GenerateParams, LanguageModelProtocol
from .state import (
    STATE_OPERATION_RESULT_ID,
    STATE_PROTOCOL,
    Middleware,
    MiddlewareStateEnvelope,
    MiddlewareStateManager,
    StatefulMiddleware,
    StatefulMiddlewareConfig,
    StateProtocol,
    is_state_collection_request,
    is_state_operation,
    is_state_restoration_request,
    state_bag,
)

__all__ = [
    "STATE_OPERATION_RESULT_ID",
    "STATE_PROTOCOL",
    "DoGenerate",
    "DoStream",
    "GenerateParams",
    "LanguageModelProtocol",
    "Middleware",
    "MiddlewareChain",
    "MiddlewareStateEnvelope",
    "MiddlewareStateManager",
    "StateProtocol",
    "StatefulMiddleware",
    "StatefulMiddlewareConfig",
    "is_state_collection_request",
    "is_state_operation",
    "is_state_restoration_request",
    "state_bag",
]
