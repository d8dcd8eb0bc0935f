# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
HTTP surface of the resilience layer.

The handlers are framework-free; the FastAPI adapter in ``api.app`` needs
the ``api`` extra and is not imported here.
"""

from .handlers import (
    EndpointResponse,
    get_diagnostics,
    get_model_stats,
    poll_request,
    run_consumer_tick,
)

__all__ = [
    "EndpointResponse",
    "get_diagnostics",
    "get_model_stats",
    "poll_request",
    "run_consumer_tick",
]
