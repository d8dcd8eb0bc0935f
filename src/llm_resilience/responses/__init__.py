# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Terminal outcome storage for deferred requests."""

from .store import ResponseStore

__all__ = ["ResponseStore"]
