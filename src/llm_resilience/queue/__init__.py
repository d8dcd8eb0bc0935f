# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Two-generation retry queues and their consumer."""

from .consumer import ConsumerRunResult, QueueConsumer, RequestExecutor
from .manager import DequeueResult, RetryQueueManager

__all__ = [
    "ConsumerRunResult",
    "DequeueResult",
    "QueueConsumer",
    "RequestExecutor",
    "RetryQueueManager",
]
