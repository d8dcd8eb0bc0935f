# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Response store: terminal outcomes of deferred requests, read by pollers.

Two keys per request id, both expiring after ``response_ttl``:

- ``{prefix}:pending:{id}`` marks a request that was deferred and has no
  outcome yet.
- ``{prefix}:response:{id}`` holds the serialized ProcessedResponse.

A poller consumes a success with take_response(), an atomic read-then-delete,
so the payload is delivered at most once even with concurrent pollers.
"""

import logging

from pydantic import ValidationError

from ..backends.base import BaseBackend
from ..config import QueueConfig
from ..types.response import ProcessedResponse

logger = logging.getLogger(__name__)


class ResponseStore:
    """
    Stores pending markers and terminal outcomes keyed by request id.

    Args:
        backend: Shared store
        config: Queue configuration (key prefix and response TTL)
    """

    def __init__(self, backend: BaseBackend, config: QueueConfig | None = None) -> None:
        self._backend = backend
        self.config = config or QueueConfig()

    def response_key(self, request_id: str) -> str:
        return f"{self.config.queue_prefix}:response:{request_id}"

    def pending_key(self, request_id: str) -> str:
        return f"{self.config.queue_prefix}:pending:{request_id}"

    async def mark_pending(self, request_id: str) -> None:
        """Record that a request was deferred and has no outcome yet."""
        await self._backend.set(
            self.pending_key(request_id), "1", ttl=self.config.response_ttl
        )

    async def put_response(self, request_id: str, outcome: ProcessedResponse) -> None:
        """Write the terminal outcome and clear the pending marker."""
        if outcome.request_id != request_id:
            raise ValueError(
                f"Outcome for {outcome.request_id!r} stored under {request_id!r}"
            )
        # Outcome first, so the request is never briefly unknown to pollers
        await self._backend.set(
            self.response_key(request_id),
            outcome.model_dump_json(),
            ttl=self.config.response_ttl,
        )
        await self._backend.delete(self.pending_key(request_id))
        logger.debug(
            f"Stored {'success' if outcome.is_success else outcome.error_type} "
            f"outcome for {request_id}"
        )

    def _parse(self, request_id: str, raw: str | None) -> ProcessedResponse | None:
        if raw is None:
            return None
        try:
            return ProcessedResponse.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed stored outcome for {request_id}: {e}")
            return None

    async def get_response(self, request_id: str) -> ProcessedResponse | None:
        """Terminal outcome for a request, without consuming it."""
        raw = await self._backend.get(self.response_key(request_id))
        return self._parse(request_id, raw)

    async def take_response(self, request_id: str) -> ProcessedResponse | None:
        """
        Atomically read and remove the terminal outcome.

        Of two concurrent callers at most one receives the outcome.
        """
        raw = await self._backend.get_and_delete(self.response_key(request_id))
        if raw is not None:
            await self._backend.delete(self.pending_key(request_id))
        return self._parse(request_id, raw)

    async def remove_response(self, request_id: str) -> bool:
        """Forget a request entirely. Returns True if anything was removed."""
        removed = await self._backend.delete(
            self.response_key(request_id), self.pending_key(request_id)
        )
        return removed > 0

    async def is_pending(self, request_id: str) -> bool:
        return await self._backend.exists(self.pending_key(request_id))

    async def check_if_request_exists(self, request_id: str) -> bool:
        """Whether the id is known: pending or holding an outcome."""
        if await self._backend.exists(self.response_key(request_id)):
            return True
        return await self.is_pending(request_id)


__all__ = ["ResponseStore"]
