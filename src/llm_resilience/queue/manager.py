# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Retry queue manager: two FIFO generations per model classification.

Generation 1 holds first-time deferrals. Generation 2 holds requests that
were retried and rejected again; the consumer drains it at lower priority,
so a backlog of repeat offenders never starves fresh work.

Every (generation, classification) pair is one list in the shared store.
Entries are RateLimitedRequest JSON; an entry that fails to parse is a
malformed queue entry and is dropped on dequeue.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import ValidationError

from ..backends.base import BaseBackend
from ..config import QueueConfig
from ..exceptions import MalformedQueueEntryError, MessageTooLargeForQueueError
from ..observability.metrics import ResilienceMetrics
from ..types.classification import GENERATIONS
from ..types.request import QueueKey, RateLimitedRequest
from ..types.response import ErrorType

logger = logging.getLogger(__name__)


@dataclass
class DequeueResult:
    """
    Outcome of one dequeue.

    Attributes:
        request: The popped request, None if the queue ran empty
        dropped: Malformed entries discarded while looking for it
    """

    request: RateLimitedRequest | None
    dropped: int = 0


class RetryQueueManager:
    """
    Enqueue, dequeue and inspect the retry queues.

    Args:
        backend: Shared store
        config: Queue configuration (prefix, size guard, classifications)
        metrics: Metrics facade for queue depth and malformed entries
    """

    def __init__(
        self,
        backend: BaseBackend,
        config: QueueConfig | None = None,
        metrics: ResilienceMetrics | None = None,
    ) -> None:
        self._backend = backend
        self.config = config or QueueConfig()
        self._metrics = metrics

    def queue_key(self, generation: int, classification: str) -> str:
        """Store key of one queue. Raises ValueError for unknown values."""
        return QueueKey(generation, classification).render(self.config.queue_prefix)

    @property
    def max_queued_tokens(self) -> int | None:
        """Largest token estimate accepted into a queue, None when unbounded."""
        if self.config.max_message_tokens is None:
            return None
        return self.config.max_message_tokens - self.config.token_buffer

    def check_message_size(self, request: RateLimitedRequest) -> None:
        """Raise MessageTooLargeForQueueError if the request can never be processed."""
        limit = self.max_queued_tokens
        if limit is not None and request.token_estimate > limit:
            raise MessageTooLargeForQueueError(request.token_estimate, limit)

    def _update_gauge(self, generation: int, classification: str, size: int) -> None:
        if self._metrics is not None:
            self._metrics.update_queue_size(classification, generation, size)

    # ==========================================================================
    # Producers
    # ==========================================================================

    async def enqueue(
        self, generation: int, classification: str, request: RateLimitedRequest
    ) -> int:
        """
        Append a request to the tail of a queue.

        The stored entry's ``metadata.generation`` is stamped to ``generation``.

        Returns:
            The queue length after the push

        Raises:
            ValueError: Unknown generation or classification, or a request
                whose classification differs from the queue's
            MessageTooLargeForQueueError: The request exceeds the size guard
        """
        key = self.queue_key(generation, classification)
        if request.model_classification != classification:
            raise ValueError(
                f"Request {request.id} is classified {request.model_classification!r}, "
                f"not {classification!r}"
            )
        self.check_message_size(request)

        stamped = request.model_copy(
            update={"metadata": request.metadata.model_copy(update={"generation": generation})}
        )
        size = await self._backend.list_push(key, stamped.to_json())
        self._update_gauge(generation, classification, size)
        logger.debug(f"Enqueued {request.id} into {key} (size={size})")
        return size

    async def move_to_generation_two(
        self, request: RateLimitedRequest, retry_after: float | None = None
    ) -> RateLimitedRequest:
        """
        Re-enqueue a rejected request into generation 2.

        The attempt count is incremented and ``submitted_at`` refreshed, which
        restarts its backoff. ``retry_after`` replaces any earlier provider
        hint. Returns the request as stored.
        """
        moved = request.model_copy(
            update={
                "metadata": request.metadata.model_copy(
                    update={
                        "generation": 2,
                        "attempts": request.metadata.attempts + 1,
                        "submitted_at": datetime.now(timezone.utc),
                        "retry_after": retry_after if retry_after and retry_after > 0 else None,
                    }
                )
            }
        )
        await self.enqueue(2, request.model_classification, moved)
        return moved

    async def requeue(self, request: RateLimitedRequest) -> int:
        """Put a request back at the tail of its current queue unchanged."""
        return await self.enqueue(request.generation, request.model_classification, request)

    # ==========================================================================
    # Consumers
    # ==========================================================================

    async def pop(self, generation: int, classification: str) -> DequeueResult:
        """
        Pop the oldest parseable request, dropping malformed entries on the way.

        Malformed entries are logged and counted, never raised.
        """
        key = self.queue_key(generation, classification)
        dropped = 0
        while True:
            raw = await self._backend.list_pop(key)
            if raw is None:
                return DequeueResult(None, dropped)
            try:
                return DequeueResult(RateLimitedRequest.from_json(raw), dropped)
            except ValidationError as e:
                dropped += 1
                logger.warning(f"Dropping malformed queue entry from {key}: {e}")
                if self._metrics is not None:
                    self._metrics.record_error(
                        classification, ErrorType.MALFORMED_QUEUE_ENTRY.value
                    )

    async def dequeue(self, generation: int, classification: str) -> RateLimitedRequest | None:
        """Pop the oldest request of a queue, None when it is empty."""
        result = await self.pop(generation, classification)
        return result.request

    async def dequeue_batch(
        self, generation: int, classification: str, n: int
    ) -> list[RateLimitedRequest]:
        """Pop up to ``n`` requests in FIFO order."""
        batch: list[RateLimitedRequest] = []
        while len(batch) < n:
            request = await self.dequeue(generation, classification)
            if request is None:
                break
            batch.append(request)
        return batch

    # ==========================================================================
    # Inspection
    # ==========================================================================

    async def peek_head(self, generation: int, classification: str) -> RateLimitedRequest | None:
        """
        The oldest request of a queue without removing it.

        Raises:
            MalformedQueueEntryError: The head entry does not parse
        """
        key = self.queue_key(generation, classification)
        head = await self._backend.list_range(key, 0, 0)
        if not head:
            return None
        try:
            return RateLimitedRequest.from_json(head[0])
        except ValidationError as e:
            raise MalformedQueueEntryError(str(e), queue_key=key, raw=head[0]) from e

    async def peek_sample(
        self, generation: int, classification: str, n: int
    ) -> list[RateLimitedRequest]:
        """Up to ``n`` requests from the head of a queue, for diagnostics."""
        if n <= 0:
            return []
        key = self.queue_key(generation, classification)
        sample: list[RateLimitedRequest] = []
        for raw in await self._backend.list_range(key, 0, n - 1):
            try:
                sample.append(RateLimitedRequest.from_json(raw))
            except ValidationError:
                logger.warning(f"Skipping malformed entry while sampling {key}")
        return sample

    async def get_queue_size(self, generation: int, classification: str) -> int:
        size = await self._backend.list_length(self.queue_key(generation, classification))
        self._update_gauge(generation, classification, size)
        return size

    async def get_all_queue_sizes(self) -> dict[str, dict[int, int]]:
        """Sizes of every queue, keyed by classification then generation."""
        sizes: dict[str, dict[int, int]] = {}
        for classification in self.config.classifications:
            sizes[classification] = {
                generation: await self.get_queue_size(generation, classification)
                for generation in GENERATIONS
            }
        return sizes


__all__ = ["DequeueResult", "RetryQueueManager"]
