"""Client-side telemetry batching.

Events are appended to an in-memory queue and sent as one batch after a
debounce delay: the first ``enqueue`` starts a timer and later events
within the window ride along in the same flush. A flush swaps the queue
out before the network call, so events enqueued while a batch is in
flight land in a fresh queue.

A flush sends the swapped-out queue in chunks of at most ``max_batch``
events, matching the ingestion endpoint's per-request limit. Chunks that
fail are put back at the front of the queue, capped at ``max_requeue``
events; anything beyond the cap is dropped. There is
no retry loop: the re-queued events go out with the next scheduled or
lifecycle-triggered flush.

All mutation happens on the event loop thread, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from pagelab.lifecycle import PageLifecycle
from pagelab.telemetry.events import TelemetryEvent

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    async def send_batch(self, events: Sequence[TelemetryEvent]) -> None: ...


class TelemetryPipeline:
    """Debounced, bounded-retry event queue.

    Args:
        sink: Remote sink; ``send_batch`` raising means the batch failed.
        flush_delay: Seconds between the first queued event and the flush.
        max_requeue: Maximum events retained after a failed flush.
        max_batch: Maximum events per ``send_batch`` call.
    """

    def __init__(
        self,
        sink: EventSink,
        *,
        flush_delay: float = 2.0,
        max_requeue: int = 100,
        max_batch: int = 500,
    ) -> None:
        if max_batch < 1:
            raise ValueError(f"max_batch must be at least 1, got {max_batch}")
        self._sink = sink
        self._flush_delay = flush_delay
        self._max_requeue = max_requeue
        self._max_batch = max_batch
        self._queue: list[TelemetryEvent] = []
        self._flush_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of events waiting to be sent."""
        return len(self._queue)

    @property
    def flush_scheduled(self) -> bool:
        return self._flush_handle is not None

    def enqueue(self, event: TelemetryEvent) -> None:
        self._queue.append(event)
        self.schedule_flush()

    def schedule_flush(self) -> None:
        """Start the debounce timer unless one is already pending."""
        if self._flush_handle is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called outside the loop: events wait for the next flush.
            logger.debug("No running event loop; deferring telemetry flush")
            return
        self._flush_handle = loop.call_later(self._flush_delay, self._on_timer)

    def _on_timer(self) -> None:
        self._flush_handle = None
        task = asyncio.get_running_loop().create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush(self) -> int:
        """Send everything queued so far, ``max_batch`` events per request.

        Returns:
            Number of events delivered (0 when the queue was empty or every
            send failed). Never raises.
        """
        if not self._queue:
            return 0

        pending, self._queue = self._queue, []
        delivered = 0
        failed: list[TelemetryEvent] = []
        for start in range(0, len(pending), self._max_batch):
            batch = pending[start:start + self._max_batch]
            try:
                await self._sink.send_batch(batch)
            except Exception:
                logger.warning("Failed to send telemetry batch of %d events", len(batch), exc_info=True)
                failed.extend(batch)
                continue
            delivered += len(batch)

        if failed:
            self._requeue(failed)
        return delivered

    def _requeue(self, batch: list[TelemetryEvent]) -> None:
        merged = batch + self._queue
        overflow = len(merged) - self._max_requeue
        if overflow > 0:
            logger.warning(
                "Telemetry re-queue limit %d reached; dropping %d events",
                self._max_requeue,
                overflow,
            )
            merged = merged[: self._max_requeue]
        self._queue = merged

    def attach(self, lifecycle: PageLifecycle) -> None:
        """Flush unconditionally when the page is hidden or unloaded."""
        lifecycle.on_hidden(self.flush)
        lifecycle.on_unload(self.flush)

    async def stop(self) -> None:
        """Cancel the pending timer, flush what is left, and await in-flight sends."""
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        await self.flush()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
