"""In-process event source backed by an asyncio queue."""

from __future__ import annotations

import asyncio
import contextlib
import itertools

from build_notifiers.models import Build
from build_notifiers.sources.base import Delivery

DEFAULT_BATCH_SIZE = 10
DEFAULT_WAIT_SECONDS = 1.0


class MemoryEventSource:
    """Event source for embedding the engine in another process.

    Deliveries stay pending until acknowledged; redeliver_pending() puts
    unacknowledged deliveries back on the queue.
    """

    def __init__(
        self,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        wait_seconds: float = DEFAULT_WAIT_SECONDS,
    ) -> None:
        self.batch_size = batch_size
        self.wait_seconds = wait_seconds
        self._queue: asyncio.Queue[Delivery] = asyncio.Queue()
        self._ids = itertools.count(1)
        self._pending: dict[str, Delivery] = {}
        self.acked: list[str] = []
        self._closed = False

    @property
    def pending(self) -> list[Delivery]:
        """Return deliveries handed out but not yet acknowledged."""
        return list(self._pending.values())

    def put(self, build: Build) -> str:
        """Enqueue a build event and return its delivery id."""
        delivery = Delivery(delivery_id=str(next(self._ids)), build=build)
        self._queue.put_nowait(delivery)
        return delivery.delivery_id

    def redeliver_pending(self) -> int:
        """Re-enqueue every unacknowledged delivery."""
        pending = list(self._pending.values())
        self._pending.clear()
        for delivery in pending:
            self._queue.put_nowait(
                Delivery(delivery.delivery_id, delivery.build, redelivered=True)
            )
        return len(pending)

    async def receive(self) -> list[Delivery]:
        if self._closed:
            return []

        batch: list[Delivery] = []
        with contextlib.suppress(TimeoutError):
            batch.append(await asyncio.wait_for(self._queue.get(), self.wait_seconds))
        while batch and len(batch) < self.batch_size and not self._queue.empty():
            batch.append(self._queue.get_nowait())

        for delivery in batch:
            self._pending[delivery.delivery_id] = delivery
        return batch

    async def ack(self, delivery: Delivery) -> None:
        self._pending.pop(delivery.delivery_id, None)
        self.acked.append(delivery.delivery_id)

    async def close(self) -> None:
        self._closed = True
