"""Delivery queue abstraction.

The queue carries only delivery IDs. Everything needed to perform an
attempt lives on the delivery record, so a lost queue entry is repaired by
``DeliveryWorker.recover()`` re-enqueueing open records from storage.

Backends:

- **InProcessDeliveryQueue** (default): asyncio worker pool in the current
  process, delays via ``loop.call_later``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DeliveryHandler = Callable[[str], Awaitable[object]]


@runtime_checkable
class DeliveryQueue(Protocol):
    """Protocol for delivery job queues.

    Implementations run ``handler(delivery_id)`` once per enqueued job, no
    earlier than ``delay_seconds`` after it was enqueued. Delivery is at
    least once; the worker tolerates duplicates through its claim.
    """

    @abstractmethod
    async def enqueue(self, delivery_id: str, delay_seconds: float = 0.0) -> None:
        """Schedule one processing attempt for a delivery record."""
        ...

    @abstractmethod
    async def start(self, handler: DeliveryHandler) -> None:
        """Begin consuming jobs with the given handler."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop consuming; delayed jobs not yet due are dropped."""
        ...


class InProcessDeliveryQueue:
    """Bounded asyncio worker pool.

    Jobs with a delay are parked on the event loop with ``call_later`` and
    moved to the ready queue when due. ``max_concurrent`` workers drain the
    ready queue, so at most that many deliveries are in flight.

    Example:
        ```python
        queue = InProcessDeliveryQueue(max_concurrent=10)
        await queue.start(worker.process)
        await queue.enqueue("dlv_abc123", delay_seconds=60)
        ```
    """

    def __init__(self, max_concurrent: int = 10) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._max_concurrent = max_concurrent
        self._ready: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._timers: set[asyncio.TimerHandle] = set()
        self._handler: DeliveryHandler | None = None

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def scheduled_count(self) -> int:
        """Jobs waiting on a delay timer."""
        return len(self._timers)

    @property
    def ready_count(self) -> int:
        """Jobs due and waiting for a free worker."""
        return self._ready.qsize()

    async def start(self, handler: DeliveryHandler) -> None:
        if self._workers:
            return
        self._handler = handler
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"hookline-delivery-{i}")
            for i in range(self._max_concurrent)
        ]
        logger.info("Delivery queue started with %d workers", self._max_concurrent)

    async def stop(self) -> None:
        for timer in self._timers:
            timer.cancel()
        dropped = len(self._timers)
        self._timers.clear()

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._handler = None
        logger.info("Delivery queue stopped (%d delayed jobs dropped)", dropped)

    async def enqueue(self, delivery_id: str, delay_seconds: float = 0.0) -> None:
        if delay_seconds <= 0:
            self._ready.put_nowait(delivery_id)
            return

        loop = asyncio.get_running_loop()
        timer: asyncio.TimerHandle | None = None

        def _release() -> None:
            if timer is not None:
                self._timers.discard(timer)
            self._ready.put_nowait(delivery_id)

        timer = loop.call_later(delay_seconds, _release)
        self._timers.add(timer)
        logger.debug("Delivery %s scheduled in %.1fs", delivery_id, delay_seconds)

    async def join(self) -> None:
        """Wait until every ready job has been processed.

        Delayed jobs are not waited for.
        """
        await self._ready.join()

    async def _worker_loop(self, index: int) -> None:
        while True:
            delivery_id = await self._ready.get()
            try:
                if self._handler is not None:
                    await self._handler(delivery_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Delivery job %s failed in worker %d", delivery_id, index)
            finally:
                self._ready.task_done()


__all__ = ["DeliveryHandler", "DeliveryQueue", "InProcessDeliveryQueue"]
