"""Fan-in of all trigger sources into one bounded FIFO."""

import asyncio

from vault_backup.triggers.events import Trigger

DEFAULT_CAPACITY = 10


class EventMerger:
    """
    Bounded multi-producer, single-consumer queue of triggers.

    Producers block while the queue is full; triggers are delivered in the
    order they were accepted, whatever source they came from. Nothing is
    ever dropped.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("Event queue capacity must be at least 1")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self.enqueued = 0
        self.dequeued = 0

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    def full(self) -> bool:
        return self._queue.full()

    async def put(self, trigger: Trigger) -> None:
        """Enqueue a trigger, waiting for a free slot if necessary."""
        await self._queue.put(trigger)
        self.enqueued += 1

    async def get(self) -> Trigger:
        """Dequeue the oldest trigger, waiting until one is available."""
        trigger = await self._queue.get()
        self.dequeued += 1
        return trigger

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every dequeued trigger has been marked done."""
        await self._queue.join()
