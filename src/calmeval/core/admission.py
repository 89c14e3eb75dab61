from __future__ import annotations

import asyncio

from loguru import logger

from calmeval.core.request import END_OF_STREAM, Request, _EndOfStream
from calmeval.errors import QueueClosedError
from calmeval.utils import task_id_generator


class AdmissionQueue:
    """
    Bounded FIFO buffer between producers and the dispatcher.

    ``enqueue`` suspends while ``capacity`` requests are pending; this is the
    only backpressure applied to producers. Nothing is ever dropped. ``close``
    appends the end-of-stream marker after everything already queued and
    never waits for space.

    Args:
        capacity (int): Maximum number of pending requests
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("Admission queue capacity must be at least 1")
        self.capacity = capacity
        self._queue: asyncio.Queue[Request | _EndOfStream] = asyncio.Queue()
        self._slots = asyncio.Semaphore(capacity)
        self._pending = 0
        self._closed = False
        self._sequence = task_id_generator()

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        """Number of requests waiting to be dequeued (the end marker is not counted)."""
        return self._pending

    def full(self) -> bool:
        return self._pending >= self.capacity

    async def enqueue(self, request: Request) -> Request:
        """
        Append a request, waiting for space if the queue is at capacity.

        Assigns ``request.sequence`` in admission order.

        Raises:
            QueueClosedError: If ``close`` was called before space became available
        """
        if self._closed:
            raise QueueClosedError("Cannot enqueue after end-of-stream")
        await self._slots.acquire()
        if self._closed:
            self._slots.release()
            raise QueueClosedError("Cannot enqueue after end-of-stream")
        request.sequence = next(self._sequence)
        self._pending += 1
        self._queue.put_nowait(request)
        logger.debug(f"Request {request.sequence}: queued {request.text!r}")
        return request

    async def dequeue(self) -> Request | _EndOfStream:
        """Remove and return the oldest item, waiting while the queue is empty."""
        item = await self._queue.get()
        if item is not END_OF_STREAM:
            self._pending -= 1
            self._slots.release()
        return item

    def drain_nowait(self) -> list[Request]:
        """Remove every queued request without waiting. Used during forced shutdown."""
        drained: list[Request] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if isinstance(item, Request):
                drained.append(item)
                self._pending -= 1
                # lets blocked producers through to observe the closed state
                self._slots.release()
        return drained

    def close(self) -> None:
        """Signal end-of-stream. Idempotent; later ``enqueue`` calls raise."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(END_OF_STREAM)
        logger.debug("Admission queue closed")
