"""
Shoal - Delivery Channel

Bounded FIFO between plugin loops (producers) and a sink dispatcher (consumer).
Sending blocks while the channel is full; that is the only backpressure there
is, nothing is ever dropped. Closing enqueues a sentinel behind everything
already sent, so the consumer drains the backlog before it stops.
"""

import asyncio
from typing import AsyncIterator, Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_CAPACITY = 1000
RUN_ONCE_CAPACITY = 10000

_CLOSED = object()


class ChannelClosed(Exception):
    """Raised when sending on a closed channel, or receiving from a drained one."""
    pass


class DeliveryChannel(Generic[T]):
    """Multi-producer, single-consumer bounded queue with close semantics."""

    def __init__(self, name: str, capacity: int = DEFAULT_CAPACITY):
        self.name = name
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def drained(self) -> bool:
        return self._drained

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, item: T) -> None:
        """Enqueue an item, waiting while the channel is full."""
        if self._closed:
            raise ChannelClosed(f"send on closed channel {self.name}")
        await self._queue.put(item)

    async def close(self) -> None:
        """Close the channel.

        Must only be called once every producer has stopped. Waits for room
        for the sentinel if the consumer is still behind.
        """
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing channel", channel=self.name, pending=self.qsize())
        await self._queue.put(_CLOSED)

    async def receive(self) -> T:
        """Return the next item.

        Raises:
            ChannelClosed: once the channel is closed and drained.
        """
        if self._drained:
            raise ChannelClosed(f"channel {self.name} closed")
        item = await self._queue.get()
        if item is _CLOSED:
            self._drained = True
            raise ChannelClosed(f"channel {self.name} closed")
        return item

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            try:
                item = await self.receive()
            except ChannelClosed:
                return
            yield item
