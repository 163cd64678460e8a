import asyncio
import logging
from typing import AsyncIterator, Generic, Optional, TypeVar

from ..models.domain import Coordinate

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Channel(Generic[T]):
    """Unbounded FIFO channel with an explicit close.

    Items are delivered in push order; iteration stops once the channel is
    closed and drained.
    """

    def __init__(self):
        self._queue: "asyncio.Queue" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, item: T) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(item)
        return True

    def close(self):
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[T]:
        """Next item, or None once the channel is closed"""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other reader
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            item = await self.get()
            if item is None:
                return
            yield item


class PositionChannel(Channel[Coordinate]):
    """Device position updates for one navigation session"""

    def __init__(self, available: bool = True):
        super().__init__()
        # False when the device denied location permission
        self.available = available
