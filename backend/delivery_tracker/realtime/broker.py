"""
Channel broker interface and the in-process implementation.

Delivery is best-effort and at-most-once: a subscriber that is not draining
its queue fast enough loses the events that do not fit, and nothing is
replayed to late subscribers.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Optional

from delivery_tracker.core.logging import get_logger
from delivery_tracker.realtime.events import RealtimeEvent

logger = get_logger(__name__)

_CLOSED = object()


class Subscription:
    """
    Bounded queue of events for one subscriber of one channel.

    Iterate with ``async for``; iteration ends when the subscription closes.
    """

    def __init__(self, channel: str, maxsize: int = 100):
        self.channel = channel
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: RealtimeEvent) -> bool:
        """Enqueue without waiting; returns False when the event was dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    async def get(self, timeout: Optional[float] = None) -> Optional[RealtimeEvent]:
        """
        Next event, or None once closed.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> RealtimeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChannelBroker(ABC):
    """Publish/subscribe over named channels."""

    @abstractmethod
    def subscribe(self, channel: str) -> AbstractAsyncContextManager[Subscription]:
        """Subscribe for the duration of the ``async with`` block."""

    @abstractmethod
    async def publish(self, event: RealtimeEvent) -> int:
        """Publish to ``event.channel``; returns how many subscribers received it."""

    async def start(self) -> None:
        """Acquire external resources, if any."""

    @abstractmethod
    async def close(self) -> None:
        """Close every subscription and release resources."""


class InMemoryBroker(ChannelBroker):
    """Single-process broker fanning out to per-subscriber asyncio queues."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[str, set[Subscription]] = {}

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    @asynccontextmanager
    async def subscribe(self, channel: str) -> AsyncIterator[Subscription]:
        subscription = Subscription(channel, maxsize=self.queue_size)
        self._subscribers.setdefault(channel, set()).add(subscription)
        logger.debug("Channel subscription opened", channel=channel)
        try:
            yield subscription
        finally:
            subscribers = self._subscribers.get(channel)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[channel]
            subscription.close()
            logger.debug(
                "Channel subscription closed",
                channel=channel,
                dropped=subscription.dropped,
            )

    async def publish(self, event: RealtimeEvent) -> int:
        delivered = 0
        for subscription in list(self._subscribers.get(event.channel, ())):
            if subscription.offer(event):
                delivered += 1
            else:
                logger.warning(
                    "Realtime event dropped for slow subscriber",
                    channel=event.channel,
                    event_type=event.event.value,
                    dropped=subscription.dropped,
                )
        logger.debug(
            "Realtime event published",
            channel=event.channel,
            event_type=event.event.value,
            delivered=delivered,
        )
        return delivered

    async def close(self) -> None:
        for subscribers in self._subscribers.values():
            for subscription in subscribers:
                subscription.close()
        self._subscribers.clear()
        logger.info("In-memory broker closed")
