"""
Redis pub/sub channel broker for multi-process deployments.

Events are serialized to JSON and published with ``PUBLISH``; each local
subscription owns a Redis pub/sub handle pumped into a bounded queue, so
slow consumers drop events exactly like the in-memory broker.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from delivery_tracker.core.logging import get_logger
from delivery_tracker.realtime.broker import ChannelBroker, Subscription
from delivery_tracker.realtime.events import RealtimeEvent
from delivery_tracker.realtime.redis_client import RedisClient

logger = get_logger(__name__)


class RedisBroker(ChannelBroker):
    """Channel broker backed by Redis PUBLISH/SUBSCRIBE."""

    def __init__(self, client: RedisClient, queue_size: int = 100):
        self.client = client
        self.queue_size = queue_size
        self._subscriptions: set[Subscription] = set()

    async def start(self) -> None:
        if not self.client.is_connected:
            await self.client.connect()

    @asynccontextmanager
    async def subscribe(self, channel: str) -> AsyncIterator[Subscription]:
        pubsub = self.client.pubsub()
        await pubsub.subscribe(channel)

        subscription = Subscription(channel, maxsize=self.queue_size)
        self._subscriptions.add(subscription)
        reader = asyncio.create_task(self._pump(pubsub, subscription))
        logger.debug("Redis channel subscription opened", channel=channel)

        try:
            yield subscription
        finally:
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader
            self._subscriptions.discard(subscription)
            subscription.close()
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.debug(
                "Redis channel subscription closed",
                channel=channel,
                dropped=subscription.dropped,
            )

    async def _pump(self, pubsub: PubSub, subscription: Subscription) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = RealtimeEvent.from_json(message["data"])
                except ValueError as e:
                    logger.warning(
                        "Discarding malformed realtime message",
                        channel=subscription.channel,
                        error=str(e),
                    )
                    continue
                if not subscription.offer(event):
                    logger.warning(
                        "Realtime event dropped for slow subscriber",
                        channel=subscription.channel,
                        event_type=event.event.value,
                        dropped=subscription.dropped,
                    )
        except RedisError as e:
            logger.error(
                "Redis subscription reader failed",
                channel=subscription.channel,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            subscription.close()

    async def publish(self, event: RealtimeEvent) -> int:
        return await self.client.publish(event.channel, event.to_json())

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
        self._subscriptions.clear()
        logger.info("Redis broker closed")
