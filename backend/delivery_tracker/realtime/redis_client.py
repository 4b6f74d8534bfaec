"""
Redis client configuration with connection pooling and async support.

Used by the Redis channel broker for cross-process fan-out. Provides
connection management, health checks and the pub/sub primitives the broker
needs.
"""

from typing import Optional

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import PubSub
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from delivery_tracker.core.config import get_settings
from delivery_tracker.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Async Redis client with connection pooling and retry logic.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_connections: Optional[int] = None,
        socket_timeout: Optional[float] = None,
        socket_connect_timeout: float = 5.0,
        health_check_interval: int = 30,
    ):
        """
        Initialize Redis client settings; no connection is made yet.

        Args:
            url: Redis connection URL (defaults to settings.redis_url)
            max_connections: Maximum pool connections (defaults to settings)
            socket_timeout: Socket operation timeout in seconds; None keeps
                pub/sub reads blocking
            socket_connect_timeout: Socket connection timeout in seconds
            health_check_interval: Health check interval in seconds
        """
        settings = get_settings()
        self._url = url or settings.redis_url
        self._max_connections = max_connections or settings.redis_max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._health_check_interval = health_check_interval

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_connected = False

        logger.info(
            "Redis client initialized",
            url=self._sanitize_url(self._url),
            max_connections=self._max_connections,
        )

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """
        Sanitize Redis URL for logging (remove password).

        Args:
            url: Redis connection URL

        Returns:
            Sanitized URL safe for logging
        """
        if "://" in url:
            protocol, rest = url.split("://", 1)
            if "@" in rest:
                _, host_part = rest.split("@", 1)
                return f"{protocol}://***@{host_part}"
        return url

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def connect(self) -> None:
        """
        Establish Redis connection with retry logic.

        Raises:
            ConnectionError: If connection cannot be established
        """
        if self._is_connected:
            logger.warning("Redis client already connected")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                health_check_interval=self._health_check_interval,
                retry=Retry(ExponentialBackoff(base=0.1, cap=2.0), retries=3),
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connection established",
                url=self._sanitize_url(self._url),
                pool_size=self._max_connections,
            )
        except (ConnectionError, TimeoutError) as e:
            logger.error(
                "Failed to connect to Redis",
                error=str(e),
                url=self._sanitize_url(self._url),
            )
            await self._release()
            raise ConnectionError(f"Redis connection failed: {e}") from e

    async def _release(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
        self._is_connected = False

    async def disconnect(self) -> None:
        """Close Redis connection and release the pool."""
        if not self._is_connected:
            return
        await self._release()
        logger.info("Redis connection closed")

    async def health_check(self) -> bool:
        """
        Perform Redis health check.

        Returns:
            True if Redis is healthy and responsive, False otherwise
        """
        if not self._is_connected or not self._client:
            logger.warning("Redis health check failed: not connected")
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.error(
                "Redis health check failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _ensure_connected(self) -> Redis:
        """
        Ensure Redis client is connected.

        Raises:
            ConnectionError: If client is not connected
        """
        if not self._is_connected or not self._client:
            raise ConnectionError("Redis client is not connected")
        return self._client

    async def publish(self, channel: str, message: str) -> int:
        """
        Publish a message on a channel.

        Returns:
            Number of subscribers that received the message

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
        """
        client = self._ensure_connected()
        try:
            receivers = await client.publish(channel, message)
        except RedisError as e:
            logger.error("Redis PUBLISH operation failed", channel=channel, error=str(e))
            raise
        logger.debug("Redis PUBLISH operation", channel=channel, receivers=receivers)
        return int(receivers)

    def pubsub(self) -> PubSub:
        """
        Create a pub/sub handle on the shared pool.

        Raises:
            ConnectionError: If Redis is not connected
        """
        return self._ensure_connected().pubsub(ignore_subscribe_messages=True)

