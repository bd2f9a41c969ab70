"""
ConnectionManager - owns the process-wide Redis connections.

One pooled client serves every cache read/write and publish; each
operation borrows a pooled connection for a single round trip. Pub/sub
subscriptions get dedicated connections, opened through open_pubsub()
so they are torn down with the manager. Those come from a second client
with no socket timeout, because an idle subscriber blocks on read
indefinitely. An adopted client is used for pub/sub as-is.

Usage:
    manager = ConnectionManager(config)
    await manager.connect()
    ...
    await manager.close()

    # or
    async with ConnectionManager(config) as manager:
        ...
"""

from typing import List, Optional
import asyncio
import logging

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from .config import HandoffConfig
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Lifecycle owner for the shared Redis client and pub/sub connections.

    Args:
        config: Validated process configuration
        client: Pre-built client to adopt instead of creating one
                (the manager still closes it on shutdown)
    """

    def __init__(self, config: HandoffConfig, client: Optional[aioredis.Redis] = None):
        self.config = config.validate()
        self._client: Optional[aioredis.Redis] = client
        self._pubsub_client: Optional[aioredis.Redis] = None
        self._owns_client = client is None
        self._pubsubs: List[PubSub] = []
        self._connected = False
        self._connect_lock = asyncio.Lock()

    def _build_client(self, blocking: bool = False) -> aioredis.Redis:
        settings = self.config.redis
        return aioredis.Redis(
            host=settings.host,
            port=settings.port,
            db=settings.db,
            password=settings.password or None,
            ssl=settings.use_ssl,
            socket_timeout=None if blocking else settings.socket_timeout,
            socket_connect_timeout=settings.connect_timeout,
            decode_responses=False,
        )

    async def connect(self) -> None:
        """
        Create the client (if needed) and verify the server answers PING.

        Safe to call more than once.

        Raises:
            StoreUnavailable: If the server cannot be reached or rejects auth
        """
        async with self._connect_lock:
            if self._connected:
                return
            if self._client is None:
                self._client = self._build_client()
                self._owns_client = True

            settings = self.config.redis
            try:
                await self._client.ping()
            except (RedisError, OSError) as e:
                logger.warning(f"Redis connection failed ({settings.host}:{settings.port}): {e}")
                raise StoreUnavailable(
                    f"Cannot reach Redis at {settings.host}:{settings.port}: {e}"
                ) from e

            self._connected = True
            logger.info(
                f"Connected to Redis at {settings.host}:{settings.port} "
                f"(ssl={settings.use_ssl}, cluster={self.config.cluster_id or '-'})"
            )

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def client(self) -> aioredis.Redis:
        """
        The shared pooled client.

        Raises:
            StoreUnavailable: If connect() has not succeeded or close() was called
        """
        if not self._connected or self._client is None:
            raise StoreUnavailable("Redis connection is not established")
        return self._client

    def open_pubsub(self) -> PubSub:
        """
        Open a dedicated pub/sub connection tracked for shutdown.

        Raises:
            StoreUnavailable: If not connected
        """
        client = self.client
        if self._owns_client:
            if self._pubsub_client is None:
                self._pubsub_client = self._build_client(blocking=True)
            client = self._pubsub_client
        pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._pubsubs.append(pubsub)
        return pubsub

    async def release_pubsub(self, pubsub: PubSub) -> None:
        """Close one pub/sub connection and stop tracking it."""
        if pubsub in self._pubsubs:
            self._pubsubs.remove(pubsub)
        try:
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"Error closing pub/sub connection: {e}")

    async def close(self) -> None:
        """Close all pub/sub connections and the shared client. Idempotent."""
        async with self._connect_lock:
            pubsubs, self._pubsubs = self._pubsubs, []
            for pubsub in pubsubs:
                try:
                    await pubsub.aclose()
                except (RedisError, OSError) as e:
                    logger.debug(f"Error closing pub/sub connection: {e}")

            for client in (self._pubsub_client, self._client):
                if client is None:
                    continue
                try:
                    await client.aclose()
                except (RedisError, OSError) as e:
                    logger.debug(f"Error closing Redis client: {e}")
            self._client = None
            self._pubsub_client = None

            if self._connected:
                logger.info("Redis connections closed")
            self._connected = False

    async def __aenter__(self) -> "ConnectionManager":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = ["ConnectionManager"]
