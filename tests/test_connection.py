"""Tests for ConnectionManager lifecycle."""
from unittest.mock import AsyncMock

import pytest
import fakeredis
from redis.exceptions import ConnectionError as RedisConnectionError

from handoff.config import HandoffConfig
from handoff.connection import ConnectionManager
from handoff.errors import StoreUnavailable, ConfigurationError


class TestConnectionManager:

    @pytest.mark.asyncio
    async def test_connect_and_close(self, make_config, make_connection):
        manager = make_connection(make_config())
        assert not manager.is_connected

        await manager.connect()
        assert manager.is_connected
        assert await manager.client.ping()

        await manager.close()
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, make_config, make_connection):
        manager = make_connection(make_config())
        await manager.connect()
        client = manager.client
        await manager.connect()
        assert manager.client is client
        await manager.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_config, make_connection):
        manager = make_connection(make_config())
        await manager.connect()
        await manager.close()
        await manager.close()

    @pytest.mark.asyncio
    async def test_client_before_connect_raises(self, make_config, make_connection):
        manager = make_connection(make_config())
        with pytest.raises(StoreUnavailable):
            manager.client

    @pytest.mark.asyncio
    async def test_unreachable_server_raises_store_unavailable(self, make_config):
        client = AsyncMock()
        client.ping.side_effect = RedisConnectionError("Connection refused")
        manager = ConnectionManager(make_config(), client=client)

        with pytest.raises(StoreUnavailable):
            await manager.connect()
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_context_manager(self, make_config, redis_server):
        client = fakeredis.FakeAsyncRedis(server=redis_server)
        async with ConnectionManager(make_config(), client=client) as manager:
            assert manager.is_connected
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_pubsubs_closed_with_manager(self, make_config, make_connection):
        manager = make_connection(make_config())
        await manager.connect()
        pubsub = manager.open_pubsub()
        await pubsub.subscribe("handoff:test")

        await manager.close()

        assert manager._pubsubs == []

    @pytest.mark.asyncio
    async def test_release_pubsub_untracks(self, make_config, make_connection):
        manager = make_connection(make_config())
        await manager.connect()
        kept, released = manager.open_pubsub(), manager.open_pubsub()

        await manager.release_pubsub(released)

        assert manager._pubsubs == [kept]
        await manager.close()

    def test_pubsub_client_has_no_read_timeout(self, make_config):
        manager = ConnectionManager(make_config(redis={"socket_timeout": 2.0}))

        pooled = manager._build_client().connection_pool.connection_kwargs
        blocking = manager._build_client(blocking=True).connection_pool.connection_kwargs

        assert pooled["socket_timeout"] == 2.0
        assert blocking["socket_timeout"] is None

    @pytest.mark.asyncio
    async def test_owned_client_opens_pubsub_on_blocking_client(self, make_config):
        manager = ConnectionManager(make_config(redis={"socket_timeout": 2.0}))
        # Pretend connect() succeeded; nothing below touches the network
        manager._client = manager._build_client()
        manager._connected = True

        pubsub = manager.open_pubsub()

        assert pubsub.connection_pool is not manager.client.connection_pool
        assert pubsub.connection_pool.connection_kwargs["socket_timeout"] is None
        await manager.close()

    def test_invalid_config_rejected_at_construction(self):
        with pytest.raises(ConfigurationError):
            ConnectionManager(HandoffConfig(queue_size=0))
