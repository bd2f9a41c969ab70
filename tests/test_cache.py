"""
Tests for ExpiringCache

Covers the store contract: replace-on-write, consuming reads that return
a value at most once, TTL expiry, markers, namespace isolation and
translation of transport errors.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from handoff.cache import ExpiringCache
from handoff.errors import StoreUnavailable
from handoff.keys import KeyType


async def open_cache(make_config, make_connection, cluster_id=""):
    config = make_config(cluster_id)
    connection = make_connection(config)
    await connection.connect()
    return ExpiringCache(connection, config.namespace, config.ttl)


class TestPutConsume:

    @pytest.mark.asyncio
    async def test_consume_returns_written_value(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put(KeyType.DATA_HANDOFF, "steve", b"snapshot")
        assert await cache.consume(KeyType.DATA_HANDOFF, "steve") == b"snapshot"

    @pytest.mark.asyncio
    async def test_second_consume_is_absent(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put(KeyType.DATA_HANDOFF, "steve", b"snapshot")

        assert await cache.consume(KeyType.DATA_HANDOFF, "steve") == b"snapshot"
        assert await cache.consume(KeyType.DATA_HANDOFF, "steve") is None

    @pytest.mark.asyncio
    async def test_never_written_is_absent(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        assert await cache.consume(KeyType.DATA_HANDOFF, "nobody") is None

    @pytest.mark.asyncio
    async def test_put_replaces_previous_value(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put(KeyType.DATA_HANDOFF, "steve", b"old")
        await cache.put(KeyType.DATA_HANDOFF, "steve", b"new")
        assert await cache.consume(KeyType.DATA_HANDOFF, "steve") == b"new"

    @pytest.mark.asyncio
    async def test_purposes_are_separate(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put(KeyType.DATA_HANDOFF, "steve", b"data")
        assert await cache.consume_marker(KeyType.SERVER_SWITCH_MARKER, "steve") is False
        assert await cache.consume(KeyType.DATA_HANDOFF, "steve") == b"data"

    @pytest.mark.asyncio
    async def test_uses_atomic_getdel(self, make_config):
        client = AsyncMock()
        client.getdel.return_value = b"v"
        connection = MagicMock()
        connection.client = client
        config = make_config("eu")
        cache = ExpiringCache(connection, config.namespace, config.ttl)

        assert await cache.consume(KeyType.DATA_HANDOFF, "steve") == b"v"

        client.getdel.assert_awaited_once_with("handoff:eu:data_handoff:steve")
        client.get.assert_not_called()
        client.delete.assert_not_called()


class TestConcurrentConsume:

    @pytest.mark.asyncio
    async def test_exactly_one_of_many_consumers_wins(self, make_config, make_connection):
        writer = await open_cache(make_config, make_connection)
        readers = [await open_cache(make_config, make_connection) for _ in range(10)]
        await writer.put(KeyType.DATA_HANDOFF, "steve", b"snapshot")

        results = await asyncio.gather(*(r.consume(KeyType.DATA_HANDOFF, "steve") for r in readers))

        assert results.count(b"snapshot") == 1
        assert results.count(None) == 9


class TestExpiry:

    @pytest.mark.asyncio
    async def test_present_before_ttl(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put(KeyType.DATA_HANDOFF, "steve", b"snapshot", ttl=2)
        await asyncio.sleep(0.1)
        assert await cache.consume(KeyType.DATA_HANDOFF, "steve") == b"snapshot"

    @pytest.mark.asyncio
    async def test_absent_after_ttl(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put(KeyType.DATA_HANDOFF, "steve", b"snapshot", ttl=0.1)
        await asyncio.sleep(0.3)
        assert await cache.consume(KeyType.DATA_HANDOFF, "steve") is None

    @pytest.mark.asyncio
    async def test_rewrite_resets_expiry(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put(KeyType.DATA_HANDOFF, "steve", b"one", ttl=0.2)
        await asyncio.sleep(0.1)
        await cache.put(KeyType.DATA_HANDOFF, "steve", b"two", ttl=1)
        await asyncio.sleep(0.2)
        assert await cache.consume(KeyType.DATA_HANDOFF, "steve") == b"two"

    @pytest.mark.asyncio
    async def test_default_ttl_from_config(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put_marker(KeyType.SERVER_SWITCH_MARKER, "steve")
        remaining = await cache.time_to_live(KeyType.SERVER_SWITCH_MARKER, "steve")
        assert 0 < remaining <= 5

    @pytest.mark.asyncio
    async def test_time_to_live_absent(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        assert await cache.time_to_live(KeyType.DATA_HANDOFF, "nobody") is None


class TestMarkers:

    @pytest.mark.asyncio
    async def test_marker_present_once(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put_marker(KeyType.SERVER_SWITCH_MARKER, "steve")

        assert await cache.consume_marker(KeyType.SERVER_SWITCH_MARKER, "steve") is True
        assert await cache.consume_marker(KeyType.SERVER_SWITCH_MARKER, "steve") is False

    @pytest.mark.asyncio
    async def test_marker_is_empty_payload(self, make_config, make_connection):
        cache = await open_cache(make_config, make_connection)
        await cache.put_marker(KeyType.SERVER_SWITCH_MARKER, "steve")
        assert await cache.consume(KeyType.SERVER_SWITCH_MARKER, "steve") == b""


class TestIsolation:

    @pytest.mark.asyncio
    async def test_clusters_never_see_each_others_keys(self, make_config, make_connection):
        eu = await open_cache(make_config, make_connection, "eu")
        us = await open_cache(make_config, make_connection, "us")

        await eu.put(KeyType.DATA_HANDOFF, "steve", b"eu-data")

        assert await us.consume(KeyType.DATA_HANDOFF, "steve") is None
        assert await eu.consume(KeyType.DATA_HANDOFF, "steve") == b"eu-data"

    @pytest.mark.asyncio
    async def test_unclustered_cache_cannot_reach_clustered_key(self, make_config, make_connection):
        clustered = await open_cache(make_config, make_connection, "server_switch")
        unclustered = await open_cache(make_config, make_connection)

        await clustered.put(KeyType.DATA_HANDOFF, "u1", b"secret")

        # Same key string once the cluster segment is folded into the entity id
        with pytest.raises(ValueError):
            await unclustered.consume(KeyType.SERVER_SWITCH_MARKER, "data_handoff:u1")
        assert await clustered.consume(KeyType.DATA_HANDOFF, "u1") == b"secret"


class TestErrors:

    def _failing_cache(self, make_config, error):
        client = AsyncMock()
        client.set.side_effect = error
        client.getdel.side_effect = error
        client.pttl.side_effect = error
        connection = MagicMock()
        connection.client = client
        config = make_config()
        return ExpiringCache(connection, config.namespace, config.ttl)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [RedisConnectionError("down"), RedisTimeoutError("slow"), OSError("reset")])
    async def test_transport_errors_become_store_unavailable(self, make_config, error):
        cache = self._failing_cache(make_config, error)

        with pytest.raises(StoreUnavailable):
            await cache.put(KeyType.DATA_HANDOFF, "steve", b"x")
        with pytest.raises(StoreUnavailable):
            await cache.consume(KeyType.DATA_HANDOFF, "steve")
        with pytest.raises(StoreUnavailable):
            await cache.consume_marker(KeyType.SERVER_SWITCH_MARKER, "steve")
        with pytest.raises(StoreUnavailable):
            await cache.time_to_live(KeyType.DATA_HANDOFF, "steve")

    @pytest.mark.asyncio
    async def test_not_connected_is_store_unavailable(self, make_config, make_connection):
        config = make_config()
        cache = ExpiringCache(make_connection(config), config.namespace, config.ttl)
        with pytest.raises(StoreUnavailable):
            await cache.put(KeyType.DATA_HANDOFF, "steve", b"x")
