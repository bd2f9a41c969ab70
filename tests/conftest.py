"""Pytest fixtures for handoff tests.

Every "process" in a test gets its own FakeAsyncRedis client; clients that
share a FakeServer see the same keys and channels, like separate servers
pointed at one Redis.
"""
import asyncio
from typing import Any, Dict, List

import pytest
import fakeredis

from handoff.config import HandoffConfig
from handoff.connection import ConnectionManager
from handoff.coordinator import EntityHost


class FakeHost(EntityHost):
    """In-memory entity model recording every applied state."""

    def __init__(self, online=(), accept: bool = True):
        self.online = set(online)
        self.accept = accept
        self.states: Dict[str, Any] = {}
        self.applied: List[tuple] = []

    def is_online(self, entity_id: str) -> bool:
        return entity_id in self.online

    async def apply_state(self, entity_id: str, state: Any) -> bool:
        if not self.accept:
            return False
        self.states[entity_id] = state
        self.applied.append((entity_id, state))
        return True


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll predicate until it is true, failing the test on timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def redis_server():
    """One shared fake Redis server."""
    return fakeredis.FakeServer()


@pytest.fixture
def make_config():
    """Factory for validated configs with short TTLs and fast retries."""
    def _make(cluster_id: str = "", **overrides) -> HandoffConfig:
        data = {
            "cluster_id": cluster_id,
            "ttl": {"data_handoff": 5, "server_switch": 5},
            "retry": {"attempts": 3, "delay": 0},
        }
        data.update(overrides)
        return HandoffConfig.from_dict(data)
    return _make


@pytest.fixture
def make_connection(redis_server):
    """Factory for ConnectionManagers backed by the shared fake server."""
    def _make(config: HandoffConfig) -> ConnectionManager:
        return ConnectionManager(config, client=fakeredis.FakeAsyncRedis(server=redis_server))
    return _make
