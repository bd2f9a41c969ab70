"""
ExpiringCache - time-bounded staging area for snapshots.

Values live under namespaced keys (see keys.Namespace) for a bounded
lifetime and are read at most once: consume() is a single atomic GETDEL,
so two processes racing for the same key can never both receive it.

The cache carries no domain logic; the coordinator decides when to
write and when to consume.
"""

from datetime import datetime
from typing import Optional
import logging

from redis.exceptions import RedisError

from .config import TtlSettings
from .connection import ConnectionManager
from .errors import StoreUnavailable
from .keys import KeyType, Namespace

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now().strftime("%M:%S.%f")[:-3]


class ExpiringCache:
    """
    Namespaced, TTL-bounded key/value store with consuming reads.

    Args:
        connection: Connection manager supplying the shared client
        namespace: Key scope for this deployment
        ttls: Default lifetimes per key type
    """

    def __init__(self, connection: ConnectionManager, namespace: Namespace, ttls: TtlSettings):
        self.connection = connection
        self.namespace = namespace
        self.ttls = ttls

    async def put(self, key_type: KeyType, entity_id: str, data: bytes, ttl: Optional[float] = None) -> None:
        """
        Store bytes under a key, replacing any value and resetting expiry.

        Args:
            key_type: Purpose of the key
            entity_id: Entity the value belongs to
            data: Payload (may be empty)
            ttl: Lifetime in seconds; defaults to the configured TTL for key_type

        Raises:
            StoreUnavailable: If the write fails
            ValueError: If entity_id is not a valid key segment
        """
        key = self.namespace.key(key_type, entity_id)
        ttl = self.ttls.for_key(key_type) if ttl is None else ttl
        try:
            await self.connection.client.set(key, data, px=max(1, int(ttl * 1000)))
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Failed to write {key}: {e}") from e
        logger.debug(f"[{entity_id}] Set {key_type.name} key ({len(data)} bytes, ttl={ttl}s) at {_now()}")

    async def consume(self, key_type: KeyType, entity_id: str) -> Optional[bytes]:
        """
        Atomically read and delete a value.

        Returns:
            The stored bytes, or None if never written, already consumed or expired

        Raises:
            StoreUnavailable: If the read fails. This is not "absent".
            ValueError: If entity_id is not a valid key segment
        """
        key = self.namespace.key(key_type, entity_id)
        try:
            data = await self.connection.client.getdel(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Failed to consume {key}: {e}") from e

        if data is None:
            logger.debug(f"[{entity_id}] No {key_type.name} key present at {_now()}")
            return None
        logger.debug(f"[{entity_id}] Consumed {key_type.name} key ({len(data)} bytes) at {_now()}")
        return bytes(data)

    async def put_marker(self, key_type: KeyType, entity_id: str, ttl: Optional[float] = None) -> None:
        """Store a zero-length presence marker."""
        await self.put(key_type, entity_id, b"", ttl)

    async def consume_marker(self, key_type: KeyType, entity_id: str) -> bool:
        """Consume a presence marker, returning whether it was present."""
        return await self.consume(key_type, entity_id) is not None

    async def time_to_live(self, key_type: KeyType, entity_id: str) -> Optional[float]:
        """
        Remaining lifetime of a key in seconds, without consuming it.

        Returns:
            Seconds remaining, or None if the key is absent
        """
        key = self.namespace.key(key_type, entity_id)
        try:
            remaining = await self.connection.client.pttl(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Failed to inspect {key}: {e}") from e
        if remaining is None or remaining < 0:
            return None
        return remaining / 1000.0


__all__ = ["ExpiringCache"]
