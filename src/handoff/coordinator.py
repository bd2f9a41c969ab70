"""
SyncCoordinator - hands an entity's snapshot from one process to the next.

Three paths move a snapshot between processes:

1. Departure (depart): the origin process encodes the entity's state
   once, stages it in the cache together with a server-switch marker,
   then publishes it so a process already hosting the entity gets it
   immediately.
2. Arrival (arrive): when the entity's session starts, the destination
   consumes the marker and, if present, the staged snapshot, then
   applies it. No marker means a fresh join and nothing is touched.
3. Live push: an UPDATE_USER_DATA envelope for an entity already online
   here is applied directly, without touching the cache.

Snapshots are whole states, never diffs, so if a push and an arrival
both land in a narrow window the last one applied wins and re-applying
the same snapshot is harmless. The atomic consuming read is the only
guard against double application; no locks are taken.

Entity state is only ever mutated from the event loop the coordinator
was started on. The pub/sub listener merely decodes envelopes and puts
them on a bounded queue; a single consumer task applies them.

Usage:
    coordinator = SyncCoordinator(config, ConnectionManager(config),
                                  JsonSnapshotCodec(), host, event_bus)
    await coordinator.start()

    await coordinator.depart(player_id, state)   # player leaving this server
    outcome = await coordinator.arrive(player_id)  # player joined this server

    await coordinator.close()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
import asyncio
import logging

from .cache import ExpiringCache
from .channel import NotificationChannel, NotificationEnvelope
from .codec import SnapshotCodec
from .config import HandoffConfig
from .connection import ConnectionManager
from .errors import AdaptionFailure, StoreUnavailable
from .event_bus import EventBus
from .events import HandoffStagedEvent, SyncCompletedEvent, SyncFailedEvent
from .keys import KeyType, MessageType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncStatus(Enum):
    """
    Result of one application attempt.

    APPLIED: Snapshot applied to the live entity
    FAILED: Snapshot could not be fetched, decoded or applied
    NO_PENDING_DATA: Nothing was staged for this entity
    """
    APPLIED = "applied"
    FAILED = "failed"
    NO_PENDING_DATA = "no_pending_data"


class SyncPath(Enum):
    """How a snapshot reached this process."""
    ARRIVAL = "arrival"
    PUSH = "push"


@dataclass
class SyncOutcome:
    """Outcome of an arrival or push application."""
    entity_id: str
    status: SyncStatus
    path: SyncPath
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is SyncStatus.APPLIED


class EntityHost(ABC):
    """
    The host process's view of its live entities.

    apply_state() is awaited on the coordinator's event loop. Hosts whose
    entity model lives on another thread should marshal the mutation
    onto that thread and await its completion before returning.
    """

    @abstractmethod
    def is_online(self, entity_id: str) -> bool:
        """Whether the entity currently has a session on this process."""
        pass

    @abstractmethod
    async def apply_state(self, entity_id: str, state: Any) -> bool:
        """
        Replace the entity's live state with a decoded snapshot.

        Returns:
            True if the state was applied
        """
        pass


@dataclass
class _PushItem:
    entity_id: str
    state: Any = None
    error: Optional[str] = None


class SyncCoordinator:
    """
    Orchestrates departure, arrival and live push for entity snapshots.

    Args:
        config: Validated process configuration
        connection: Lifecycle owner of the Redis connections
        codec: Active snapshot codec
        host: Host entity model
        event_bus: Receives one outcome event per application attempt
        cache: Override the cache (defaults to one built from config)
        channel: Override the channel (defaults to one built from config)
    """

    def __init__(
        self,
        config: HandoffConfig,
        connection: ConnectionManager,
        codec: SnapshotCodec,
        host: EntityHost,
        event_bus: Optional[EventBus] = None,
        cache: Optional[ExpiringCache] = None,
        channel: Optional[NotificationChannel] = None,
    ):
        self.config = config.validate()
        self.namespace = config.namespace
        self.connection = connection
        self.codec = codec
        self.host = host
        self.event_bus = event_bus or EventBus()
        self.cache = cache or ExpiringCache(connection, self.namespace, config.ttl)
        self.channel = channel or NotificationChannel(connection, self.namespace)

        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._stats = {
            "departures": 0,
            "departure_failures": 0,
            "pushes_sent": 0,
            "arrivals_applied": 0,
            "pushes_applied": 0,
            "sync_failures": 0,
            "pushes_dropped": 0,
        }

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """
        Connect, subscribe to live pushes and start the apply consumer.

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        if self._consumer is not None:
            return
        await self.connection.connect()
        self._queue = asyncio.Queue(maxsize=self.config.queue_size)
        self._consumer = asyncio.create_task(self._apply_loop(), name="handoff-apply")
        try:
            await self.channel.subscribe([MessageType.UPDATE_USER_DATA], self._on_envelope)
        except StoreUnavailable:
            await self._stop_consumer()
            raise
        logger.info(f"SyncCoordinator started (cluster={self.config.cluster_id or '-'})")

    async def close(self) -> None:
        """Stop listening, drop queued pushes and release connections."""
        await self.channel.close()
        await self._stop_consumer()
        await self.connection.close()
        logger.info("SyncCoordinator closed")

    async def _stop_consumer(self) -> None:
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None

    async def __aenter__(self) -> "SyncCoordinator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ==================== Departure ====================

    async def depart(self, entity_id: str, state: Any, push: bool = True) -> None:
        """
        Stage an entity's snapshot for the next process and push it live.

        Args:
            entity_id: Departing entity
            state: Entity state to hand off
            push: Also publish the snapshot to currently subscribed processes

        Raises:
            AdaptionFailure: If the state cannot be encoded (nothing is written)
            StoreUnavailable: If staging still fails after bounded retries
            ValueError: If entity_id is not a valid key segment
        """
        data = self.codec.encode(state)
        try:
            await self._stage(entity_id, data)
        except StoreUnavailable:
            self._stats["departure_failures"] += 1
            raise

        pushed = False
        if push:
            try:
                await self._publish(entity_id, data)
                pushed = True
            except StoreUnavailable as e:
                # the staged copy is still there for the arrival path
                logger.warning(f"[{entity_id}] Live push failed after staging: {e}")

        self._stats["departures"] += 1
        self.event_bus.publish(HandoffStagedEvent(entity_id=entity_id, size_bytes=len(data), pushed=pushed))

    async def stage_handoff(self, entity_id: str, state: Any) -> None:
        """Stage a snapshot and server-switch marker without publishing."""
        await self.depart(entity_id, state, push=False)

    async def push_update(self, entity_id: str, state: Any) -> int:
        """
        Publish a snapshot to whichever process hosts the entity right now.

        Returns:
            Number of subscribed processes the store delivered to

        Raises:
            AdaptionFailure: If the state cannot be encoded
            StoreUnavailable: If the store cannot be reached
        """
        return await self._publish(entity_id, self.codec.encode(state))

    async def _stage(self, entity_id: str, data: bytes) -> None:
        # Data before marker, so a visible marker implies the data was written
        await self._with_retry(
            f"stage {KeyType.DATA_HANDOFF.name}",
            entity_id,
            lambda: self.cache.put(KeyType.DATA_HANDOFF, entity_id, data),
        )
        await self._with_retry(
            f"stage {KeyType.SERVER_SWITCH_MARKER.name}",
            entity_id,
            lambda: self.cache.put_marker(KeyType.SERVER_SWITCH_MARKER, entity_id),
        )

    async def _publish(self, entity_id: str, data: bytes) -> int:
        envelope = NotificationEnvelope(
            message_type=MessageType.UPDATE_USER_DATA,
            target_entity_id=entity_id,
            payload=data,
            cluster_id=self.namespace.cluster_id,
        )
        receivers = await self.channel.publish(MessageType.UPDATE_USER_DATA, envelope)
        self._stats["pushes_sent"] += 1
        return receivers

    async def _with_retry(self, operation: str, entity_id: str, call: Callable[[], Awaitable[T]]) -> T:
        attempts = self.config.retry.attempts
        for attempt in range(attempts):
            try:
                return await call()
            except StoreUnavailable as e:
                if attempt + 1 >= attempts:
                    logger.error(f"[{entity_id}] {operation} failed after {attempts} attempts: {e}")
                    raise
                delay = self.config.retry.delay * (2 ** attempt)
                logger.warning(
                    f"[{entity_id}] {operation} failed (attempt {attempt + 1}/{attempts}): {e}. "
                    f"Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)

    # ==================== Arrival ====================

    async def arrive(self, entity_id: str) -> SyncOutcome:
        """
        Claim and apply any snapshot staged for an entity that just joined.

        Consuming reads are not retried: a read that succeeded server-side
        but failed in transit has already removed the entry.

        Returns:
            SyncOutcome; NO_PENDING_DATA leaves local state untouched

        Raises:
            ValueError: If entity_id is not a valid key segment
        """
        path = SyncPath.ARRIVAL
        try:
            switching = await self.cache.consume_marker(KeyType.SERVER_SWITCH_MARKER, entity_id)
            if not switching:
                logger.debug(f"[{entity_id}] No server switch pending, treating as fresh join")
                return SyncOutcome(entity_id, SyncStatus.NO_PENDING_DATA, path)

            data = await self.cache.consume(KeyType.DATA_HANDOFF, entity_id)
        except StoreUnavailable as e:
            return self._report(SyncOutcome(entity_id, SyncStatus.FAILED, path, f"store unavailable: {e}"))

        if data is None:
            logger.info(f"[{entity_id}] Server switch marker present but snapshot expired")
            return SyncOutcome(entity_id, SyncStatus.NO_PENDING_DATA, path)

        try:
            state = self.codec.decode(data)
        except AdaptionFailure as e:
            return self._report(SyncOutcome(entity_id, SyncStatus.FAILED, path, f"undecodable snapshot: {e}"))

        return await self._apply(entity_id, state, path)

    # ==================== Live push ====================

    def _on_envelope(self, envelope: NotificationEnvelope) -> None:
        """Listener callback: decode and enqueue only."""
        entity_id = envelope.target_entity_id
        try:
            item = _PushItem(entity_id, state=self.codec.decode(envelope.payload))
        except AdaptionFailure as e:
            item = _PushItem(entity_id, error=f"undecodable snapshot: {e}")

        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._stats["pushes_dropped"] += 1
            logger.warning(f"[{entity_id}] Push queue full, dropping update")

    async def _apply_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._apply_push(item)
            except Exception as e:
                logger.error(f"[{item.entity_id}] Unexpected error applying push: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _apply_push(self, item: _PushItem) -> Optional[SyncOutcome]:
        if not self.host.is_online(item.entity_id):
            logger.debug(f"[{item.entity_id}] Not online here, ignoring push")
            return None
        if item.error is not None:
            return self._report(SyncOutcome(item.entity_id, SyncStatus.FAILED, SyncPath.PUSH, item.error))
        return await self._apply(item.entity_id, item.state, SyncPath.PUSH)

    async def wait_idle(self) -> None:
        """Wait until every queued push has been applied or discarded."""
        if self._queue is not None:
            await self._queue.join()

    # ==================== Outcomes ====================

    async def _apply(self, entity_id: str, state: Any, path: SyncPath) -> SyncOutcome:
        try:
            applied = await self.host.apply_state(entity_id, state)
        except Exception as e:
            logger.error(f"[{entity_id}] Host failed to apply snapshot: {e}", exc_info=True)
            return self._report(SyncOutcome(entity_id, SyncStatus.FAILED, path, f"apply failed: {e}"))

        if not applied:
            return self._report(SyncOutcome(entity_id, SyncStatus.FAILED, path, "host rejected snapshot"))
        return self._report(SyncOutcome(entity_id, SyncStatus.APPLIED, path))

    def _report(self, outcome: SyncOutcome) -> SyncOutcome:
        if outcome.succeeded:
            key = "arrivals_applied" if outcome.path is SyncPath.ARRIVAL else "pushes_applied"
            self._stats[key] += 1
            logger.info(f"[{outcome.entity_id}] Snapshot applied via {outcome.path.value}")
            self.event_bus.publish(SyncCompletedEvent(entity_id=outcome.entity_id, path=outcome.path.value))
        else:
            self._stats["sync_failures"] += 1
            logger.warning(f"[{outcome.entity_id}] Sync via {outcome.path.value} failed: {outcome.reason}")
            self.event_bus.publish(
                SyncFailedEvent(entity_id=outcome.entity_id, path=outcome.path.value, reason=outcome.reason or "")
            )
        return outcome

    def get_stats(self) -> Dict[str, Any]:
        """Counters for monitoring, plus listener health."""
        return {
            **self._stats,
            "envelopes_received": self.channel.received_count,
            "envelopes_rejected": self.channel.rejected_count,
            "queued": self._queue.qsize() if self._queue is not None else 0,
        }


__all__ = [
    "SyncStatus",
    "SyncPath",
    "SyncOutcome",
    "EntityHost",
    "SyncCoordinator",
]
