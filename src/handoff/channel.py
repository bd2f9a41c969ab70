"""
NotificationChannel - topic-based push delivery over Redis pub/sub.

Publishing is fire-and-forget: the store does not wait for subscribers,
and an envelope published while nobody listens is lost. That is why the
cache path exists as the durable fallback.

Subscribers run on a listener task owned by the channel. One bad
envelope, or one failing handler, never ends the subscription; a lost
connection is retried with backoff until close() is called.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Union
import asyncio
import base64
import binascii
import json
import logging

from redis.exceptions import RedisError

from .connection import ConnectionManager
from .errors import AdaptionFailure, StoreUnavailable
from .keys import MessageType, Namespace

logger = logging.getLogger(__name__)

EnvelopeHandler = Callable[["NotificationEnvelope"], Union[None, Awaitable[None]]]

RESUBSCRIBE_DELAY = 0.5
RESUBSCRIBE_MAX_DELAY = 30.0


@dataclass
class NotificationEnvelope:
    """
    One in-flight pub/sub message. Never persisted.

    Attributes:
        message_type: Topic the envelope belongs to
        target_entity_id: Entity the payload is for
        payload: Encoded snapshot bytes
        cluster_id: Cluster id of the publishing process
        timestamp: When the envelope was created
    """
    message_type: MessageType
    target_entity_id: str
    payload: bytes
    cluster_id: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "message_type": self.message_type.value,
            "target_entity_id": self.target_entity_id,
            "payload": base64.b64encode(self.payload).decode("ascii"),
            "cluster_id": self.cluster_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationEnvelope":
        """Create NotificationEnvelope from dictionary."""
        return cls(
            message_type=MessageType(data["message_type"]),
            target_entity_id=str(data["target_entity_id"]),
            payload=base64.b64decode(data["payload"], validate=True),
            cluster_id=data.get("cluster_id") or "",
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now(),
        )

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "NotificationEnvelope":
        """
        Parse a wire message.

        Raises:
            AdaptionFailure: If the message is not a well-formed envelope
        """
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("envelope must be a JSON object")
            return cls.from_dict(data)
        except (UnicodeDecodeError, ValueError, KeyError, TypeError, binascii.Error) as e:
            raise AdaptionFailure(f"Malformed notification envelope: {e}") from e


class NotificationChannel:
    """
    Publish/subscribe transport scoped to one namespace.

    Args:
        connection: Connection manager supplying clients
        namespace: Topic scope; envelopes from other clusters are ignored
    """

    def __init__(self, connection: ConnectionManager, namespace: Namespace):
        self.connection = connection
        self.namespace = namespace
        self._tasks: List[asyncio.Task] = []
        self._closed = False
        self.received_count = 0
        self.rejected_count = 0

    async def publish(self, message_type: MessageType, envelope: NotificationEnvelope) -> int:
        """
        Publish an envelope to the topic for message_type.

        Returns:
            Number of subscribers the store delivered to (0 means nobody listened)

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        topic = self.namespace.topic(message_type)
        try:
            receivers = await self.connection.client.publish(topic, envelope.to_json())
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Failed to publish to {topic}: {e}") from e
        logger.debug(
            f"[{envelope.target_entity_id}] Published {message_type.name} to {receivers} subscriber(s)"
        )
        return receivers

    async def subscribe(self, message_types: Iterable[MessageType], handler: EnvelopeHandler) -> None:
        """
        Deliver envelopes of the given types to handler until close().

        handler may be a plain function or a coroutine function; it is
        invoked once per accepted envelope on the listener task.

        Raises:
            StoreUnavailable: If the initial subscription cannot be made
        """
        wanted = frozenset(message_types)
        topics = [self.namespace.topic(t) for t in wanted]
        if not topics:
            raise ValueError("subscribe() requires at least one message type")

        self._closed = False
        pubsub = await self._open(topics)
        task = asyncio.create_task(
            self._listen(pubsub, topics, wanted, handler),
            name=f"handoff-listener-{self.namespace.prefix}",
        )
        self._tasks.append(task)
        logger.info(f"Subscribed to {', '.join(topics)}")

    async def _open(self, topics: List[str]):
        pubsub = self.connection.open_pubsub()
        try:
            await pubsub.subscribe(*topics)
        except (RedisError, OSError) as e:
            await self.connection.release_pubsub(pubsub)
            raise StoreUnavailable(f"Failed to subscribe to {topics}: {e}") from e
        return pubsub

    async def _listen(self, pubsub, topics, wanted, handler) -> None:
        delay = RESUBSCRIBE_DELAY
        try:
            while not self._closed:
                if pubsub is None:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, RESUBSCRIBE_MAX_DELAY)
                    try:
                        pubsub = await self._open(topics)
                    except StoreUnavailable as err:
                        logger.warning(f"Resubscribe failed: {err}")
                        continue
                    logger.info(f"Resubscribed to {', '.join(topics)}")
                try:
                    async for message in pubsub.listen():
                        delay = RESUBSCRIBE_DELAY
                        if message.get("type") != "message":
                            continue
                        await self._dispatch(message, wanted, handler)
                    # listen() ends when the pubsub has no subscriptions left
                    return
                except (RedisError, OSError) as e:
                    if self._closed:
                        return
                    logger.warning(f"Pub/sub connection lost: {e}. Resubscribing in {delay:.1f}s")
                    # the broken connection is discarded, never reused
                    await self.connection.release_pubsub(pubsub)
                    pubsub = None
        finally:
            if pubsub is not None:
                await self.connection.release_pubsub(pubsub)

    async def _dispatch(self, message: Dict[str, Any], wanted, handler) -> None:
        channel = message.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8", errors="replace")

        message_type = self.namespace.message_type_for(channel or "")
        if message_type is None or message_type not in wanted:
            logger.debug(f"Ignoring message on foreign channel {channel}")
            return

        try:
            envelope = NotificationEnvelope.from_json(message.get("data") or b"")
        except AdaptionFailure as e:
            self.rejected_count += 1
            logger.warning(f"Dropping malformed envelope on {channel}: {e}")
            return

        if envelope.message_type is not message_type:
            self.rejected_count += 1
            logger.warning(f"Dropping {envelope.message_type.name} envelope sent on {channel}")
            return
        if envelope.cluster_id != self.namespace.cluster_id:
            logger.debug(f"Ignoring envelope from foreign cluster {envelope.cluster_id!r}")
            return

        self.received_count += 1
        try:
            result = handler(envelope)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(
                f"Error in envelope handler for {envelope.target_entity_id}: {e}", exc_info=True
            )

    async def close(self) -> None:
        """Stop all listener tasks. Connections are released by the ConnectionManager."""
        self._closed = True
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Listener ended with error: {e}")


__all__ = ["NotificationEnvelope", "NotificationChannel", "EnvelopeHandler"]
