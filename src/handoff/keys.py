"""
Key and topic naming for the shared store.

Every key and pub/sub channel is prefixed with the fixed literal
namespace plus the operator's cluster id, so independent deployments
pointed at one Redis never see each other's data:

    handoff:<cluster>:<purpose>:<entity-id>     (cache keys)
    handoff:<cluster>:<message-type>            (pub/sub topics)

With an empty cluster id the cluster segment is omitted. Neither the
cluster id nor an entity id may contain the separator, so every key maps
back to exactly one (cluster, purpose, entity) triple.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

KEY_NAMESPACE = "handoff"
SEPARATOR = ":"


class KeyType(Enum):
    """
    Purposes a cache key can serve.

    DATA_HANDOFF: Encoded snapshot staged for the next process
    SERVER_SWITCH_MARKER: Zero-length flag marking an in-flight server switch
    """
    DATA_HANDOFF = "data_handoff"
    SERVER_SWITCH_MARKER = "server_switch"


class MessageType(Enum):
    """
    Known pub/sub message types.

    UPDATE_USER_DATA: Full snapshot pushed to whichever process hosts the entity
    """
    UPDATE_USER_DATA = "update_user_data"


@dataclass(frozen=True)
class Namespace:
    """
    Immutable key/topic scope for one deployment.

    Attributes:
        cluster_id: Operator-configured cluster identifier ('' for none)
    """
    cluster_id: str = ""

    def __post_init__(self):
        if SEPARATOR in self.cluster_id:
            raise ValueError(f"cluster_id must not contain {SEPARATOR!r}: {self.cluster_id!r}")

    @property
    def prefix(self) -> str:
        if self.cluster_id:
            return f"{KEY_NAMESPACE}:{self.cluster_id}"
        return KEY_NAMESPACE

    def key(self, key_type: KeyType, entity_id: str) -> str:
        """
        Build the cache key for a purpose and entity.

        Raises:
            ValueError: If entity_id is empty or contains the separator
        """
        if not entity_id or SEPARATOR in entity_id:
            raise ValueError(f"Invalid entity id: {entity_id!r}")
        return f"{self.prefix}:{key_type.value}:{entity_id}"

    def topic(self, message_type: MessageType) -> str:
        """Build the pub/sub channel name for a message type."""
        return f"{self.prefix}:{message_type.value}"

    def message_type_for(self, topic: str) -> Optional[MessageType]:
        """
        Map a received channel name back to its message type.

        Returns:
            The MessageType, or None if the channel is outside this namespace
            or names an unknown type
        """
        head, sep, tail = topic.rpartition(":")
        if not sep or head != self.prefix:
            return None
        try:
            return MessageType(tail)
        except ValueError:
            return None


__all__ = ["KEY_NAMESPACE", "SEPARATOR", "KeyType", "MessageType", "Namespace"]
