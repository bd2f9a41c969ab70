"""
handoff - cross-process entity state handoff over Redis

Stages an entity's snapshot in an expiring cache when it leaves a server
and claims it exactly once when the entity arrives elsewhere, while
pushing live updates over pub/sub to servers already hosting it.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .errors import HandoffError, StoreUnavailable, AdaptionFailure, ConfigurationError
from .keys import KeyType, MessageType, Namespace
from .config import HandoffConfig, load_config
from .codec import SnapshotCodec, JsonSnapshotCodec
from .connection import ConnectionManager
from .cache import ExpiringCache
from .channel import NotificationChannel, NotificationEnvelope
from .event_bus import EventBus
from .coordinator import SyncCoordinator, SyncOutcome, SyncStatus, SyncPath, EntityHost

__all__ = [
    "HandoffError",
    "StoreUnavailable",
    "AdaptionFailure",
    "ConfigurationError",
    "KeyType",
    "MessageType",
    "Namespace",
    "HandoffConfig",
    "load_config",
    "SnapshotCodec",
    "JsonSnapshotCodec",
    "ConnectionManager",
    "ExpiringCache",
    "NotificationChannel",
    "NotificationEnvelope",
    "EventBus",
    "SyncCoordinator",
    "SyncOutcome",
    "SyncStatus",
    "SyncPath",
    "EntityHost",
]
