"""
Event type definitions for handoff outcome signals.

The coordinator emits these on the EventBus so the host's UI/event layer
can tell the player (or operator) how a sync went:
- HandoffStagedEvent: When a departing entity's snapshot is staged
- SyncCompletedEvent: When a snapshot was applied to a live entity
- SyncFailedEvent: When a snapshot could not be fetched, decoded or applied

Exactly one SyncCompletedEvent or SyncFailedEvent is emitted per
application attempt.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any


@dataclass
class HandoffStagedEvent:
    """Event emitted when a departing entity's snapshot is staged."""
    entity_id: str
    size_bytes: int
    pushed: bool = False
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "handoff.staged"
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "entity_id": self.entity_id,
            "size_bytes": self.size_bytes,
            "pushed": self.pushed,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "metadata": self.metadata or {}
        }


@dataclass
class SyncCompletedEvent:
    """Event emitted when a snapshot is applied to a live entity."""
    entity_id: str
    path: str  # arrival | push
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.completed"
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "entity_id": self.entity_id,
            "path": self.path,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "metadata": self.metadata or {}
        }


@dataclass
class SyncFailedEvent:
    """Event emitted when a snapshot could not be applied."""
    entity_id: str
    path: str  # arrival | push
    reason: str
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "sync.failed"
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "entity_id": self.entity_id,
            "path": self.path,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "metadata": self.metadata or {}
        }


__all__ = [
    "HandoffStagedEvent",
    "SyncCompletedEvent",
    "SyncFailedEvent",
]
