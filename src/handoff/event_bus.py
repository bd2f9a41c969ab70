"""
EventBus for in-process delivery of sync outcome events.

The host subscribes here to render "data synced" / "sync failed"
notifications; this package never renders anything itself.

Usage:
    bus = EventBus()

    # Subscribe to specific event types
    bus.subscribe('sync.completed', lambda event: notify(event.entity_id, "Data synced"))
    bus.subscribe('sync.failed', alert_operator)

    # Subscribe to all events
    bus.subscribe('*', lambda event: log_event(event))
"""

from typing import Callable, Dict, List, Any
from threading import Lock
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Thread-safe in-process event bus for pub/sub.

    Supports:
    - subscribe(event_type, callback): Register callbacks for specific event types
    - publish(event): Emit events to all matching subscribers
    - Wildcard subscription: subscribe('*', callback) receives all events
    """

    def __init__(self):
        """Initialize empty event bus with thread safety."""
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: str, callback: Callable[[Any], None]) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type to listen for (e.g., 'sync.completed')
                       Use '*' to subscribe to all event types
            callback: Function called with event object when event occurs
        """
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to {event_type}: {getattr(callback, '__name__', 'lambda')}")

    def unsubscribe(self, event_type: str, callback: Callable[[Any], None]) -> bool:
        """
        Unsubscribe a callback from an event type.

        Returns:
            True if callback was found and removed, False otherwise
        """
        with self._lock:
            callbacks = self._subscribers.get(event_type)
            if not callbacks or callback not in callbacks:
                return False
            callbacks.remove(callback)
            if not callbacks:
                del self._subscribers[event_type]
        logger.debug(f"Unsubscribed from {event_type}")
        return True

    def publish(self, event: Any) -> None:
        """
        Publish an event to all matching subscribers.

        Subscriber errors are logged and never reach the publisher.

        Args:
            event: Event object (must have 'event_type' attribute)
        """
        if not hasattr(event, 'event_type'):
            logger.warning(f"Event missing 'event_type' attribute: {type(event).__name__}")
            return

        event_type = event.event_type

        # Copy so callbacks run without holding the lock
        with self._lock:
            callbacks = self._subscribers.get(event_type, []) + self._subscribers.get('*', [])

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in subscriber callback for {event_type}: {e}", exc_info=True)

        logger.debug(f"Published {event_type} to {len(callbacks)} subscribers")

    def clear(self) -> None:
        """Clear all subscriptions."""
        with self._lock:
            self._subscribers.clear()

    def subscriber_count(self, event_type: str = None) -> int:
        """
        Get count of subscribers.

        Args:
            event_type: Optional event type to count. If None, returns total.
        """
        with self._lock:
            if event_type:
                return len(self._subscribers.get(event_type, []))
            return sum(len(subs) for subs in self._subscribers.values())


__all__ = ['EventBus']
