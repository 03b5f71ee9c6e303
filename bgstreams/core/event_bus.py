"""
Event Bus - Central event dispatching system
Lets the runtime observe stream resolution without coupling to the aggregator
"""
from typing import Callable, Dict, List
import logging
import threading

logger = logging.getLogger(__name__)


class EventBus:
    """Thread-safe event bus for component communication"""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}
        self._lock = threading.RLock()

    def subscribe(self, event_type: str, callback: Callable):
        """Subscribe to an event type"""
        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if callback not in handlers:
                handlers.append(callback)

    def unsubscribe(self, event_type: str, callback: Callable):
        """Unsubscribe from an event type"""
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if callback in handlers:
                handlers.remove(callback)

    def emit(self, event_type: str, data=None):
        """Emit an event to all subscribers; handler errors are logged, never raised"""
        with self._lock:
            handlers = list(self._subscribers.get(event_type, []))
        for callback in handlers:
            try:
                callback(data)
            except Exception as e:
                logger.error("Error in event handler for %s: %s", event_type, e)

    def clear(self):
        """Clear all subscriptions"""
        with self._lock:
            self._subscribers.clear()


# Event types
class Events:
    STREAMS_STARTED = "streams_started"
    SOURCE_COMPLETED = "source_completed"
    STREAMS_COMPLETED = "streams_completed"

    SETTINGS_CHANGED = "settings_changed"
