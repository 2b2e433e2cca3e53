"""
Event Emitter for feedengine

Thread-safe synchronous event broadcasting with observer error isolation.
Observers run on the emitting thread, so they must be quick; the cache
invalidation observers only touch in-memory state.
"""

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Union

from feedengine.core.events.types import BaseEvent


logger = logging.getLogger(__name__)

Observer = Callable[[BaseEvent], None]


class EventEmitter:
    """
    Thread-safe event emitter.

    Features:
    - Subscriptions by event class or name, plus wildcard ('*') subscriptions
    - Observer error isolation: a failing observer is logged and skipped
    - Emission statistics
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._observers: Dict[str, List[Observer]] = defaultdict(list)
        self._wildcard_observers: List[Observer] = []
        self._stats = {
            'events_emitted': 0,
            'observers_notified': 0,
            'observer_errors': 0,
        }

    @staticmethod
    def _type_name(event_type: Union[str, type]) -> str:
        if isinstance(event_type, type):
            return event_type.__name__
        return str(event_type)

    def subscribe(self, event_type: Union[str, type], observer: Observer) -> None:
        """
        Subscribe an observer to events of a specific type.

        Args:
            event_type: Event class or class name; '*' for every event
            observer: Callable receiving the event
        """
        name = self._type_name(event_type)
        with self._lock:
            if name in ('*', 'all'):
                self._wildcard_observers.append(observer)
            else:
                self._observers[name].append(observer)
        logger.debug(f"Subscribed observer to {name} events")

    def unsubscribe(self, event_type: Union[str, type], observer: Observer) -> bool:
        """
        Remove an observer.

        Returns:
            True if the observer was registered
        """
        name = self._type_name(event_type)
        with self._lock:
            observers = self._wildcard_observers if name in ('*', 'all') else self._observers.get(name, [])
            if observer in observers:
                observers.remove(observer)
                return True
            return False

    def emit(self, event: BaseEvent) -> int:
        """
        Deliver an event to its observers.

        Args:
            event: Event to deliver

        Returns:
            Number of observers that handled the event without error
        """
        with self._lock:
            observers = list(self._observers.get(event.event_type, [])) + list(self._wildcard_observers)
            self._stats['events_emitted'] += 1

        delivered = 0
        for observer in observers:
            try:
                observer(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Observer failed handling {event.event_type}: {e}", exc_info=True)
                with self._lock:
                    self._stats['observer_errors'] += 1

        with self._lock:
            self._stats['observers_notified'] += delivered
        return delivered

    def get_observer_count(self, event_type: Union[str, type, None] = None) -> int:
        """Number of observers for one event type, or for all types."""
        with self._lock:
            if event_type is None:
                return sum(len(obs) for obs in self._observers.values()) + len(self._wildcard_observers)
            return len(self._observers.get(self._type_name(event_type), []))

    def get_stats(self) -> Dict[str, int]:
        """Get emission statistics."""
        with self._lock:
            return dict(self._stats)
