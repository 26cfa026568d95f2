import threading
from typing import Type, Callable, List, Dict, Any, Optional
from ffwatch.domain.events import Event

class EventBus:
    """Synchronous event bus carrying telemetry from the supervisor to reporters.

    Callbacks run on the publishing thread. Most events come from the
    supervising loop; GPU diagnostics come from the stream watcher thread.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to an event type and its subclasses. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: Type[Event], callback: Callable[[Any], None]):
        with self._lock:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, event: Event):
        """Delivers an event to subscribers of its type or any base type."""
        with self._lock:
            targets = [
                callback
                for event_type, callbacks in self._subscribers.items()
                if isinstance(event, event_type)
                for callback in callbacks
            ]
        for callback in targets:
            callback(event)
