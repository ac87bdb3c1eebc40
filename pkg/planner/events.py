"""
Change notifications for views.

AppState command handlers publish an event after every successful mutation
(e.g. "tasks_changed", "settings_changed", "timer_stopped"). Views subscribe
to the events they render from and refresh themselves.
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

# Emitted for any collection change, in addition to "<collection>_changed"
DATA_CHANGED = "data_changed"


class PlannerEvents:
    """Minimal synchronous publish/subscribe bus."""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}  # event_type -> callbacks

    def subscribe(self, event_type: str, callback: Callable) -> Callable:
        """Register a callback. Returns a function that unsubscribes it."""
        self.subscribers.setdefault(event_type, []).append(callback)

        def unsubscribe():
            callbacks = self.subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, event_type: str, **kwargs) -> int:
        """
        Call every subscriber of `event_type`.

        A failing subscriber is logged and skipped; it never aborts the
        command that emitted the event. Returns how many callbacks ran cleanly.
        """
        delivered = 0
        for callback in list(self.subscribers.get(event_type, [])):
            try:
                callback(**kwargs)
                delivered += 1
            except Exception as e:
                logger.error(f"Error in {event_type} callback {callback!r}: {e}")
        return delivered

    def collection_changed(self, collection: str, action: str, record_id: str = "") -> None:
        self.emit(f"{collection}_changed", action=action, record_id=record_id)
        self.emit(DATA_CHANGED, collection=collection, action=action, record_id=record_id)
