"""
MODULE OVERVIEW:
The internal event bus between mutation handlers and the subscription registry.

WHAT IS HAPPENING HERE:
Route handlers call `bus.publish(event)` after the store has committed a change.
The bus hands the event to every listener (the SubscriptionRegistry is the main one).
In a multi-worker deployment this would be Redis Pub/Sub or similar; one uvicorn
worker with a single event loop lets us keep it in memory.

`publish` is synchronous and never raises: a failing listener is logged and skipped,
so the mutation that triggered the publish has already succeeded from the caller's
point of view no matter what happens to delivery.
"""

from typing import Any, Callable, List
from loguru import logger

from disaster_sync.shared.events import Event

Listener = Callable[[Event], Any]


class EventBus:
    """
    A minimal pub/sub bus to decouple publishers (route handlers, feed refresher)
    from subscribers (the registry, tests, future audit sinks).
    """
    def __init__(self):
        self._listeners: List[Listener] = []
        self.published = 0

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: Event) -> None:
        self.published += 1
        logger.debug(f"event={event.kind.value} scope={event.scope} id={event.event_id} reason=published")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in listener during publish of {event.kind.value}: {e}")
