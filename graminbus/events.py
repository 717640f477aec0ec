"""UI-facing event hub - each event carries a full state snapshot"""

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

logger = logging.getLogger(__name__)


BUSES = "buses"
QUEUE = "queue"
CONNECTIVITY = "connectivity"
SYNC = "sync"

EVENT_TYPES = (BUSES, QUEUE, CONNECTIVITY, SYNC)

Handler = Callable[[Any], None]


class EventHub:
    """Synchronous publish/subscribe for state snapshots"""

    def __init__(self):
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unregisters it"""
        if event not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event}")
        self._handlers[event].append(handler)
        return lambda: self._handlers[event].remove(handler)

    def publish(self, event: str, snapshot: Any):
        for handler in list(self._handlers[event]):
            try:
                handler(snapshot)
            except Exception as e:
                logger.error(f"Event handler for {event} failed: {e}", exc_info=True)
