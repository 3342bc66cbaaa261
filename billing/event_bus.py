"""
Synchronous in-process event bus for billing events.

Handlers run in the publisher's thread, in subscription order. The ledger
write has already committed when publish() is called, so handler errors are
logged and swallowed.
"""

import logging
from typing import Callable, Dict, List

from billing.events import BillingEvent

logger = logging.getLogger(__name__)


class EventBus:
    """Subscribe by event class name, publish by event instance."""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable):
        """
        Register a handler.

        Args:
            event_type: Event class name (e.g. 'InvoicePaid')
            callback: Called with the event instance
        """
        self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event: BillingEvent):
        """Deliver an event to every subscriber of its type."""
        event_type = type(event).__name__

        for callback in list(self._subscribers.get(event_type, [])):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )

    def publish_all(self, events: List[BillingEvent]):
        for event in events:
            self.publish(event)
