"""
events.py — In-process event subscription for delivery side effects.

Notification side effects (check-in transitions, dropped queue messages,
connectivity changes) are published here instead of being fired from
ad hoc callbacks.

Delivery semantics:
    • Handlers are invoked synchronously. They are grouped by the type they
      subscribed to, types in first-subscription order, and run in
      subscription order within each type.
    • A handler that raises is logged and retried once; the remaining
      handlers still run. Consumers must therefore tolerate duplicates
      (at-least-once).
    • Subscribing to a base class receives every subclass event.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)

Handler = Callable[["Event"], None]

HANDLER_ATTEMPTS = 2


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Event Types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Event:
    """Base class for everything published on the bus."""
    occurred_at: datetime = field(default_factory=_now, kw_only=True)


@dataclass
class ConnectivityChanged(Event):
    online: bool


@dataclass
class CheckInCreated(Event):
    check_in_id: str
    sender_id: str
    recipient_id: str


@dataclass
class CheckInResponded(Event):
    check_in_id: str
    response: Optional[str]
    response_kind: str
    is_negative: bool


@dataclass
class CheckInOverdue(Event):
    check_in_id: str


@dataclass
class CheckInExpired(Event):
    check_in_id: str


@dataclass
class EmergencyRaised(Event):
    emergency_id: str
    originator_id: str
    recipient_count: int


@dataclass
class MessageDropped(Event):
    """A queued message hit MAX_RETRY_ATTEMPTS and will never be retried."""
    message_id: str
    recipient_id: str
    error: Any  # RetryExhaustedError


# ═══════════════════════════════════════════════════════════════════════════
# Bus
# ═══════════════════════════════════════════════════════════════════════════

class EventBus:
    """Thread-safe publish/subscribe registry."""

    def __init__(self) -> None:
        self._handlers: Dict[Type[Event], List[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[Event], handler: Handler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def _handlers_for(self, event: Event) -> List[Handler]:
        with self._lock:
            matched: List[Handler] = []
            for event_type, handlers in self._handlers.items():
                if isinstance(event, event_type):
                    matched.extend(handlers)
            return matched

    def publish(self, event: Event) -> int:
        """
        Deliver an event to every matching handler.

        Returns the number of handlers that completed successfully.
        """
        delivered = 0
        for handler in self._handlers_for(event):
            for attempt in range(1, HANDLER_ATTEMPTS + 1):
                try:
                    handler(event)
                    delivered += 1
                    break
                except Exception:
                    logger.exception(
                        "Handler %s failed for %s (attempt %d/%d)",
                        getattr(handler, "__name__", repr(handler)),
                        type(event).__name__, attempt, HANDLER_ATTEMPTS,
                    )
        return delivered
