"""
fanout.py — Concurrent emergency delivery to every contact.

    ┌────────────────────────┐
    │ raise_emergency(user)  │  snapshot contact ids → EmergencyEvent
    └───────────┬────────────┘
                │ resolve descriptors (only step allowed to fail the call)
                ▼
    ┌────────────────────────┐
    │ fanout(event, [r1..n]) │  one AlertDeliveryEngine.deliver per
    └───────────┬────────────┘  recipient on a shared thread pool
                ▼
    ┌────────────────────────┐
    │ [DeliveryOutcome × n]  │  same order as recipients; a raised error
    └────────────────────────┘  becomes that recipient's failed outcome

One recipient's failure never blocks or hides another's.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from backend.safecheck.alerts.delivery_engine import AlertDeliveryEngine
from backend.safecheck.alerts.models import (
    DeliveryChannel,
    DeliveryOutcome,
    RecipientDescriptor,
)
from backend.safecheck.checkins.models import EmergencyEvent, GeoPoint
from backend.safecheck.core.config import settings
from backend.safecheck.core.errors import RecipientResolutionError, ValidationError
from backend.safecheck.core.events import EmergencyRaised, EventBus
from backend.safecheck.storage.base import ContactStore

logger = logging.getLogger(__name__)

EMERGENCY_TITLE = "EMERGENCY ALERT"


def build_emergency_message(event: EmergencyEvent) -> str:
    name = event.originator_name or "Your contact"
    message = f"{name} needs help!"
    if event.location is not None:
        message += f" Location: {event.location.maps_url()}"
    return message


@dataclass
class EmergencyReport:
    """Per-recipient outcomes for one emergency."""
    event: EmergencyEvent
    outcomes: List[DeliveryOutcome] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    @property
    def reached(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def reach_rate(self) -> float:
        if not self.outcomes:
            return 0.0
        return self.reached / len(self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.event.to_dict(),
            "total_recipients": len(self.outcomes),
            "recipients_reached": self.reached,
            "recipients_failed": self.failed,
            "reach_rate": f"{self.reach_rate:.1%}",
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class EmergencyFanout:
    """Deliver one emergency to many recipients concurrently."""

    def __init__(
        self,
        engine: AlertDeliveryEngine,
        *,
        max_workers: Optional[int] = None,
    ):
        self._engine = engine
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.FANOUT_MAX_WORKERS,
            thread_name_prefix="fanout",
        )
        self._lock = threading.Lock()

    def fanout(
        self,
        event: EmergencyEvent,
        recipients: List[RecipientDescriptor],
    ) -> List[DeliveryOutcome]:
        """
        Deliver the emergency to every recipient.

        Returns one outcome per recipient, in input order. Never raises for
        per-recipient failures.
        """
        if not recipients:
            logger.warning("Emergency %s has no recipients", event.emergency_id)
            return []

        body = build_emergency_message(event)
        payload = {"type": "emergency", "emergencyId": event.emergency_id}

        logger.info(
            "Fanning out emergency %s to %d recipient(s)",
            event.emergency_id, len(recipients),
            extra={"emergency_id": event.emergency_id,
                   "recipient_count": len(recipients)},
        )

        with self._lock:
            futures = [
                self._executor.submit(
                    self._engine.deliver, recipient, EMERGENCY_TITLE, body, dict(payload),
                )
                for recipient in recipients
            ]

        outcomes: List[DeliveryOutcome] = []
        for recipient, future in zip(recipients, futures):
            try:
                outcome = future.result()
            except Exception as exc:
                logger.exception(
                    "Emergency %s delivery to %s raised",
                    event.emergency_id, recipient.recipient_id,
                )
                outcome = DeliveryOutcome(
                    DeliveryChannel.QUEUED, False,
                    recipient_id=recipient.recipient_id,
                    error=f"{type(exc).__name__}: {exc}",
                )
            outcomes.append(outcome)

        reached = sum(1 for o in outcomes if o.success)
        logger.info(
            "Emergency %s fan-out complete: %d/%d succeeded",
            event.emergency_id, reached, len(outcomes),
        )
        return outcomes

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._executor.shutdown(wait=wait)


class EmergencyService:
    """Create emergency events from a user action and fan them out."""

    def __init__(
        self,
        contacts: ContactStore,
        fanout: EmergencyFanout,
        *,
        events: Optional[EventBus] = None,
    ):
        self._contacts = contacts
        self._fanout = fanout
        self._events = events

    def raise_emergency(
        self,
        originator_id: str,
        location: Optional[GeoPoint] = None,
    ) -> EmergencyReport:
        """
        Snapshot the originator's contacts and notify all of them.

        Raises
        ------
        RecipientResolutionError
            Contact data could not be read at all.
        ValidationError
            The originator has no contacts.
        """
        try:
            contacts = self._contacts.contacts_for(originator_id)
            originator = self._contacts.user(originator_id)
        except Exception as exc:
            raise RecipientResolutionError(originator_id, str(exc)) from exc

        if not contacts:
            raise ValidationError(
                "No emergency contacts found. Add contacts first.",
                field="originator_id",
            )

        originator_name = ""
        if originator is not None:
            originator_name = originator.name or originator.phone or ""

        event = EmergencyEvent(
            originator_id=originator_id,
            originator_name=originator_name,
            location=location,
            recipient_contact_ids=tuple(c.contact_id for c in contacts),
        )
        return self.notify(event)

    def notify(self, event: EmergencyEvent) -> EmergencyReport:
        """Resolve the event's contact snapshot and fan out."""
        recipients = self.resolve(event)
        outcomes = self._fanout.fanout(event, recipients)

        report = EmergencyReport(
            event=event,
            outcomes=outcomes,
            completed_at=datetime.now(timezone.utc),
        )
        if self._events is not None:
            self._events.publish(EmergencyRaised(
                emergency_id=event.emergency_id,
                originator_id=event.originator_id,
                recipient_count=len(outcomes),
            ))
        return report

    def resolve(self, event: EmergencyEvent) -> List[RecipientDescriptor]:
        """Descriptors for the snapshot; contacts deleted since are skipped."""
        recipients: List[RecipientDescriptor] = []
        try:
            for contact_id in event.recipient_contact_ids:
                contact = self._contacts.get_contact(contact_id)
                if contact is None:
                    logger.warning(
                        "Emergency %s: contact %s no longer exists",
                        event.emergency_id, contact_id,
                    )
                    continue
                recipients.append(contact.recipient)
        except Exception as exc:
            raise RecipientResolutionError(event.originator_id, str(exc)) from exc
        return recipients
