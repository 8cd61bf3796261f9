"""
lifecycle.py — Check-in state transitions and the notifications they trigger.

═══════════════════════════════════════════════════════════════════════════
TRANSITIONS & NOTIFICATIONS
═══════════════════════════════════════════════════════════════════════════

    Operation       From               To          Notifies
    ─────────────   ────────────────   ─────────   ─────────────────────────────
    create          —                  PENDING     recipient, always
    respond         PENDING            RESPONDED   sender, if negative and
                                                   notify_on_negative, or
                                                   notify_on_all_responses
    mark_overdue    PENDING            OVERDUE     sender, if notify_on_no_response
    expire          PENDING, OVERDUE   EXPIRED     nobody

respond() on anything but PENDING raises InvalidStateError. mark_overdue()
and expire() are no-ops when the check-in is not in a source state.

═══════════════════════════════════════════════════════════════════════════
CONCURRENCY
═══════════════════════════════════════════════════════════════════════════

Every transition is a single compare-and-swap on status in the store, so
the lifecycle keeps no per-check-in state of its own. Whichever of
respond / mark_overdue applies first wins; the other sees the new status.
Delivery runs after the swap, so a slow channel never blocks a transition
on the same check-in.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from backend.safecheck.alerts.delivery_engine import AlertDeliveryEngine
from backend.safecheck.alerts.models import (
    DeliveryChannel,
    DeliveryOutcome,
    RecipientDescriptor,
)
from backend.safecheck.checkins.models import (
    CheckIn,
    CheckInStatus,
    Contact,
    ResponseKind,
    status_expiry,
)
from backend.safecheck.core.config import settings
from backend.safecheck.core.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from backend.safecheck.core.events import (
    CheckInCreated,
    CheckInExpired,
    CheckInOverdue,
    CheckInResponded,
    Event,
    EventBus,
)
from backend.safecheck.storage.base import CheckInStore, ContactStore

logger = logging.getLogger(__name__)

UNKNOWN_USER_NAME = "Your contact"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _user_name(user: Optional[RecipientDescriptor]) -> str:
    if user is None:
        return UNKNOWN_USER_NAME
    return user.name or user.phone or UNKNOWN_USER_NAME


def check_in_payload(check_in_id: str) -> Dict[str, Any]:
    return {"type": "checkIn", "checkInId": check_in_id}


@dataclass
class TransitionResult:
    """A check-in after a transition, plus the notification it caused (if any)."""
    check_in: CheckIn
    delivery: Optional[DeliveryOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check_in": self.check_in.to_dict(),
            "delivery": self.delivery.to_dict() if self.delivery else None,
        }


@dataclass
class SweepReport:
    checked: int = 0
    overdue: int = 0
    expired: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"checked": self.checked, "overdue": self.overdue, "expired": self.expired}


class CheckInLifecycle:
    """
    Owns every CheckIn status change.

    Parameters
    ----------
    store : CheckInStore
    contacts : ContactStore
        Source of contact relationships, user names and sender preferences.
    engine : AlertDeliveryEngine
        Used for every notification this class sends.
    events : EventBus | None
    overdue_grace_hours, expiry_hours : float | None
        Horizons used by sweep(); default to settings.
    """

    def __init__(
        self,
        store: CheckInStore,
        contacts: ContactStore,
        engine: AlertDeliveryEngine,
        *,
        events: Optional[EventBus] = None,
        overdue_grace_hours: Optional[float] = None,
        expiry_hours: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ):
        self._store = store
        self._contacts = contacts
        self._engine = engine
        self._events = events
        self.overdue_grace = timedelta(
            hours=overdue_grace_hours if overdue_grace_hours is not None
            else settings.OVERDUE_GRACE_HOURS
        )
        self.expiry = timedelta(
            hours=expiry_hours if expiry_hours is not None else settings.EXPIRY_HOURS
        )
        self._rng = rng or random.Random()

    # ── Queries ──

    def get(self, check_in_id: str) -> CheckIn:
        check_in = self._store.get(check_in_id)
        if check_in is None:
            raise NotFoundError("CheckIn", check_in_id=check_in_id)
        return check_in

    def history(self, sender_id: str) -> List[CheckIn]:
        """All check-ins sent by a user, newest first."""
        return self._store.list_by_sender(sender_id)

    # ── Transitions ──

    def create(
        self,
        sender_id: str,
        recipient_id: str,
        question: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Open a PENDING check-in and notify the recipient.

        Raises
        ------
        NotFoundError
            recipient_id is not a known contact.
        ValidationError
            The contact belongs to someone other than sender_id.
        """
        contact = self._contacts.get_contact(recipient_id)
        if contact is None:
            raise NotFoundError("Contact", contact_id=recipient_id)
        if contact.owner_id != sender_id:
            raise ValidationError(
                "Contact does not belong to this sender",
                field="recipient_id", sender_id=sender_id,
            )

        positive, negative = self._tokens_for(contact)
        sender_name = _user_name(self._contacts.user(sender_id))

        check_in = CheckIn(
            sender_id=sender_id,
            recipient_id=recipient_id,
            question_text=(question or "").strip() or self._pick_question(contact),
            created_at=now or _now(),
            sender_name=sender_name,
            recipient_name=contact.display_name,
            positive_token=positive,
            negative_token=negative,
        )
        self._store.add(check_in)

        logger.info(
            "Check-in %s created by %s for contact %s",
            check_in.check_in_id, sender_id, recipient_id,
            extra={"check_in_id": check_in.check_in_id, "recipient_id": recipient_id},
        )
        self._publish(CheckInCreated(
            check_in_id=check_in.check_in_id,
            sender_id=sender_id,
            recipient_id=recipient_id,
        ))

        delivery = self._notify(
            check_in, contact.recipient,
            "New Check-In", f"{sender_name} is checking in on you",
        )
        return TransitionResult(check_in, delivery)

    def respond(
        self,
        check_in_id: str,
        response: Optional[str],
        response_kind: Union[ResponseKind, str] = ResponseKind.STANDARD,
        *,
        response_data: Optional[Dict[str, Any]] = None,
        status_duration_hours: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Record the recipient's one response.

        Raises
        ------
        NotFoundError
        ValidationError
            Unknown response kind, empty text response, or a status duration
            that is not one of STATUS_DURATIONS_HOURS.
        InvalidStateError
            The check-in is no longer PENDING. Checked before the response
            itself is validated.
        """
        current = self.get(check_in_id)
        if current.status != CheckInStatus.PENDING:
            raise InvalidStateError(
                check_in_id, current=current.status.value, attempted="respond",
            )

        kind = self._coerce_kind(response_kind)
        if kind in (ResponseKind.STANDARD, ResponseKind.STATUS) and not (response or "").strip():
            raise ValidationError("Response text is required", field="response")

        responded_at = now or _now()
        changes: Dict[str, Any] = {
            "status": CheckInStatus.RESPONDED,
            "response": response,
            "response_kind": kind,
            "response_data": dict(response_data or {}),
            "responded_at": responded_at,
        }
        if kind == ResponseKind.STATUS:
            if status_duration_hours not in settings.STATUS_DURATIONS_HOURS:
                raise ValidationError(
                    f"Status duration must be one of {settings.STATUS_DURATIONS_HOURS} hours",
                    field="status_duration_hours", value=status_duration_hours,
                )
            changes["status_duration_hours"] = status_duration_hours
            changes["status_expires_at"] = status_expiry(responded_at, status_duration_hours)

        updated = self._transition(check_in_id, (CheckInStatus.PENDING,), changes)
        if updated is None:
            current = self.get(check_in_id)
            raise InvalidStateError(
                check_in_id, current=current.status.value, attempted="respond",
            )

        is_negative = updated.is_negative
        logger.info(
            "Check-in %s responded (%s%s)",
            check_in_id, kind.value, ", needs help" if is_negative else "",
            extra={"check_in_id": check_in_id},
        )
        self._publish(CheckInResponded(
            check_in_id=check_in_id,
            response=response,
            response_kind=kind.value,
            is_negative=is_negative,
        ))

        prefs = self._contacts.preferences_for(updated.sender_id)
        if not ((is_negative and prefs.notify_on_negative) or prefs.notify_on_all_responses):
            return TransitionResult(updated)

        if is_negative:
            body = f"{updated.recipient_name} has indicated they need help"
        else:
            body = f"{updated.recipient_name} has responded to your check-in"
        delivery = self._notify_sender(updated, "Check-In Response", body)
        return TransitionResult(updated, delivery)

    def mark_overdue(
        self,
        check_in_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[TransitionResult]:
        """PENDING → OVERDUE. Returns None (and notifies nobody) otherwise."""
        updated = self._transition(
            check_in_id,
            (CheckInStatus.PENDING,),
            {"status": CheckInStatus.OVERDUE, "overdue_at": now or _now()},
        )
        if updated is None:
            logger.debug("mark_overdue(%s) ignored: not pending", check_in_id)
            return None

        logger.info("Check-in %s is overdue", check_in_id,
                    extra={"check_in_id": check_in_id})
        self._publish(CheckInOverdue(check_in_id=check_in_id))

        if not self._contacts.preferences_for(updated.sender_id).notify_on_no_response:
            return TransitionResult(updated)

        delivery = self._notify_sender(
            updated, "Check-In Overdue",
            f"{updated.recipient_name} hasn't responded to your check-in",
        )
        return TransitionResult(updated, delivery)

    def expire(
        self,
        check_in_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[TransitionResult]:
        """PENDING/OVERDUE → EXPIRED. No notification."""
        updated = self._transition(
            check_in_id,
            (CheckInStatus.PENDING, CheckInStatus.OVERDUE),
            {"status": CheckInStatus.EXPIRED, "expired_at": now or _now()},
        )
        if updated is None:
            return None

        logger.info("Check-in %s expired", check_in_id,
                    extra={"check_in_id": check_in_id})
        self._publish(CheckInExpired(check_in_id=check_in_id))
        return TransitionResult(updated)

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Apply the time-based transitions that are due at `now`.

        A PENDING check-in past both horizons is marked overdue before it
        expires, so the sender still gets the no-response notice.
        """
        now = now or _now()
        report = SweepReport()

        for check_in in self._store.list_by_status(
            (CheckInStatus.PENDING, CheckInStatus.OVERDUE)
        ):
            report.checked += 1
            age = now - check_in.created_at

            if check_in.status == CheckInStatus.PENDING and age >= self.overdue_grace:
                if self.mark_overdue(check_in.check_in_id, now=now) is not None:
                    report.overdue += 1
            if age >= self.expiry:
                if self.expire(check_in.check_in_id, now=now) is not None:
                    report.expired += 1

        if report.overdue or report.expired:
            logger.info(
                "Sweep: %d checked, %d overdue, %d expired",
                report.checked, report.overdue, report.expired,
            )
        return report

    # ── Internals ──

    def _transition(
        self,
        check_in_id: str,
        expected: Iterable[CheckInStatus],
        changes: Dict[str, Any],
    ) -> Optional[CheckIn]:
        updated = self._store.transition(check_in_id, expected, changes)
        if updated is None and self._store.get(check_in_id) is None:
            raise NotFoundError("CheckIn", check_in_id=check_in_id)
        return updated

    def _tokens_for(self, contact: Contact):
        if contact.use_custom_responses:
            return (
                contact.positive_response or settings.DEFAULT_POSITIVE_RESPONSE,
                contact.negative_response or settings.DEFAULT_NEGATIVE_RESPONSE,
            )
        return settings.DEFAULT_POSITIVE_RESPONSE, settings.DEFAULT_NEGATIVE_RESPONSE

    def _pick_question(self, contact: Contact) -> str:
        questions = [q for q in contact.questions if q and q.strip()]
        if not questions:
            return settings.DEFAULT_QUESTION
        return self._rng.choice(questions)

    @staticmethod
    def _coerce_kind(kind: Union[ResponseKind, str]) -> ResponseKind:
        try:
            return ResponseKind(kind)
        except ValueError:
            raise ValidationError(
                f"Unknown response kind '{kind}'", field="response_kind",
            ) from None

    def _notify_sender(self, check_in: CheckIn, title: str, body: str) -> Optional[DeliveryOutcome]:
        sender = self._contacts.user(check_in.sender_id)
        if sender is None:
            logger.warning(
                "Cannot notify sender %s of check-in %s: unknown user",
                check_in.sender_id, check_in.check_in_id,
            )
            return None
        return self._notify(check_in, sender, title, body)

    def _notify(
        self,
        check_in: CheckIn,
        recipient: RecipientDescriptor,
        title: str,
        body: str,
    ) -> DeliveryOutcome:
        try:
            return self._engine.deliver(
                recipient, title, body, check_in_payload(check_in.check_in_id),
            )
        except Exception as exc:
            # the transition is already committed; report the failed notice
            logger.exception(
                "Notification '%s' for check-in %s failed",
                title, check_in.check_in_id,
            )
            return DeliveryOutcome(
                DeliveryChannel.QUEUED, False,
                recipient_id=recipient.recipient_id,
                error=f"{type(exc).__name__}: {exc}",
            )

    def _publish(self, event: Event) -> None:
        if self._events is not None:
            self._events.publish(event)
