"""
models.py — Check-in, contact and emergency records.

═══════════════════════════════════════════════════════════════════════════
CHECK-IN STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    ┌─────────┐  respond()       ┌───────────┐
    │ PENDING │ ───────────────▶ │ RESPONDED │  terminal
    └────┬────┘                  └───────────┘
         │ mark_overdue()
         ▼
    ┌─────────┐  expire()        ┌───────────┐
    │ OVERDUE │ ───────────────▶ │  EXPIRED  │  terminal
    └─────────┘                  └───────────┘
         ▲                             ▲
         └── PENDING ── expire() ──────┘

    • Nothing ever returns to PENDING.
    • OVERDUE accepts no response; it only waits to expire.
    • responded_at is set iff status == RESPONDED.

═══════════════════════════════════════════════════════════════════════════
RESPONSE KINDS
═══════════════════════════════════════════════════════════════════════════

    Kind       Interpretation
    ────────   ─────────────────────────────────────────────
    STANDARD   compared against negative_token ("needs help")
    PHOTO      media reference in response_data
    VOICE      media reference in response_data
    LOCATION   coordinates in response_data
    STATUS     free text valid until status_expires_at
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from backend.safecheck.alerts.models import RecipientDescriptor


class CheckInStatus(str, Enum):
    PENDING   = "pending"
    RESPONDED = "responded"
    EXPIRED   = "expired"
    OVERDUE   = "overdue"


class ResponseKind(str, Enum):
    STANDARD = "standard"
    PHOTO    = "photo"
    VOICE    = "voice"
    LOCATION = "location"
    STATUS   = "status"


def _generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class CheckIn:
    """One outstanding request for a response."""
    sender_id: str
    recipient_id: str  # contact relationship id
    question_text: str
    check_in_id: str = field(default_factory=lambda: _generate_id("CHK"))
    created_at: datetime = field(default_factory=_now)
    sender_name: str = ""
    recipient_name: str = ""
    status: CheckInStatus = CheckInStatus.PENDING

    response: Optional[str] = None
    response_kind: Optional[ResponseKind] = None
    response_data: Dict[str, Any] = field(default_factory=dict)
    responded_at: Optional[datetime] = None

    positive_token: str = "YES"
    negative_token: str = "NO"

    status_duration_hours: Optional[int] = None
    status_expires_at: Optional[datetime] = None

    overdue_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    @property
    def is_negative(self) -> bool:
        """True only for a STANDARD response equal to this check-in's negative token."""
        return (
            self.response_kind == ResponseKind.STANDARD
            and self.response is not None
            and self.response == self.negative_token
        )

    def status_active(self, now: Optional[datetime] = None) -> bool:
        """Whether a STATUS response is still in effect."""
        if self.response_kind != ResponseKind.STATUS or not self.status_expires_at:
            return False
        return (now or _now()) < self.status_expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check_in_id": self.check_in_id,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "sender_name": self.sender_name,
            "recipient_name": self.recipient_name,
            "question_text": self.question_text,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "response": self.response,
            "response_kind": self.response_kind.value if self.response_kind else None,
            "response_data": self.response_data,
            "responded_at": _iso(self.responded_at),
            "positive_token": self.positive_token,
            "negative_token": self.negative_token,
            "status_duration_hours": self.status_duration_hours,
            "status_expires_at": _iso(self.status_expires_at),
            "overdue_at": _iso(self.overdue_at),
            "expired_at": _iso(self.expired_at),
        }


@dataclass
class SenderPreferences:
    """Which sender-side notifications a user has opted into."""
    notify_on_negative: bool = True
    notify_on_no_response: bool = True
    notify_on_all_responses: bool = False


@dataclass
class Contact:
    """
    A sender-owned relationship to a recipient.

    Attributes
    ----------
    contact_id : str
    owner_id : str
        The sender who owns this relationship.
    recipient : RecipientDescriptor
        Addresses used to reach the contact.
    use_custom_responses : bool
        If True, positive/negative_response replace YES/NO on new check-ins.
    questions : list of str
        Pool that create() picks from when no question is given.
    schedule_type : str
        "daily" or "custom"; consumed by the external scheduler.
    """
    contact_id: str
    owner_id: str
    recipient: RecipientDescriptor
    name: str = ""
    use_custom_responses: bool = False
    positive_response: str = "YES"
    negative_response: str = "NO"
    questions: List[str] = field(default_factory=list)
    schedule_type: str = "daily"
    schedule_time: Optional[str] = None  # "HH:MM"

    @property
    def display_name(self) -> str:
        return self.name or self.recipient.name or self.contact_id


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    def maps_url(self) -> str:
        return f"https://maps.google.com/?q={self.latitude},{self.longitude}"


@dataclass(frozen=True)
class EmergencyEvent:
    """
    An emergency raised by a user.

    recipient_contact_ids is a snapshot taken at creation; later contact
    edits do not change who this event notifies.
    """
    originator_id: str
    recipient_contact_ids: Tuple[str, ...]
    emergency_id: str = field(default_factory=lambda: _generate_id("EMG"))
    location: Optional[GeoPoint] = None
    created_at: datetime = field(default_factory=_now)
    originator_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emergency_id": self.emergency_id,
            "originator_id": self.originator_id,
            "originator_name": self.originator_name,
            "location": (
                {
                    "latitude": self.location.latitude,
                    "longitude": self.location.longitude,
                    "accuracy": self.location.accuracy,
                }
                if self.location else None
            ),
            "created_at": self.created_at.isoformat(),
            "recipient_contact_ids": list(self.recipient_contact_ids),
        }


def status_expiry(responded_at: datetime, duration_hours: int) -> datetime:
    return responded_at + timedelta(hours=duration_hours)
