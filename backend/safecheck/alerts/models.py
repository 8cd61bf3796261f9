"""
models.py — Shared data structures for alert delivery.

Defines:
    • DeliveryChannel     — which path carried (or holds) a message
    • RecipientDescriptor — who to reach, and by which addresses
    • QueuedMessage       — a message waiting in the offline queue
    • DeliveryOutcome     — result of one delivery-engine invocation

═══════════════════════════════════════════════════════════════════════════
CHANNEL SELECTION ORDER
═══════════════════════════════════════════════════════════════════════════

    1. Push   — online and the recipient has a push address
    2. SMS    — push failed or device offline; needs phone + SMS capability
    3. Queued — nothing else worked; the offline queue retries push later

Exactly one path is taken per message. Queued counts as success because
the delivery obligation has been durably handed off.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class DeliveryChannel(str, Enum):
    """Delivery path taken for one message."""
    PUSH   = "push"
    SMS    = "sms"
    QUEUED = "queued"


def _generate_message_id() -> str:
    return f"MSG-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecipientDescriptor:
    """
    A target for delivery.

    Attributes
    ----------
    recipient_id : str
        Contact or user identifier (used for logging and tagging outcomes).
    name : str
        Display name.
    push_address : str | None
        Push token (e.g. ExponentPushToken[...]).
    phone : str | None
        Phone number in E.164 format.
    """
    recipient_id: str
    name: str = ""
    push_address: Optional[str] = None
    phone: Optional[str] = None

    @property
    def has_push(self) -> bool:
        return bool(self.push_address)

    @property
    def has_phone(self) -> bool:
        return bool(self.phone)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "name": self.name,
            "push_address": self.push_address,
            "phone": self.phone,
        }


@dataclass
class QueuedMessage:
    """A message held by the offline queue until push delivery succeeds."""
    recipient: RecipientDescriptor
    title: str
    body: str
    payload: Dict[str, Any] = field(default_factory=dict)
    message_id: str = field(default_factory=_generate_message_id)
    enqueued_at: datetime = field(default_factory=_now)
    attempt_count: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "recipient": self.recipient.to_dict(),
            "title": self.title,
            "body": self.body,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at.isoformat(),
            "attempt_count": self.attempt_count,
            "last_error": self.last_error,
        }


@dataclass
class DeliveryOutcome:
    """Result of one AlertDeliveryEngine.deliver() call."""
    channel_used: DeliveryChannel
    success: bool
    recipient_id: str = ""
    error: Optional[str] = None
    message_id: Optional[str] = None  # set when queued
    completed_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "channel_used": self.channel_used.value,
            "success": self.success,
            "error": self.error,
            "message_id": self.message_id,
            "completed_at": self.completed_at.isoformat(),
        }
