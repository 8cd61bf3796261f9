"""
Store interfaces consumed by the alerting core.

Contract shared by every implementation:
    • Each method is atomic for the key(s) it touches.
    • Writes are durable when the method returns (for durable backends).
    • Failures raise; callers decide whether a failure is fatal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backend.safecheck.alerts.models import QueuedMessage, RecipientDescriptor
from backend.safecheck.checkins.models import (
    CheckIn,
    CheckInStatus,
    Contact,
    SenderPreferences,
)


class QueueStore(ABC):
    """Durable storage for offline-queued messages."""

    @abstractmethod
    def append(self, message: QueuedMessage) -> None: ...

    @abstractmethod
    def append_if_below(self, message: QueuedMessage, max_size: int) -> bool:
        """
        Append only while fewer than max_size messages are stored. The size
        check and the insert are one atomic step. Returns False when full.
        """

    @abstractmethod
    def list(self) -> List[QueuedMessage]:
        """All messages, oldest first."""

    @abstractmethod
    def get(self, message_id: str) -> Optional[QueuedMessage]: ...

    @abstractmethod
    def remove(self, message_id: str) -> bool:
        """Remove a message. Returns False if it was already gone."""

    @abstractmethod
    def record_failure(
        self,
        message_id: str,
        error: Optional[str],
        max_attempts: int,
    ) -> Tuple[Optional[QueuedMessage], bool]:
        """
        Increment attempt_count and, if it reaches max_attempts, remove the
        message — in one transaction.

        Returns (updated message, dropped). (None, False) if the message no
        longer exists.
        """

    @abstractmethod
    def count(self) -> int: ...


class CheckInStore(ABC):
    """Durable storage for check-in records."""

    @abstractmethod
    def add(self, check_in: CheckIn) -> None: ...

    @abstractmethod
    def get(self, check_in_id: str) -> Optional[CheckIn]: ...

    @abstractmethod
    def transition(
        self,
        check_in_id: str,
        expected: Iterable[CheckInStatus],
        changes: Dict[str, Any],
    ) -> Optional[CheckIn]:
        """
        Compare-and-swap: apply `changes` only if the current status is one
        of `expected`. Returns the updated record, or None if the status did
        not match (or the record does not exist).
        """

    @abstractmethod
    def list_by_status(self, statuses: Iterable[CheckInStatus]) -> List[CheckIn]: ...

    @abstractmethod
    def list_by_sender(self, sender_id: str) -> List[CheckIn]:
        """Newest first."""


class ContactStore(ABC):
    """Read-only view of users, their contacts and preferences."""

    @abstractmethod
    def recipients_for(self, user_id: str) -> List[RecipientDescriptor]:
        """
        Delivery descriptors of every contact owned by user_id.

        Emergencies do not use this: they snapshot contact ids at creation
        and resolve each id later with get_contact(), so a contact deleted
        in between is skipped rather than notified.
        """

    @abstractmethod
    def contacts_for(self, user_id: str) -> List[Contact]: ...

    @abstractmethod
    def get_contact(self, contact_id: str) -> Optional[Contact]: ...

    @abstractmethod
    def user(self, user_id: str) -> Optional[RecipientDescriptor]:
        """The user's own delivery descriptor (used to notify senders)."""

    @abstractmethod
    def preferences_for(self, user_id: str) -> SenderPreferences: ...
