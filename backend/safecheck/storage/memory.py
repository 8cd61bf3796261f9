"""
In-memory store implementations.

Used by the test suite and by single-process deployments that do not need
restart durability. Every operation holds the store lock, so each call is
atomic; records are copied on the way in and out so callers never mutate
stored state directly.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backend.safecheck.alerts.models import QueuedMessage, RecipientDescriptor
from backend.safecheck.checkins.models import (
    CheckIn,
    CheckInStatus,
    Contact,
    SenderPreferences,
)
from backend.safecheck.storage.base import CheckInStore, ContactStore, QueueStore


class InMemoryQueueStore(QueueStore):

    def __init__(self) -> None:
        self._messages: Dict[str, QueuedMessage] = {}
        self._lock = threading.Lock()

    def append(self, message: QueuedMessage) -> None:
        with self._lock:
            self._messages[message.message_id] = copy.deepcopy(message)

    def append_if_below(self, message: QueuedMessage, max_size: int) -> bool:
        with self._lock:
            if len(self._messages) >= max_size:
                return False
            self._messages[message.message_id] = copy.deepcopy(message)
            return True

    def list(self) -> List[QueuedMessage]:
        with self._lock:
            messages = [copy.deepcopy(m) for m in self._messages.values()]
        return sorted(messages, key=lambda m: m.enqueued_at)

    def get(self, message_id: str) -> Optional[QueuedMessage]:
        with self._lock:
            message = self._messages.get(message_id)
            return copy.deepcopy(message) if message else None

    def remove(self, message_id: str) -> bool:
        with self._lock:
            return self._messages.pop(message_id, None) is not None

    def record_failure(
        self,
        message_id: str,
        error: Optional[str],
        max_attempts: int,
    ) -> Tuple[Optional[QueuedMessage], bool]:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None, False
            message.attempt_count += 1
            message.last_error = error
            dropped = message.attempt_count >= max_attempts
            if dropped:
                del self._messages[message_id]
            return copy.deepcopy(message), dropped

    def count(self) -> int:
        with self._lock:
            return len(self._messages)


class InMemoryCheckInStore(CheckInStore):

    def __init__(self) -> None:
        self._records: Dict[str, CheckIn] = {}
        self._lock = threading.Lock()

    def add(self, check_in: CheckIn) -> None:
        with self._lock:
            if check_in.check_in_id in self._records:
                raise KeyError(f"Duplicate check-in id {check_in.check_in_id}")
            self._records[check_in.check_in_id] = copy.deepcopy(check_in)

    def get(self, check_in_id: str) -> Optional[CheckIn]:
        with self._lock:
            record = self._records.get(check_in_id)
            return copy.deepcopy(record) if record else None

    def transition(
        self,
        check_in_id: str,
        expected: Iterable[CheckInStatus],
        changes: Dict[str, Any],
    ) -> Optional[CheckIn]:
        expected = tuple(expected)
        with self._lock:
            record = self._records.get(check_in_id)
            if record is None or record.status not in expected:
                return None
            updated = replace(record, **copy.deepcopy(changes))
            self._records[check_in_id] = updated
            return copy.deepcopy(updated)

    def list_by_status(self, statuses: Iterable[CheckInStatus]) -> List[CheckIn]:
        statuses = tuple(statuses)
        with self._lock:
            return [
                copy.deepcopy(r) for r in self._records.values()
                if r.status in statuses
            ]

    def list_by_sender(self, sender_id: str) -> List[CheckIn]:
        with self._lock:
            records = [
                copy.deepcopy(r) for r in self._records.values()
                if r.sender_id == sender_id
            ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)


class InMemoryContactStore(ContactStore):
    """
    Users and contacts held in dictionaries.

    The mutators (add_user, add_contact, remove_contact, set_preferences)
    belong to the contact-management surface, not to the alerting core.
    """

    def __init__(self) -> None:
        self._users: Dict[str, RecipientDescriptor] = {}
        self._contacts: Dict[str, Contact] = {}
        self._preferences: Dict[str, SenderPreferences] = {}
        self._lock = threading.Lock()

    # ── contact-management surface ──

    def add_user(self, user: RecipientDescriptor) -> None:
        with self._lock:
            self._users[user.recipient_id] = copy.deepcopy(user)

    def add_contact(self, contact: Contact) -> None:
        with self._lock:
            self._contacts[contact.contact_id] = copy.deepcopy(contact)

    def remove_contact(self, contact_id: str) -> None:
        with self._lock:
            self._contacts.pop(contact_id, None)

    def set_preferences(self, user_id: str, preferences: SenderPreferences) -> None:
        with self._lock:
            self._preferences[user_id] = copy.deepcopy(preferences)

    # ── ContactStore ──

    def contacts_for(self, user_id: str) -> List[Contact]:
        with self._lock:
            return [
                copy.deepcopy(c) for c in self._contacts.values()
                if c.owner_id == user_id
            ]

    def recipients_for(self, user_id: str) -> List[RecipientDescriptor]:
        return [c.recipient for c in self.contacts_for(user_id)]

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        with self._lock:
            contact = self._contacts.get(contact_id)
            return copy.deepcopy(contact) if contact else None

    def user(self, user_id: str) -> Optional[RecipientDescriptor]:
        with self._lock:
            user = self._users.get(user_id)
            return copy.deepcopy(user) if user else None

    def preferences_for(self, user_id: str) -> SenderPreferences:
        with self._lock:
            return copy.deepcopy(self._preferences.get(user_id, SenderPreferences()))
