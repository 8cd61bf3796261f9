"""
Shared fixtures and test doubles for the alerting core.

Every collaborator the core consumes has a fake here:
    FakePushChannel    — scripted push results, records every send
    FakeSMSChannel     — availability + success flags, records every send
    FailingQueueStore  — in-memory queue store that can refuse writes
    EventRecorder      — captures everything published on an EventBus
"""

from __future__ import annotations

import threading
from typing import Callable, List, Optional, Type

import pytest

from backend.safecheck.alerts.channels.push import PushChannel
from backend.safecheck.alerts.channels.sms import SMSChannel
from backend.safecheck.alerts.connectivity import ConnectivityMonitor
from backend.safecheck.alerts.delivery_engine import AlertDeliveryEngine
from backend.safecheck.alerts.fanout import EmergencyFanout, EmergencyService
from backend.safecheck.alerts.offline_queue import OfflineQueue
from backend.safecheck.checkins.lifecycle import CheckInLifecycle
from backend.safecheck.core.events import Event, EventBus
from backend.safecheck.storage.memory import (
    InMemoryCheckInStore,
    InMemoryContactStore,
    InMemoryQueueStore,
)


# ═══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ═══════════════════════════════════════════════════════════════════════════

class FakePushChannel(PushChannel):
    """
    Push channel whose result is controlled by the test.

    `succeed` applies to every address unless overridden in `fail_for`.
    `on_send` runs before each send (e.g. to flip connectivity mid-drain).
    """

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.fail_for: set = set()
        self.raise_exc: Optional[Exception] = None
        self.on_send: Optional[Callable[[str], None]] = None
        self.sent: List[tuple] = []
        self._lock = threading.Lock()

    def send(self, push_address, title, body, payload=None):
        if self.on_send is not None:
            self.on_send(push_address)
        with self._lock:
            self.sent.append((push_address, title, body, dict(payload or {})))
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.succeed and push_address not in self.fail_for:
            return True, None
        return False, "push rejected"

    def addresses(self) -> List[str]:
        return [s[0] for s in self.sent]


class FakeSMSChannel(SMSChannel):

    def __init__(self, available: bool = True, succeed: bool = True):
        self.available = available
        self.succeed = succeed
        self.sent: List[tuple] = []
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return self.available

    def send(self, phone_number, text):
        with self._lock:
            self.sent.append((phone_number, text))
        if self.succeed:
            return True, None
        return False, "gateway error"


class FailingQueueStore(InMemoryQueueStore):
    """Queue store that raises on append while `fail_append` is set."""

    def __init__(self, fail_append: bool = True):
        super().__init__()
        self.fail_append = fail_append

    def append(self, message) -> None:
        if self.fail_append:
            raise OSError("disk full")
        super().append(message)

    def append_if_below(self, message, max_size: int) -> bool:
        if self.fail_append:
            raise OSError("disk full")
        return super().append_if_below(message, max_size)


class EventRecorder:

    def __init__(self, bus: EventBus):
        self.events: List[Event] = []
        self._lock = threading.Lock()
        bus.subscribe(Event, self._record)

    def _record(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: Type[Event]) -> List[Event]:
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events) -> EventRecorder:
    return EventRecorder(events)


@pytest.fixture
def connectivity(events) -> ConnectivityMonitor:
    return ConnectivityMonitor(events=events)


@pytest.fixture
def push() -> FakePushChannel:
    return FakePushChannel()


@pytest.fixture
def sms() -> FakeSMSChannel:
    return FakeSMSChannel()


@pytest.fixture
def queue_store() -> InMemoryQueueStore:
    return InMemoryQueueStore()


@pytest.fixture
def queue(queue_store, push, connectivity, events):
    q = OfflineQueue(
        queue_store, push,
        connectivity=connectivity, events=events,
        max_retry_attempts=3, max_size=50,
    )
    yield q
    q.shutdown(wait=True)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def engine(push, sms, queue, connectivity, sleeps) -> AlertDeliveryEngine:
    return AlertDeliveryEngine(push, sms, queue, connectivity, sleep=sleeps.append)


@pytest.fixture
def contacts() -> InMemoryContactStore:
    return InMemoryContactStore()


@pytest.fixture
def checkin_store() -> InMemoryCheckInStore:
    return InMemoryCheckInStore()


@pytest.fixture
def lifecycle(checkin_store, contacts, engine, events) -> CheckInLifecycle:
    return CheckInLifecycle(
        checkin_store, contacts, engine,
        events=events, overdue_grace_hours=4, expiry_hours=24,
    )


@pytest.fixture
def fanout(engine):
    f = EmergencyFanout(engine, max_workers=4)
    yield f
    f.shutdown(wait=True)


@pytest.fixture
def emergencies(contacts, fanout, events) -> EmergencyService:
    return EmergencyService(contacts, fanout, events=events)
