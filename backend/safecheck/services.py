"""
Service wiring — builds the alerting core from settings.

    ConnectivityMonitor ──┐
    PushChannel ──────────┼──▶ OfflineQueue ──┐
    QueueStore ───────────┘                    │
    SMSChannel ───────────────────────────────┼──▶ AlertDeliveryEngine
                                               │        │
    CheckInStore, ContactStore ────────────────┴──▶ CheckInLifecycle
                                                        │
                                     EmergencyFanout ◀──┘ (same engine)
                                           │
                                     EmergencyService

Every collaborator can be overridden, which is how the test suite swaps in
fakes. The API layer reaches the container through get_services().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import Engine

from backend.safecheck.alerts.channels.push import PushChannel, build_push_channel
from backend.safecheck.alerts.channels.sms import SMSChannel, build_sms_channel
from backend.safecheck.alerts.connectivity import ConnectivityMonitor
from backend.safecheck.alerts.delivery_engine import AlertDeliveryEngine
from backend.safecheck.alerts.fanout import EmergencyFanout, EmergencyService
from backend.safecheck.alerts.offline_queue import OfflineQueue
from backend.safecheck.checkins.lifecycle import CheckInLifecycle
from backend.safecheck.core.config import Settings, settings as default_settings
from backend.safecheck.core.database import close_db, create_session_factory, init_db
from backend.safecheck.core.events import EventBus
from backend.safecheck.storage.base import CheckInStore, ContactStore, QueueStore
from backend.safecheck.storage.memory import (
    InMemoryCheckInStore,
    InMemoryContactStore,
    InMemoryQueueStore,
)
from backend.safecheck.storage.sql import SqlCheckInStore, SqlQueueStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    events: EventBus
    connectivity: ConnectivityMonitor
    push: PushChannel
    sms: SMSChannel
    queue_store: QueueStore
    checkin_store: CheckInStore
    contacts: ContactStore
    queue: OfflineQueue
    engine: AlertDeliveryEngine
    lifecycle: CheckInLifecycle
    fanout: EmergencyFanout
    emergencies: EmergencyService
    db_engine: Optional[Engine] = None

    def shutdown(self) -> None:
        self.queue.shutdown(wait=True)
        self.fanout.shutdown(wait=True)
        for channel in (self.push, self.sms):
            close = getattr(channel, "close", None)
            if close is not None:
                close()
        if self.db_engine is not None:
            close_db(self.db_engine)
        logger.info("Services shut down")


def build_services(
    config: Optional[Settings] = None,
    *,
    persistent: bool = True,
    database_url: Optional[str] = None,
    push_channel: Optional[PushChannel] = None,
    sms_channel: Optional[SMSChannel] = None,
    contacts: Optional[ContactStore] = None,
    connectivity: Optional[ConnectivityMonitor] = None,
    events: Optional[EventBus] = None,
    sleep=None,
) -> Services:
    """
    Assemble the core.

    With persistent=True the check-in and queue stores live in the database
    at database_url (default config.DATABASE_URL), creating tables if
    missing. Otherwise in-memory stores are used.
    """
    config = config or default_settings
    events = events or EventBus()
    connectivity = connectivity or ConnectivityMonitor(events=events)
    push = push_channel or build_push_channel(config)
    sms = sms_channel or build_sms_channel(config)

    db_engine = None
    if persistent:
        db_engine, session_factory = create_session_factory(
            database_url or config.DATABASE_URL, echo=config.DATABASE_ECHO,
        )
        init_db(db_engine)
        queue_store: QueueStore = SqlQueueStore(session_factory)
        checkin_store: CheckInStore = SqlCheckInStore(session_factory)
    else:
        queue_store = InMemoryQueueStore()
        checkin_store = InMemoryCheckInStore()

    # Contacts are owned by the contact-management surface; the core only
    # reads them.
    contacts = contacts or InMemoryContactStore()

    queue = OfflineQueue(
        queue_store, push,
        connectivity=connectivity,
        events=events,
        max_retry_attempts=config.MAX_RETRY_ATTEMPTS,
        max_size=config.QUEUE_MAX_SIZE,
    )
    engine_kwargs = {"sleep": sleep} if sleep is not None else {}
    engine = AlertDeliveryEngine(push, sms, queue, connectivity, **engine_kwargs)
    lifecycle = CheckInLifecycle(
        checkin_store, contacts, engine,
        events=events,
        overdue_grace_hours=config.OVERDUE_GRACE_HOURS,
        expiry_hours=config.EXPIRY_HOURS,
    )
    fanout = EmergencyFanout(engine, max_workers=config.FANOUT_MAX_WORKERS)
    emergencies = EmergencyService(contacts, fanout, events=events)

    logger.info(
        "Services ready (push=%s, sms=%s, stores=%s)",
        type(push).__name__, type(sms).__name__,
        "sql" if persistent else "memory",
    )
    return Services(
        events=events,
        connectivity=connectivity,
        push=push,
        sms=sms,
        queue_store=queue_store,
        checkin_store=checkin_store,
        contacts=contacts,
        queue=queue,
        engine=engine,
        lifecycle=lifecycle,
        fanout=fanout,
        emergencies=emergencies,
        db_engine=db_engine,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Shared instance (singleton pattern)
# ═══════════════════════════════════════════════════════════════════════════

_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    """Install a prebuilt container (or clear it with None)."""
    global _services
    _services = services


def shutdown_services() -> None:
    global _services
    if _services is not None:
        _services.shutdown()
        _services = None
