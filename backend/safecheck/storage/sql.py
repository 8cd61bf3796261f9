"""
SQL store implementations (SQLAlchemy 2.0).

Tables:
    queued_messages — offline queue, one row per undelivered message
    checkins        — check-in records, never deleted by the core

Transaction boundaries:
    • append / remove / record_failure each run in one transaction, so the
      attempt_count increment and the drop after MAX_RETRY_ATTEMPTS are
      applied together or not at all.
    • Check-in transitions are a conditional UPDATE ... WHERE status IN
      (...), i.e. a compare-and-swap on status.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import JSON, DateTime, Integer, String, Text, delete, func, select, update
from sqlalchemy.orm import Mapped, Session, mapped_column, sessionmaker

from backend.safecheck.alerts.models import QueuedMessage, RecipientDescriptor
from backend.safecheck.checkins.models import CheckIn, CheckInStatus, ResponseKind
from backend.safecheck.core.database import Base
from backend.safecheck.storage.base import CheckInStore, QueueStore

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite returns naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ═══════════════════════════════════════════════════════════════════════════
# ORM Models
# ═══════════════════════════════════════════════════════════════════════════

class QueuedMessageRow(Base):
    __tablename__ = "queued_messages"

    message_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    recipient_id: Mapped[str] = mapped_column(String(128), index=True)
    recipient_name: Mapped[str] = mapped_column(String(255), default="")
    push_address: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    title: Mapped[str] = mapped_column(String(255))
    body: Mapped[str] = mapped_column(Text)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    def to_message(self) -> QueuedMessage:
        return QueuedMessage(
            message_id=self.message_id,
            recipient=RecipientDescriptor(
                recipient_id=self.recipient_id,
                name=self.recipient_name,
                push_address=self.push_address,
                phone=self.phone,
            ),
            title=self.title,
            body=self.body,
            payload=dict(self.payload or {}),
            enqueued_at=_aware(self.enqueued_at),
            attempt_count=self.attempt_count,
            last_error=self.last_error,
        )

    @classmethod
    def from_message(cls, message: QueuedMessage) -> "QueuedMessageRow":
        return cls(
            message_id=message.message_id,
            recipient_id=message.recipient.recipient_id,
            recipient_name=message.recipient.name,
            push_address=message.recipient.push_address,
            phone=message.recipient.phone,
            title=message.title,
            body=message.body,
            payload=message.payload,
            enqueued_at=message.enqueued_at,
            attempt_count=message.attempt_count,
            last_error=message.last_error,
        )


class CheckInRow(Base):
    __tablename__ = "checkins"

    check_in_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    sender_id: Mapped[str] = mapped_column(String(128), index=True)
    recipient_id: Mapped[str] = mapped_column(String(128), index=True)
    sender_name: Mapped[str] = mapped_column(String(255), default="")
    recipient_name: Mapped[str] = mapped_column(String(255), default="")
    question_text: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[str] = mapped_column(String(16), index=True)
    response: Mapped[Optional[str]] = mapped_column(Text)
    response_kind: Mapped[Optional[str]] = mapped_column(String(16))
    response_data: Mapped[dict] = mapped_column(JSON, default=dict)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    positive_token: Mapped[str] = mapped_column(String(64), default="YES")
    negative_token: Mapped[str] = mapped_column(String(64), default="NO")
    status_duration_hours: Mapped[Optional[int]] = mapped_column(Integer)
    status_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    overdue_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    def to_check_in(self) -> CheckIn:
        return CheckIn(
            check_in_id=self.check_in_id,
            sender_id=self.sender_id,
            recipient_id=self.recipient_id,
            sender_name=self.sender_name,
            recipient_name=self.recipient_name,
            question_text=self.question_text,
            created_at=_aware(self.created_at),
            status=CheckInStatus(self.status),
            response=self.response,
            response_kind=ResponseKind(self.response_kind) if self.response_kind else None,
            response_data=dict(self.response_data or {}),
            responded_at=_aware(self.responded_at),
            positive_token=self.positive_token,
            negative_token=self.negative_token,
            status_duration_hours=self.status_duration_hours,
            status_expires_at=_aware(self.status_expires_at),
            overdue_at=_aware(self.overdue_at),
            expired_at=_aware(self.expired_at),
        )


def _column_values(changes: Dict[str, Any]) -> Dict[str, Any]:
    values = {}
    for key, value in changes.items():
        if isinstance(value, (CheckInStatus, ResponseKind)):
            value = value.value
        values[key] = value
    return values


# ═══════════════════════════════════════════════════════════════════════════
# Stores
# ═══════════════════════════════════════════════════════════════════════════

class SqlQueueStore(QueueStore):

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._lock = threading.Lock()

    def append(self, message: QueuedMessage) -> None:
        with self._lock, self._session_factory.begin() as session:
            session.add(QueuedMessageRow.from_message(message))

    def append_if_below(self, message: QueuedMessage, max_size: int) -> bool:
        with self._lock, self._session_factory.begin() as session:
            stored = session.scalar(select(func.count()).select_from(QueuedMessageRow)) or 0
            if stored >= max_size:
                return False
            session.add(QueuedMessageRow.from_message(message))
            return True

    def list(self) -> List[QueuedMessage]:
        with self._lock, self._session_factory() as session:
            rows = session.scalars(
                select(QueuedMessageRow).order_by(QueuedMessageRow.enqueued_at)
            ).all()
            return [row.to_message() for row in rows]

    def get(self, message_id: str) -> Optional[QueuedMessage]:
        with self._lock, self._session_factory() as session:
            row = session.get(QueuedMessageRow, message_id)
            return row.to_message() if row else None

    def remove(self, message_id: str) -> bool:
        with self._lock, self._session_factory.begin() as session:
            result = session.execute(
                delete(QueuedMessageRow).where(QueuedMessageRow.message_id == message_id)
            )
            return result.rowcount > 0

    def record_failure(
        self,
        message_id: str,
        error: Optional[str],
        max_attempts: int,
    ) -> Tuple[Optional[QueuedMessage], bool]:
        with self._lock, self._session_factory.begin() as session:
            row = session.get(QueuedMessageRow, message_id)
            if row is None:
                return None, False
            row.attempt_count += 1
            row.last_error = error
            message = row.to_message()
            dropped = row.attempt_count >= max_attempts
            if dropped:
                session.delete(row)
            return message, dropped

    def count(self) -> int:
        with self._lock, self._session_factory() as session:
            return session.scalar(select(func.count()).select_from(QueuedMessageRow)) or 0


class SqlCheckInStore(CheckInStore):

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._lock = threading.Lock()

    def add(self, check_in: CheckIn) -> None:
        data = _column_values({
            k: v for k, v in vars(check_in).items()
        })
        with self._lock, self._session_factory.begin() as session:
            session.add(CheckInRow(**data))

    def get(self, check_in_id: str) -> Optional[CheckIn]:
        with self._lock, self._session_factory() as session:
            row = session.get(CheckInRow, check_in_id)
            return row.to_check_in() if row else None

    def transition(
        self,
        check_in_id: str,
        expected: Iterable[CheckInStatus],
        changes: Dict[str, Any],
    ) -> Optional[CheckIn]:
        expected_values = [s.value for s in expected]
        with self._lock, self._session_factory.begin() as session:
            result = session.execute(
                update(CheckInRow)
                .where(
                    CheckInRow.check_in_id == check_in_id,
                    CheckInRow.status.in_(expected_values),
                )
                .values(**_column_values(changes))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            row = session.get(CheckInRow, check_in_id, populate_existing=True)
            return row.to_check_in()

    def list_by_status(self, statuses: Iterable[CheckInStatus]) -> List[CheckIn]:
        values = [s.value for s in statuses]
        with self._lock, self._session_factory() as session:
            rows = session.scalars(
                select(CheckInRow)
                .where(CheckInRow.status.in_(values))
                .order_by(CheckInRow.created_at)
            ).all()
            return [row.to_check_in() for row in rows]

    def list_by_sender(self, sender_id: str) -> List[CheckIn]:
        with self._lock, self._session_factory() as session:
            rows = session.scalars(
                select(CheckInRow)
                .where(CheckInRow.sender_id == sender_id)
                .order_by(CheckInRow.created_at.desc())
            ).all()
            return [row.to_check_in() for row in rows]
