"""
Database layer — SQLAlchemy 2.0 engine, session factory and ORM base.

Provides:
    • Engine and session factory construction from a URL
    • Base model for ORM entities
    • Table creation helper

The delivery engine and lifecycle are synchronous (channel calls block a
worker thread), so the stores use the synchronous SQLAlchemy API.

Usage:
    from backend.safecheck.core.database import create_session_factory, init_db

    engine, session_factory = create_session_factory("sqlite:///safecheck.db")
    init_db(engine)
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.safecheck.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


# ── Engine / Session Factory ──
def create_session_factory(
    url: Optional[str] = None,
    *,
    echo: Optional[bool] = None,
) -> Tuple[Engine, sessionmaker[Session]]:
    """Build an engine and a session factory bound to it."""
    url = url or settings.DATABASE_URL
    kwargs = {
        "echo": settings.DATABASE_ECHO if echo is None else echo,
        "future": True,
    }

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection so every session sees the same database
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite") and ":memory:" not in url and url != "sqlite://":
        event.listen(engine, "connect", _enable_sqlite_wal)

    factory = sessionmaker(bind=engine, expire_on_commit=False)
    return engine, factory


# ── Lifecycle ──
def init_db(engine: Engine) -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    # model modules register themselves on Base.metadata when imported
    from backend.safecheck.storage import sql  # noqa: F401

    Base.metadata.create_all(engine)
    logger.info("Database tables initialised")


def close_db(engine: Engine) -> None:
    """Dispose engine connections."""
    engine.dispose()
    logger.info("Database connections closed")
