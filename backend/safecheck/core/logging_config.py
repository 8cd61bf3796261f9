"""
Structured logging configuration.

Two outputs, chosen by ENVIRONMENT:
    • production: one JSON object per line
    • otherwise:  coloured console lines

Delivery code attaches trace fields with `extra=` (see DELIVERY_FIELDS), so a
single check-in or emergency can be followed from creation through push, SMS
fallback and the offline queue. The request middleware binds the request ID
and endpoint for the duration of one HTTP request.

Usage:
    from backend.safecheck.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Queued message", extra={"recipient_id": "C-42", "channel": "queued"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from backend.safecheck.core.config import settings


@dataclass(frozen=True)
class RequestContext:
    request_id: str
    endpoint: str


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)

# Trace fields read from `extra=`, in display order
DELIVERY_FIELDS = (
    "check_in_id",
    "emergency_id",
    "message_id",
    "recipient_id",
    "recipient_count",
    "channel",
    "attempt_count",
)

# Request fields, JSON output only
REQUEST_FIELDS = ("duration_ms", "status_code", "endpoint")


def bind_request(request_id: str, endpoint: str) -> Token:
    """Bind the current request to log records. Pass the token to release_request()."""
    return _request_context.set(RequestContext(request_id, endpoint))


def release_request(token: Token) -> None:
    _request_context.reset(token)


def current_request() -> Optional[RequestContext]:
    return _request_context.get()


def _delivery_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: getattr(record, key)
        for key in DELIVERY_FIELDS
        if getattr(record, key, None) is not None
    }


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request = current_request()
        if request is not None:
            log_entry["request"] = asdict(request)

        log_entry.update(_delivery_fields(record))
        for key in REQUEST_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured console lines; trace fields trail the message as key=value."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        parts: List[str] = [
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}",
        ]

        request = current_request()
        if request is not None:
            parts.append(f"[{request.request_id[:8]}]")

        parts.append(f"{record.name}: {record.getMessage()}")

        fields = _delivery_fields(record)
        if fields:
            parts.append(" ".join(f"{k}={v}" for k, v in fields.items()))

        line = " ".join(parts)
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


# ── Setup ──

def setup_logging() -> None:
    """Install one stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    # Channel clients and the SQL engine log every request at INFO
    for name in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
