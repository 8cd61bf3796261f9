"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Propagation policy:
    • InvalidStateError        — surfaced to the caller, never retried
    • ChannelUnavailableError  — absorbed by the delivery engine (next fallback)
    • DeliveryFailedError      — absorbed by the delivery engine (next fallback)
    • QueuePersistenceError    — terminal for that delivery (success=False)
    • RetryExhaustedError      — published as an event payload, not raised

Usage:
    from backend.safecheck.core.errors import InvalidStateError

    raise InvalidStateError("CHK-1A2B", current="responded", attempted="respond")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.safecheck.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SafeCheckError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(SafeCheckError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(SafeCheckError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class InvalidStateError(SafeCheckError):
    """Illegal check-in transition (409)."""

    def __init__(self, check_in_id: str, *, current: str, attempted: str):
        super().__init__(
            message=(
                f"Check-in {check_in_id} cannot '{attempted}' "
                f"from status '{current}'"
            ),
            status_code=409,
            error_code="INVALID_STATE",
            details={
                "check_in_id": check_in_id,
                "current_status": current,
                "attempted": attempted,
            },
        )


class ChannelUnavailableError(SafeCheckError):
    """A channel cannot attempt delivery at all (no address, offline, no capability)."""

    def __init__(self, channel: str, reason: str = ""):
        super().__init__(
            message=f"Channel '{channel}' unavailable: {reason}",
            status_code=503,
            error_code="CHANNEL_UNAVAILABLE",
            details={"channel": channel, "reason": reason},
        )


class DeliveryFailedError(SafeCheckError):
    """A channel attempted delivery and failed."""

    def __init__(self, channel: str, recipient_id: str, message: str = ""):
        super().__init__(
            message=f"Delivery to {recipient_id} via {channel} failed: {message}",
            status_code=502,
            error_code="DELIVERY_FAILED",
            details={"channel": channel, "recipient_id": recipient_id},
        )


class QueuePersistenceError(SafeCheckError):
    """The offline queue could not durably store a message (503)."""

    def __init__(self, message: str = "", **details: Any):
        super().__init__(
            message=f"Offline queue persistence failed: {message}",
            status_code=503,
            error_code="QUEUE_PERSISTENCE_ERROR",
            details=details,
        )


class RetryExhaustedError(SafeCheckError):
    """A queued message was dropped after MAX_RETRY_ATTEMPTS failed drains."""

    def __init__(self, message_id: str, attempts: int, last_error: Optional[str] = None):
        super().__init__(
            message=f"Message {message_id} dropped after {attempts} attempts",
            status_code=500,
            error_code="RETRY_EXHAUSTED",
            details={
                "message_id": message_id,
                "attempts": attempts,
                "last_error": last_error,
            },
        )


class RecipientResolutionError(SafeCheckError):
    """Recipient data could not be fetched before any delivery started (502)."""

    def __init__(self, user_id: str, message: str = ""):
        super().__init__(
            message=f"Could not resolve recipients for {user_id}: {message}",
            status_code=502,
            error_code="RECIPIENT_RESOLUTION_ERROR",
            details={"user_id": user_id},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(SafeCheckError)
    async def handle_safecheck_error(request: Request, exc: SafeCheckError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
