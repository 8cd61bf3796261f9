"""
FastAPI route: check-in lifecycle.

Provides endpoints to:
    POST /api/v1/checkins                       — send a check-in to a contact
    GET  /api/v1/checkins/{id}                  — fetch one check-in
    POST /api/v1/checkins/{id}/respond          — record the recipient's response
    POST /api/v1/checkins/sweep                 — apply due overdue/expiry transitions
    GET  /api/v1/checkins/history/{sender_id}   — a sender's check-ins, newest first

Handlers are plain `def`: delivery blocks on channel I/O, so FastAPI runs
them in its worker threadpool.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from backend.safecheck.checkins.models import ResponseKind
from backend.safecheck.services import get_services

router = APIRouter(prefix="/api/v1/checkins", tags=["check-ins"])


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------

class CreateCheckInRequest(BaseModel):
    sender_id: str = Field(..., examples=["user-1"])
    recipient_id: str = Field(
        ..., examples=["contact-1"],
        description="Contact relationship id owned by the sender",
    )
    question: Optional[str] = Field(
        None, max_length=500,
        description="Omit to pick from the contact's configured questions",
    )


class RespondRequest(BaseModel):
    response: Optional[str] = Field(None, max_length=1000, examples=["YES"])
    response_kind: ResponseKind = Field(ResponseKind.STANDARD)
    response_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Media reference or coordinates for photo/voice/location responses",
    )
    status_duration_hours: Optional[int] = Field(
        None, examples=[3],
        description="Required for status responses",
    )


class SweepRequest(BaseModel):
    now: Optional[datetime] = Field(
        None, description="Evaluate horizons at this instant (default: now)",
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    status_code=201,
    summary="Send a check-in",
    description="Creates a pending check-in and notifies the recipient.",
)
def create_check_in(request: CreateCheckInRequest):
    result = get_services().lifecycle.create(
        request.sender_id, request.recipient_id, request.question,
    )
    return result.to_dict()


@router.post(
    "/sweep",
    summary="Apply due time-based transitions",
    description="Marks overdue and expires check-ins whose horizons have passed.",
)
def sweep_check_ins(request: Optional[SweepRequest] = None):
    now = request.now if request else None
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return get_services().lifecycle.sweep(now).to_dict()


@router.get(
    "/history/{sender_id}",
    summary="Check-in history for a sender",
)
def check_in_history(sender_id: str) -> Dict[str, Any]:
    check_ins = get_services().lifecycle.history(sender_id)
    return {
        "sender_id": sender_id,
        "count": len(check_ins),
        "check_ins": [c.to_dict() for c in check_ins],
    }


@router.get("/{check_in_id}", summary="Get a check-in")
def get_check_in(check_in_id: str):
    return get_services().lifecycle.get(check_in_id).to_dict()


@router.post(
    "/{check_in_id}/respond",
    summary="Respond to a check-in",
    description=(
        "Accepted exactly once while the check-in is pending; "
        "409 once it has been answered, marked overdue or expired."
    ),
)
def respond_to_check_in(check_in_id: str, request: RespondRequest):
    result = get_services().lifecycle.respond(
        check_in_id,
        request.response,
        request.response_kind,
        response_data=request.response_data,
        status_duration_hours=request.status_duration_hours,
    )
    return result.to_dict()
