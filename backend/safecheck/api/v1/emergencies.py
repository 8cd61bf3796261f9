"""
FastAPI route: emergency alerts.

    POST /api/v1/emergencies — notify every contact of the originator

The response lists one delivery outcome per contact, in contact order.
Individual delivery failures are reported in the body, not as an HTTP error.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from backend.safecheck.checkins.models import GeoPoint
from backend.safecheck.services import get_services

router = APIRouter(prefix="/api/v1/emergencies", tags=["emergencies"])


class LocationInput(BaseModel):
    latitude: float = Field(..., ge=-90, le=90, examples=[12.9716])
    longitude: float = Field(..., ge=-180, le=180, examples=[77.5946])
    accuracy: Optional[float] = Field(None, ge=0, description="Metres")


class RaiseEmergencyRequest(BaseModel):
    originator_id: str = Field(..., examples=["user-1"])
    location: Optional[LocationInput] = None


@router.post(
    "",
    status_code=201,
    summary="Raise an emergency",
    description=(
        "Snapshots the originator's contacts and delivers an EMERGENCY ALERT "
        "to each one concurrently (push, else SMS, else offline queue)."
    ),
)
def raise_emergency(request: RaiseEmergencyRequest):
    location = None
    if request.location is not None:
        location = GeoPoint(
            latitude=request.location.latitude,
            longitude=request.location.longitude,
            accuracy=request.location.accuracy,
        )
    report = get_services().emergencies.raise_emergency(request.originator_id, location)
    return report.to_dict()
