"""
FastAPI route: offline queue and connectivity.

    GET  /api/v1/queue          — messages waiting for the network
    POST /api/v1/queue/drain    — retry them now (push only)
    POST /api/v1/connectivity   — report the device going online/offline

An offline → online report also schedules a background drain.
"""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel, Field

from backend.safecheck.services import get_services

router = APIRouter(prefix="/api/v1", tags=["offline-queue"])


class ConnectivityReport(BaseModel):
    online: bool = Field(..., examples=[True])


@router.get("/queue", summary="List queued messages")
def list_queue():
    services = get_services()
    messages = services.queue.pending()
    return {
        "count": len(messages),
        "max_size": services.queue.max_size,
        "max_retry_attempts": services.queue.max_retry_attempts,
        "messages": [m.to_dict() for m in messages],
    }


@router.post("/queue/drain", summary="Drain the offline queue")
def drain_queue():
    return get_services().queue.drain().to_dict()


@router.post("/connectivity", summary="Report connectivity")
def report_connectivity(report: ConnectivityReport):
    services = get_services()
    transition = services.connectivity.report(report.online)
    return {
        "online": services.connectivity.is_online,
        "transition": transition.value if transition else None,
        "queued": len(services.queue),
    }
