"""
Health check aggregation — deep health probe for the alerting core.

Checks:
    • Database connectivity (when SQL stores are in use)
    • Offline queue depth against QUEUE_MAX_SIZE
    • Device connectivity as last reported
    • Delivery channel configuration

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from sqlalchemy import text

from backend.safecheck.core.config import settings

if TYPE_CHECKING:
    from backend.safecheck.services import Services

logger = logging.getLogger(__name__)

# Queue fill ratio at which the queue is reported degraded
QUEUE_DEGRADED_RATIO = 0.8


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


def check_database(services: "Services") -> ComponentHealth:
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    if services.db_engine is None:
        comp.message = "In-memory stores"
    else:
        try:
            with services.db_engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            comp.message = "Connection available"
            comp.details = {"url": services.db_engine.url.render_as_string(hide_password=True)}
        except Exception as e:
            comp.status = HealthStatus.UNHEALTHY
            comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_offline_queue(services: "Services") -> ComponentHealth:
    comp = ComponentHealth(name="offline_queue")
    start = time.monotonic()
    try:
        depth = len(services.queue)
        capacity = services.queue.max_size
        comp.details = {"depth": depth, "max_size": capacity}
        if depth >= capacity * QUEUE_DEGRADED_RATIO:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Queue nearly full: {depth}/{capacity}"
        else:
            comp.message = f"{depth} message(s) waiting"
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_connectivity(services: "Services") -> ComponentHealth:
    comp = ComponentHealth(name="connectivity")
    if services.connectivity.is_online:
        comp.message = "Online"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Offline: push deliveries are queued"
    return comp


def check_channels(services: "Services") -> ComponentHealth:
    comp = ComponentHealth(name="channels")
    sms_available = services.sms.is_available()
    comp.details = {
        "push": type(services.push).__name__,
        "sms": type(services.sms).__name__,
        "sms_available": sms_available,
    }
    if not sms_available:
        comp.status = HealthStatus.DEGRADED
        comp.message = "SMS fallback unavailable"
    else:
        comp.message = "Push and SMS configured"
    return comp


def run_health_check(services: "Services") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [check_database, check_offline_queue, check_connectivity, check_channels]
    for check in checks:
        report.components.append(check(services))

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
