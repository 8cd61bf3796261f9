"""
FastAPI application entry point.

Run with:
    uvicorn backend.safecheck.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.safecheck.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.safecheck.core.config import settings
from backend.safecheck.core.logging_config import setup_logging, get_logger
from backend.safecheck.core.errors import register_error_handlers
from backend.safecheck.core.middleware import RequestLoggingMiddleware
from backend.safecheck.core.health import HealthStatus, run_health_check
from backend.safecheck.services import get_services, shutdown_services

# ── API routers ──
from backend.safecheck.api.v1.checkins import router as checkin_router
from backend.safecheck.api.v1.emergencies import router as emergency_router
from backend.safecheck.api.v1.queue import router as queue_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    # Startup: build stores, channels and the delivery core
    get_services()
    yield
    # Shutdown: finish background drains, close clients and connections
    shutdown_services()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Personal-safety check-in and emergency alerting core. "
        "Tracks check-ins from creation to response, overdue or expiry, "
        "delivers every notification via push with SMS fallback, "
        "queues what cannot be delivered until the device is back online, "
        "and fans emergency alerts out to all of a user's contacts."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(checkin_router)
app.include_router(emergency_router)
app.include_router(queue_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "check-in-lifecycle",
            "delivery-engine",
            "offline-queue",
            "emergency-fanout",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
def health_check():
    """Deep health probe — checks all subsystems."""
    report = run_health_check(get_services())
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
def readiness():
    """Kubernetes readiness probe — can we serve traffic?"""
    report = run_health_check(get_services())
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
