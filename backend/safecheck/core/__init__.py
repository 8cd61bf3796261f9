"""
Core package — cross-cutting concerns.

Modules:
    config      — environment variables & settings
    logging     — structured JSON logging
    errors      — exception hierarchy & handlers
    events      — in-process event bus
    middleware  — request logging
    health      — health check aggregation
    database    — SQLAlchemy engine & session factory
"""
