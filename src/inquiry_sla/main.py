"""
Inquiry SLA Service - Main Application
=======================================

SLA monitoring and escalation engine for the inquiry management backend.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Detection sweep, escalation, reporting, DTOs
- Domain: Entities, value objects, business calendar
- Infrastructure: Database, Slack notifier, config watcher, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from inquiry_sla.config import settings
from inquiry_sla.core import ApplicationException

# Infrastructure
from inquiry_sla.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)

# SLA Module
from inquiry_sla.sla.application import NotificationDispatcher, SLAMonitor
from inquiry_sla.sla.infrastructure import (
    SLAConfigManager,
    SLAScheduler,
    SlackNotifier,
    YAMLSlaConfigRepository,
    sqlalchemy_uow_factory,
)
from inquiry_sla.sla.interfaces import sla_router

# Shared
from inquiry_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from inquiry_sla.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load YAML SLA configurations (yaml source only)
    4. Build notifier, dispatcher and SLA monitor
    5. Start SLA scheduler

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Stop config watcher
    3. Close Slack client
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Inquiry SLA Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    app.state.settings = settings

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    # SLA configurations: database table or hot-reloaded YAML file
    config_manager = None
    config_repository = None
    if settings.sla_config_source == "yaml":
        logger.info("Loading SLA configuration", extra={"path": str(settings.sla_config_path)})
        config_manager = SLAConfigManager()
        config_manager.load(settings.sla_config_path)
        config_manager.start_watching()
        config_repository = YAMLSlaConfigRepository(config_manager)
    app.state.sla_config_repository = config_repository

    notifier = SlackNotifier()
    dispatcher = NotificationDispatcher(notifier, frontend_url=settings.frontend_url)
    monitor = SLAMonitor(
        sqlalchemy_uow_factory(get_session_maker(), config_repository),
        dispatcher,
        auto_escalate=settings.sla_auto_escalate,
        auto_escalate_types=settings.sla_auto_escalate_types,
    )
    app.state.notification_dispatcher = dispatcher
    app.state.sla_monitor = monitor

    sla_scheduler = None
    if settings.sla_scheduler_enabled:
        sla_scheduler = SLAScheduler(interval_seconds=settings.sla_evaluation_interval)
        await sla_scheduler.start(monitor.run_sweep)
    else:
        logger.info("SLA scheduler disabled")
    app.state.sla_scheduler = sla_scheduler

    logger.info("Inquiry SLA Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Inquiry SLA Service")

    if sla_scheduler:
        await sla_scheduler.stop()

    if config_manager:
        config_manager.stop_watching()

    await notifier.close()
    await close_database()

    logger.info("Inquiry SLA Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Inquiry SLA API",
    description="""
    ## SLA Monitoring & Escalation for Inquiries

    Detects missed response, resolution and escalation deadlines on open
    inquiries, escalates them to the next responsible user and reports on
    compliance.

    **Endpoints:**
    - `POST /sla/violations/{id}/escalate` - Escalate a violation
    - `GET /sla/inquiries/{id}/escalations` - Escalation history of an inquiry
    - `GET /sla/metrics` - Compliance metrics for an application
    - `GET /sla/escalations/stats` - Escalation statistics
    - `GET /sla/violations` - List violations
    - `POST /sla/sweep` - Run a detection sweep now

    **Features:**
    - Business-hours aware deadlines (per-config hours, days and timezone)
    - Exactly one violation per inquiry and violation type
    - Severity tiers: minor (<= 2h late), major (<= 8h), critical
    - Escalation chain: senior admin, application admin, system admin
    - Background sweep (every 5 minutes by default)
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "sla_config_source": "database",
                        "sla_scheduler": "running",
                        "sla_sweep": "idle"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns scheduler state and whether a sweep is in progress.
    """
    scheduler = getattr(request.app.state, "sla_scheduler", None)
    monitor = getattr(request.app.state, "sla_monitor", None)

    checks = {
        "sla_config_source": settings.sla_config_source,
        "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "sla_sweep": "running" if monitor and monitor.is_sweeping else "idle",
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Inquiry SLA Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "POST /sla/violations/{id}/escalate - Escalate a violation",
                    "GET /sla/inquiries/{id}/escalations - Escalation history",
                    "GET /sla/metrics - Compliance metrics",
                    "GET /sla/escalations/stats - Escalation statistics",
                    "GET /sla/violations - List violations",
                    "GET /sla/violations/{id} - Get a violation",
                    "POST /sla/inquiries/{id}/violations/resolve - Resolve violations",
                    "GET /sla/configs - Active SLA configurations",
                    "POST /sla/sweep - Run a sweep now"
                ]
            }
        }
    }


# === Development Entry Point ===

def run() -> None:
    import uvicorn

    uvicorn.run(
        "inquiry_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )


if __name__ == "__main__":
    run()
