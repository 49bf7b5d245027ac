"""
Work Order Service - Main Application
======================================

Maintenance work order lifecycle with a pause-aware SLA clock.

Modules:
- Work Orders: Lifecycle transitions, SLA accounting, overdue sweep

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and transition rules
- Infrastructure: Database, webhook, search, cache, scheduler
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration
from src.config import settings

# Infrastructure
from src.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    init_database,
)

# Work order module
from src.workorders.application import BestEffortRunner, SlaOverdueSweeper
from src.workorders.infrastructure import (
    HttpSearchIndexer,
    InMemoryWorkOrderReadCache,
    ReadCacheInvalidator,
    SLAConfigWatcher,
    SLAOverdueScheduler,
    SQLAlchemyWorkOrderRepository,
    WebhookNotificationDispatcher,
    YAMLConfigProvider,
)
from src.workorders.interfaces import WorkOrderCollaborators, workorders_router

# Shared
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    register_exception_handlers,
)
from src.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration and watch it for changes
    4. Build collaborators (read cache, search indexer, notifier)
    5. Start SLA overdue sweep

    SHUTDOWN:
    1. Stop the sweep and config watcher
    2. Wait for pending side effects
    3. Close HTTP clients and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Work Order Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning(
            "Database not available - running in degraded mode",
            extra={"error": str(e)},
        )

    config_provider = YAMLConfigProvider(settings.sla_config_path)
    config_watcher = SLAConfigWatcher(config_provider, settings.sla_config_path)
    config_watcher.start_watching()

    read_cache = InMemoryWorkOrderReadCache(settings.cache_ttl_seconds)
    search_indexer = HttpSearchIndexer(
        settings.search_url,
        settings.search_index,
        timeout=settings.search_timeout_seconds,
    )
    notifier = WebhookNotificationDispatcher(
        settings.notification_webhook_url,
        settings.notification_channel,
        timeout=settings.notification_timeout_seconds,
    )
    runner = BestEffortRunner()

    app.state.workorders = WorkOrderCollaborators(
        config_provider=config_provider,
        read_cache=read_cache,
        cache_invalidator=ReadCacheInvalidator(read_cache),
        search_indexer=search_indexer,
        notification_dispatcher=notifier,
        runner=runner,
        require_transition_reasons=settings.require_transition_reasons,
    )

    scheduler = None
    if settings.sla_overdue_check_interval > 0:
        sweeper = SlaOverdueSweeper(
            notifier,
            renotify_after=timedelta(hours=settings.sla_overdue_renotify_hours),
            runner=runner,
        )

        async def sla_overdue_job():
            """Background SLA overdue sweep."""
            try:
                async with get_session_context() as session:
                    await sweeper.sweep(SQLAlchemyWorkOrderRepository(session))
            except SQLAlchemyError as e:
                logger.error("SLA overdue sweep failed", extra={"error": str(e)})

        scheduler = SLAOverdueScheduler(interval_seconds=settings.sla_overdue_check_interval)
        await scheduler.start(sla_overdue_job)
    app.state.sla_scheduler = scheduler

    logger.info("Work Order Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Work Order Service")

    if scheduler:
        await scheduler.stop()
    config_watcher.stop_watching()

    await runner.drain()
    await notifier.close()
    await search_indexer.close()

    await close_database()

    logger.info("Work Order Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Work Order Service API",
    description="""
    ## Maintenance Work Order Lifecycle

    **Endpoints:**
    - `POST /plants/{plant_id}/work-orders` - Create a work order
    - `GET /plants/{plant_id}/work-orders/{id}` - Get a work order with its live SLA view
    - `PATCH /plants/{plant_id}/work-orders/{id}` - Apply a lifecycle update

    Every request carries the tenant in the `X-Tenant-ID` header.

    **Workflow:** `open → in_analysis → in_execution → completed → closed`,
    with `in_execution ⇄ paused` and `cancelled` from any non-final status.

    **SLA hours by priority** (defaults, overridable per tenant in `sla_config.yaml`):

    | Priority | Hours |
    |----------|-------|
    | Critical | 8     |
    | High     | 24    |
    | Medium   | 72    |
    | Low      | 96    |

    Paused time is excluded from the SLA when the order's `sla_exclude_pause` is set.
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
register_exception_handlers(app)

# === Include Module Routers ===
app.include_router(workorders_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports configuration and background job state.
    """
    scheduler = getattr(request.app.state, "sla_scheduler", None)
    collaborators = getattr(request.app.state, "workorders", None)
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "sla_config": "loaded" if collaborators else "not_loaded",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "notifications": "configured" if settings.notification_webhook_url else "not_configured",
            "search": "configured" if settings.search_url else "not_configured",
            "pending_side_effects": collaborators.runner.pending if collaborators else 0,
        }
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Work Order Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "workorders": {
                "prefix": "/plants/{plant_id}/work-orders",
                "endpoints": [
                    "POST /plants/{plant_id}/work-orders - Create work order",
                    "GET /plants/{plant_id}/work-orders/{id} - Get work order with SLA",
                    "PATCH /plants/{plant_id}/work-orders/{id} - Apply lifecycle update"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
