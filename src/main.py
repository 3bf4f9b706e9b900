"""
Ticket Escalation Service - Main Application
============================================

Rule-based ticket escalation with tenant-scoped outbound webhooks.

Modules:
- Escalation: Periodically evaluate escalation rules and execute their actions
- Webhooks: Fan ticket events out to subscriber endpoints with signed, retried deliveries

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, rule files, HTTP transport
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration
from src.config import settings

# Infrastructure
from src.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    get_session_maker,
    init_database,
)

# Escalation Module
from src.escalation.infrastructure import LoggingNotificationGateway, YAMLRuleManager
from src.escalation.interfaces import escalation_router
from src.escalation.services import run_escalation_tick

# Webhooks Module
from src.webhooks.infrastructure import HttpxWebhookTransport
from src.webhooks.interfaces import webhook_router
from src.webhooks.services import build_webhook_dispatcher, process_retry_queue

# Shared
from src.shared.api.middleware import install_middleware
from src.shared.infrastructure.logging import get_logger, setup_logging
from src.shared.infrastructure.scheduling import JobScheduler

logger = get_logger(__name__)

# Global service instances
job_scheduler = None
rule_manager = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load YAML escalation rules (when configured)
    4. Start background jobs (escalation tick, webhook retry poller)

    SHUTDOWN:
    1. Stop background jobs
    2. Stop rule file watcher
    3. Close HTTP transport and database connections
    """
    global job_scheduler, rule_manager

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Ticket Escalation Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Note: If database is not available, the server will start but
    # database-dependent endpoints and jobs will fail
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    if settings.rules_source == "yaml":
        logger.info("Loading escalation rules", extra={"path": str(settings.rules_config_path)})
        rule_manager = YAMLRuleManager()
        rule_manager.load(settings.rules_config_path)
        rule_manager.start_watching()
    else:
        rule_manager = None

    transport = HttpxWebhookTransport()
    notification_gateway = LoggingNotificationGateway()
    escalation_lock = asyncio.Lock()

    # Store services in app state for dependency injection
    app.state.webhook_transport = transport
    app.state.notification_gateway = notification_gateway
    app.state.rule_manager = rule_manager
    app.state.escalation_lock = escalation_lock

    async def escalation_job():
        """Background escalation tick."""
        if escalation_lock.locked():
            logger.info("Escalation tick skipped - previous run still active")
            return
        async with escalation_lock:
            dispatcher = build_webhook_dispatcher(get_session_maker(), transport)
            async with get_session_context() as session:
                await run_escalation_tick(session, dispatcher, rule_manager, notification_gateway)

    async def retry_job():
        """Background webhook retry poller."""
        await process_retry_queue(get_session_maker(), transport)

    job_scheduler = JobScheduler()
    if settings.escalation_enabled:
        job_scheduler.add_interval_job(
            escalation_job,
            seconds=settings.escalation_interval_seconds,
            job_id="escalation_tick",
            name="Escalation rule evaluation"
        )
    job_scheduler.add_interval_job(
        retry_job,
        seconds=settings.webhook_retry_poll_interval_seconds,
        job_id="webhook_retries",
        name="Webhook retry poller"
    )
    job_scheduler.start()
    app.state.job_scheduler = job_scheduler

    logger.info("Ticket Escalation Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Ticket Escalation Service")

    if job_scheduler:
        job_scheduler.stop()

    if rule_manager:
        rule_manager.stop_watching()

    await transport.close()
    await close_database()

    logger.info("Ticket Escalation Service shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware and module routers."""
    application = FastAPI(
        title="Ticket Escalation API",
        description="""
    ## Rule-Based Ticket Escalation & Webhooks

    ---

    ### Escalation Module

    **Endpoints:**
    - `POST /escalations/run` - Run one escalation tick immediately
    - `GET /escalations/events` - Audit trail of rule firings

    **Features:**
    - Conditions on ticket fields, elapsed time and support replies
    - Actions: assign, priority/status change, webhook, email, sms
    - Per ticket/rule cooldown (24h by default)
    - Background tick (every 5 minutes by default)

    ---

    ### Webhooks Module

    **Endpoints:**
    - `POST /webhooks/events` - Dispatch a ticket event to subscribers
    - `POST /webhooks/test` - Send a test delivery to an endpoint
    - `GET /webhooks/deliveries/{id}` - Delivery state and attempt history

    **Features:**
    - Tenant-scoped subscriptions
    - HMAC-SHA256 signatures (`X-Webhook-Signature`, `X-Webhook-Signature-256`)
    - Exponential backoff with jitter, durable retry queue

    ---
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # === CORS Middleware ===
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    install_middleware(application)

    # === Include Module Routers ===
    application.include_router(escalation_router)
    application.include_router(webhook_router)

    application.add_api_route("/health", health_check, methods=["GET"], tags=["Health"], responses={
        200: {
            "description": "Service is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "environment": "development",
                        "checks": {
                            "rules_source": "database",
                            "job_scheduler": "running",
                            "scheduled_jobs": ["escalation_tick", "webhook_retries"]
                        }
                    }
                }
            }
        }
    })
    application.add_api_route("/", root, methods=["GET"], tags=["Root"])

    return application


# === Health Check Endpoint ===

async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Escalation rule source
    - Scheduler state and registered jobs
    """
    scheduler = getattr(request.app.state, "job_scheduler", None)
    manager = getattr(request.app.state, "rule_manager", None)

    checks = {
        "rules_source": settings.rules_source,
        "job_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "scheduled_jobs": scheduler.job_ids if scheduler else [],
    }
    if manager is not None:
        checks["yaml_rules_loaded"] = len(manager.rules)

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


async def root():
    """Root endpoint with API information."""
    return {
        "service": "Ticket Escalation Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
    }


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
