from pathlib import Path
from contextlib import asynccontextmanager
from typing import Optional

from alembic import command
from alembic.config import Config
from fastapi import FastAPI

from ordersync.api.routes import health, sync
from ordersync.core.config import settings
from ordersync.core.db import SessionLocal
from ordersync.core.logging import get_logger
from ordersync.ingestion.rest_source import RestPageSource
from ordersync.services.scheduler import SyncScheduler
from ordersync.services.sync_service import SyncService


log = get_logger("app")

# Background scheduler handle
_scheduler: Optional[SyncScheduler] = None


def run_migrations() -> None:
    """Execute Alembic migrations programmatically on startup."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    log.info("Running Alembic migrations to head")
    command.upgrade(alembic_cfg, "head")
    log.info("Alembic migrations applied")


def build_sync_service() -> SyncService:
    """Wire the sync engine against the configured database and upstream API."""
    source = RestPageSource(api_version=settings.SOURCE_API_VERSION, auth_header=settings.SOURCE_AUTH_HEADER)
    return SyncService(SessionLocal, source, settings.sync_config())


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _scheduler

    # Log environment mode
    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    try:
        run_migrations()
    except Exception:
        log.exception("Failed to apply migrations on startup")
        raise

    service = build_sync_service()
    app.state.sync_service = service

    purged = service.checkpoints.purge_expired()
    if purged:
        log.info(f"Purged {purged} expired checkpoints")

    # Start the recurring multi-tenant sync if enabled
    if settings.SCHEDULER_ENABLED:
        log.info("Starting scheduled sync background task...")
        _scheduler = SyncScheduler(
            service,
            interval=settings.SCHEDULER_INTERVAL_SECONDS,
            stagger=settings.TENANT_STAGGER_SECONDS,
        )
        _scheduler.start()
    else:
        log.info("Scheduled sync is disabled (SCHEDULER_ENABLED=false)")

    yield

    # Shutdown
    log.info("Shutting down services...")

    # In-flight runs checkpoint and stop before the scheduler task is torn down
    await service.shutdown()

    if _scheduler:
        await _scheduler.stop()
        _scheduler = None

    log.info("Application shutdown complete")


# Configure FastAPI based on environment
app = FastAPI(
    title="Order Sync Backend",
    description="Resumable multi-tenant sync of orders from a rate-limited upstream API",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production for security
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    # Debug mode only in development
    debug=settings.debug_enabled,
)


app.include_router(health.router)
app.include_router(sync.router)
