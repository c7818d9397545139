from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from subledger.api.routes.health import router as health_router
from subledger.api.routes.internal_subscriptions import router as internal_subscriptions_router
from subledger.api.routes.subscriptions import router as subscriptions_router
from subledger.core.config import get_settings
from subledger.core.logging import configure_logging
from subledger.db.session import SessionLocal, dispose_engine
from subledger.services.lifecycle import build_lifecycle_services
from subledger.workers.scheduler import ExpiryScheduler

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    services = build_lifecycle_services(settings, session_factory=SessionLocal)
    scheduler = ExpiryScheduler(
        sweeper=services.sweeper,
        interval_seconds=settings.expiry_check_interval_seconds,
        recovery_delay_seconds=settings.recovery_delay_seconds,
        clock=services.clock,
    )
    app.state.services = services
    app.state.session_factory = SessionLocal
    app.state.scheduler = scheduler

    services.catalog.get_plans()
    services.outbox.start()
    # Celery beat owns the periodic sweep in that mode; recovery still runs here once.
    scheduler.start(run_periodic=settings.expiry_scheduler_backend == "inprocess")
    logger.info("subledger_started", scheduler_backend=settings.expiry_scheduler_backend)
    try:
        yield
    finally:
        await scheduler.stop()
        await services.aclose()
        await dispose_engine()
        logger.info("subledger_stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Subscription Ledger API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.include_router(health_router)
    app.include_router(subscriptions_router)
    app.include_router(internal_subscriptions_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "subledger.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
