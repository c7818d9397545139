from __future__ import annotations

import structlog
from celery.schedules import crontab

from subledger.core.config import get_settings
from subledger.db.session import SessionLocal
from subledger.services.lifecycle import build_lifecycle_services
from subledger.workers.asyncio_runner import run_async_job
from subledger.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


async def _run_sweep_async(*, recovery: bool) -> dict[str, object]:
    services = build_lifecycle_services(get_settings(), session_factory=SessionLocal)
    try:
        now_utc = services.clock.now()
        if recovery:
            result = await services.sweeper.run_recovery(now_utc=now_utc)
        else:
            result = await services.sweeper.run_periodic(now_utc=now_utc)
        dispatched = await services.outbox.drain()
    finally:
        await services.aclose()

    summary: dict[str, object] = {
        **result,
        "dispatched": dispatched,
        "outbox": dict(services.outbox.counters),
    }
    logger.info(
        "subscription_sweep_task_finished",
        recovery=recovery,
        dispatched=dispatched,
        dropped=services.outbox.counters["dropped"],
    )
    return summary


async def run_expiry_sweep_async() -> dict[str, object]:
    return await _run_sweep_async(recovery=False)


async def run_recovery_sweep_async() -> dict[str, object]:
    return await _run_sweep_async(recovery=True)


@celery_app.task(name="subledger.workers.tasks.subscription_expiry.run_expiry_sweep")
def run_expiry_sweep() -> dict[str, object]:
    return run_async_job(run_expiry_sweep_async())


@celery_app.task(name="subledger.workers.tasks.subscription_expiry.run_recovery_sweep")
def run_recovery_sweep() -> dict[str, object]:
    return run_async_job(run_recovery_sweep_async())


if get_settings().expiry_scheduler_backend == "celery":
    celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
    celery_app.conf.beat_schedule.update(
        {
            "subscription-expiry-sweep-every-6-hours": {
                "task": "subledger.workers.tasks.subscription_expiry.run_expiry_sweep",
                "schedule": crontab(minute=0, hour="*/6"),
                "options": {"queue": "q_normal"},
            },
        }
    )
