from __future__ import annotations

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subledger.services.lifecycle import LifecycleServices
from subledger.workers.scheduler import ExpiryScheduler


def get_services(request: Request) -> LifecycleServices:
    return request.app.state.services


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


def get_scheduler(request: Request) -> ExpiryScheduler | None:
    return getattr(request.app.state, "scheduler", None)
