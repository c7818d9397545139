from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subledger.api.deps import get_scheduler, get_services, get_session_factory
from subledger.core.config import get_settings
from subledger.core.formatting import format_amount
from subledger.economy.balance.errors import (
    BalanceAdjustmentError,
    BalanceUserNotFoundError,
    UserAlreadyExistsError,
)
from subledger.economy.balance.service import BalanceService
from subledger.economy.balance.types import BALANCE_OPERATIONS
from subledger.economy.subscriptions.service import (
    UPCOMING_EXPIRY_DEFAULT_DAYS,
    SubscriptionService,
)
from subledger.services.internal_auth import assert_internal_access
from subledger.services.lifecycle import LifecycleServices
from subledger.workers.scheduler import ExpiryScheduler

router = APIRouter(tags=["internal", "subscriptions"])
logger = structlog.get_logger(__name__)


class BalanceAdjustmentRequest(BaseModel):
    operation: str = Field(min_length=1, max_length=16)
    amount: Decimal = Field(ge=0, max_digits=18, decimal_places=8)
    reason: str | None = Field(default=None, max_length=256)


class BalanceAdjustmentResponse(BaseModel):
    user_id: int
    operation: str
    amount: str
    balance_before: str
    balance_after: str
    formatted_balance_after: str


class UserRegistrationRequest(BaseModel):
    user_id: int = Field(gt=0)
    username: str | None = Field(default=None, max_length=128)


class UserRegistrationResponse(BaseModel):
    user_id: int
    username: str | None = None
    balance: str


@router.get("/internal/subscriptions/stats")
async def get_subscription_stats(
    request: Request,
    services: LifecycleServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    scheduler: ExpiryScheduler | None = Depends(get_scheduler),
) -> dict[str, object]:
    assert_internal_access(request)

    async with session_factory() as session:
        stats = await SubscriptionService.get_subscription_stats(
            session,
            now_utc=services.clock.now(),
        )
    stats["scheduler"] = {
        "running": scheduler.is_running if scheduler is not None else False,
        "last_run_at": _isoformat(scheduler.last_run_at if scheduler is not None else None),
        "next_run_at": _isoformat(scheduler.next_run_at if scheduler is not None else None),
    }
    stats["outbox"] = {**services.outbox.counters, "pending": services.outbox.pending}
    return stats


@router.get("/internal/subscriptions/upcoming")
async def get_upcoming_expiries(
    request: Request,
    days: int = Query(default=UPCOMING_EXPIRY_DEFAULT_DAYS, ge=1, le=365),
    services: LifecycleServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, object]:
    assert_internal_access(request)

    async with session_factory() as session:
        upcoming = await SubscriptionService.list_upcoming_expiries(
            session,
            now_utc=services.clock.now(),
            days=days,
        )
    return {"days": days, "subscriptions": upcoming}


@router.post("/internal/subscriptions/expiry-check")
async def force_expiry_check(
    request: Request,
    scheduler: ExpiryScheduler | None = Depends(get_scheduler),
) -> dict[str, object]:
    assert_internal_access(request)

    if scheduler is None:
        raise HTTPException(status_code=503, detail={"code": "E_SCHEDULER_UNAVAILABLE"})
    result = await scheduler.run_periodic_sweep()
    logger.info(
        "subscription_expiry_check_forced",
        warned=result["warning"]["warned"],
        expired=result["expiry"]["expired"],
    )
    return {"status": "ok", "result": result}


@router.post("/internal/users", response_model=UserRegistrationResponse)
async def register_user(
    payload: UserRegistrationRequest,
    request: Request,
    services: LifecycleServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> UserRegistrationResponse:
    assert_internal_access(request)

    try:
        async with session_factory.begin() as session:
            user = await BalanceService.register_user(
                session,
                user_id=payload.user_id,
                username=payload.username,
                initial_balance=get_settings().default_balance,
                now_utc=services.clock.now(),
            )
    except UserAlreadyExistsError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_USER_EXISTS"}) from exc

    return UserRegistrationResponse(
        user_id=user.id,
        username=user.username,
        balance=str(user.balance),
    )


@router.post(
    "/internal/users/{user_id}/balance",
    response_model=BalanceAdjustmentResponse,
)
async def adjust_user_balance(
    user_id: int,
    payload: BalanceAdjustmentRequest,
    request: Request,
    services: LifecycleServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BalanceAdjustmentResponse:
    assert_internal_access(request)

    if payload.operation not in BALANCE_OPERATIONS:
        raise HTTPException(status_code=422, detail={"code": "E_BALANCE_OPERATION_INVALID"})

    try:
        async with session_factory.begin() as session:
            result = await BalanceService.adjust_balance(
                session,
                user_id=user_id,
                operation=payload.operation,
                amount=payload.amount,
                now_utc=services.clock.now(),
                reason=payload.reason,
            )
    except BalanceUserNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_USER_NOT_FOUND"}) from exc
    except BalanceAdjustmentError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_BALANCE_ADJUSTMENT_INVALID"}) from exc

    return BalanceAdjustmentResponse(
        user_id=result.user_id,
        operation=result.operation,
        amount=str(result.amount),
        balance_before=str(result.balance_before),
        balance_after=str(result.balance_after),
        formatted_balance_after=format_amount(result.balance_after),
    )


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
