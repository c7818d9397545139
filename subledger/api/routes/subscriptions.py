from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

import structlog
from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subledger.api.deps import get_services, get_session_factory
from subledger.api.errors import subscription_http_error
from subledger.core.config import get_settings
from subledger.core.formatting import format_amount, format_duration
from subledger.economy.subscriptions.errors import SubscriptionError
from subledger.economy.subscriptions.pricing import calculate_price, describe_price
from subledger.economy.subscriptions.service import SubscriptionService
from subledger.services.internal_auth import assert_internal_access
from subledger.services.lifecycle import LifecycleServices

router = APIRouter(tags=["subscriptions"])
logger = structlog.get_logger(__name__)


class PlanResponse(BaseModel):
    id: str
    title: str
    description: str | None = None
    duration_days: int
    duration_text: str
    role_id: str
    original_price: str
    final_price: str
    discount_amount: str
    formatted_original: str
    formatted_final: str
    formatted_discount: str
    discount: dict[str, object] | None = None


class PlansResponse(BaseModel):
    plans: list[PlanResponse]


class PurchaseRequest(BaseModel):
    user_id: int = Field(gt=0)
    plan_id: str = Field(min_length=1, max_length=64)


class PurchaseResponse(BaseModel):
    final_price: str
    formatted_final_price: str
    subscription_id: UUID
    expires_at: datetime
    is_renewal: bool
    message: str


@router.get("/subscriptions/plans", response_model=PlansResponse)
async def list_plans(services: LifecycleServices = Depends(get_services)) -> PlansResponse:
    plans: list[PlanResponse] = []
    for plan in services.catalog.get_plans():
        price = calculate_price(plan)
        plans.append(
            PlanResponse(
                id=plan.id,
                title=plan.title,
                description=plan.description,
                duration_days=plan.duration_days,
                duration_text=format_duration(plan.duration_days),
                role_id=plan.granted_role_id,
                original_price=str(price.original),
                final_price=str(price.final),
                discount_amount=str(price.discount_amount),
                discount=plan.discount.as_dict() if plan.discount is not None else None,
                **describe_price(price),
            )
        )
    return PlansResponse(plans=plans)


@router.post("/subscriptions/purchase", response_model=PurchaseResponse)
async def purchase_subscription(
    payload: PurchaseRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key", max_length=128),
    services: LifecycleServices = Depends(get_services),
) -> PurchaseResponse:
    assert_internal_access(request)

    key = idempotency_key or f"purchase:{uuid4().hex}"
    try:
        result = await services.engine.purchase(
            user_id=payload.user_id,
            plan_id=payload.plan_id,
            idempotency_key=key,
        )
    except SubscriptionError as exc:
        logger.info(
            "subscription_purchase_rejected",
            user_id=payload.user_id,
            plan_id=payload.plan_id,
            error=type(exc).__name__,
        )
        raise subscription_http_error(exc) from exc

    title = result.subscription.title
    message = (
        f"Subscription {title} renewed successfully!"
        if result.is_renewal
        else f"Subscription {title} purchased successfully!"
    )
    return PurchaseResponse(
        final_price=str(result.final_price),
        formatted_final_price=format_amount(result.final_price),
        subscription_id=result.subscription.id,
        expires_at=result.subscription.expires_at,
        is_renewal=result.is_renewal,
        message=message,
    )


@router.get("/users/{user_id}/subscription")
async def get_active_subscription(
    user_id: int,
    request: Request,
    services: LifecycleServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, object]:
    assert_internal_access(request)

    async with session_factory() as session:
        view = await SubscriptionService.get_active_subscription_view(
            session,
            user_id=user_id,
            now_utc=services.clock.now(),
            timezone_name=get_settings().display_timezone,
        )
    return {"user_id": user_id, "subscription": view}


@router.get("/users/{user_id}/subscriptions")
async def get_subscription_history(
    user_id: int,
    request: Request,
    services: LifecycleServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict[str, object]:
    assert_internal_access(request)

    async with session_factory() as session:
        history = await SubscriptionService.list_subscription_history(
            session,
            user_id=user_id,
            now_utc=services.clock.now(),
        )
    return {"user_id": user_id, "subscriptions": history}
