from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from subledger.db.models.subscriptions import SUBSCRIPTION_STATUS_ACTIVE, Subscription
from subledger.db.models.transactions import (
    TRANSACTION_TYPE_PURCHASE,
    TRANSACTION_TYPE_RENEWAL,
    Transaction,
)
from subledger.economy.subscriptions.catalog import Plan
from subledger.economy.subscriptions.types import PriceBreakdown


def _build_subscription(
    plan: Plan,
    *,
    user_id: int,
    price: PriceBreakdown,
    now_utc: datetime,
) -> Subscription:
    return Subscription(
        id=uuid4(),
        user_id=user_id,
        plan_id=plan.id,
        title=plan.title,
        granted_role_id=plan.granted_role_id,
        status=SUBSCRIPTION_STATUS_ACTIVE,
        created_at=now_utc,
        started_at=now_utc,
        expires_at=now_utc + timedelta(days=plan.duration_days),
        updated_at=now_utc,
        duration_days=plan.duration_days,
        original_price=price.original,
        paid_price=price.final,
        total_paid=price.final,
        discount_applied=plan.discount.as_dict() if plan.discount is not None else None,
        renewal_count=0,
        warning_sent=False,
    )


def _extend_subscription(
    subscription: Subscription,
    plan: Plan,
    *,
    price: PriceBreakdown,
    now_utc: datetime,
) -> Subscription:
    # Extends from the current expiry so early renewals keep the remaining time.
    # The lineage moves to the renewing plan, role included.
    subscription.plan_id = plan.id
    subscription.title = plan.title
    subscription.granted_role_id = plan.granted_role_id
    subscription.expires_at = subscription.expires_at + timedelta(days=plan.duration_days)
    subscription.updated_at = now_utc
    subscription.last_renewed_at = now_utc
    subscription.last_renewal_plan_id = plan.id
    subscription.last_renewal_amount = price.final
    subscription.renewal_count = (subscription.renewal_count or 0) + 1
    subscription.total_paid = (subscription.total_paid or Decimal("0")) + price.final
    subscription.warning_sent = False
    subscription.warning_sent_at = None
    return subscription


def _build_transaction(
    plan: Plan,
    *,
    user_id: int,
    subscription_id: UUID,
    idempotency_key: str,
    price: PriceBreakdown,
    is_renewal: bool,
    balance_before: Decimal,
    balance_after: Decimal,
    now_utc: datetime,
) -> Transaction:
    return Transaction(
        id=uuid4(),
        idempotency_key=idempotency_key,
        user_id=user_id,
        subscription_id=subscription_id,
        plan_id=plan.id,
        plan_title=plan.title,
        type=TRANSACTION_TYPE_RENEWAL if is_renewal else TRANSACTION_TYPE_PURCHASE,
        amount=price.original,
        final_price=price.final,
        discount_amount=price.discount_amount,
        balance_before=balance_before,
        balance_after=balance_after,
        duration_days=plan.duration_days,
        created_at=now_utc,
    )
