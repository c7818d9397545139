from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from subledger.core.formatting import format_amount, format_duration, format_local_datetime
from subledger.db.models.subscriptions import SUBSCRIPTION_STATUS_ACTIVE, Subscription
from subledger.db.repo.subscriptions_repo import SubscriptionsRepo
from subledger.db.repo.users_repo import UsersRepo

from .constants import (
    HISTORY_DEFAULT_LIMIT,
    SECONDS_PER_DAY,
    STATS_LOOKBACK_DAYS,
    UPCOMING_EXPIRY_DEFAULT_DAYS,
)


def _progress_percent(subscription: Subscription, *, now_utc: datetime) -> int:
    total_seconds = (subscription.expires_at - subscription.started_at).total_seconds()
    if total_seconds <= 0:
        return 100
    elapsed_seconds = (now_utc - subscription.started_at).total_seconds()
    ratio = min(100.0, max(0.0, elapsed_seconds / total_seconds * 100))
    return int(round(ratio))


def _local(value: datetime | None, *, timezone_name: str) -> str | None:
    if value is None:
        return None
    return format_local_datetime(value, timezone_name=timezone_name)


async def get_active_subscription_view(
    session: AsyncSession,
    *,
    user_id: int,
    now_utc: datetime,
    timezone_name: str,
) -> dict[str, object] | None:
    subscription = await SubscriptionsRepo.get_active_for_user(session, user_id, now_utc)
    if subscription is None:
        return None

    remaining_seconds = max(0, int((subscription.expires_at - now_utc).total_seconds()))
    days_left = remaining_seconds // SECONDS_PER_DAY
    hours_left = (remaining_seconds % SECONDS_PER_DAY) // 3600

    return {
        "subscription_id": str(subscription.id),
        "plan_id": subscription.plan_id,
        "title": subscription.title,
        "status": subscription.status,
        "is_active": True,
        "started_at": subscription.started_at.isoformat(),
        "expires_at": subscription.expires_at.isoformat(),
        "purchased_at_local": _local(subscription.created_at, timezone_name=timezone_name),
        "expires_at_local": _local(subscription.expires_at, timezone_name=timezone_name),
        "duration_text": format_duration(subscription.duration_days),
        "time_left": {
            "months": days_left // 30,
            "days": days_left % 30,
            "hours": hours_left,
            "total_days": days_left,
        },
        "progress_percent": _progress_percent(subscription, now_utc=now_utc),
        "renewal_info": {
            "count": subscription.renewal_count,
            "last_renewed": _local(subscription.last_renewed_at, timezone_name=timezone_name),
            "total_spent": str(subscription.total_paid),
            "formatted_total_spent": format_amount(subscription.total_paid),
        },
    }


async def list_subscription_history(
    session: AsyncSession,
    *,
    user_id: int,
    now_utc: datetime,
    limit: int = HISTORY_DEFAULT_LIMIT,
) -> list[dict[str, object]]:
    subscriptions = await SubscriptionsRepo.list_for_user(session, user_id=user_id, limit=limit)
    return [
        {
            "subscription_id": str(item.id),
            "plan_id": item.plan_id,
            "title": item.title,
            "status": item.status,
            "is_active": item.status == SUBSCRIPTION_STATUS_ACTIVE and item.expires_at > now_utc,
            "created_at": item.created_at.isoformat(),
            "expires_at": item.expires_at.isoformat(),
            "expired_at": item.expired_at.isoformat() if item.expired_at is not None else None,
            "duration_text": format_duration(item.duration_days),
            "renewal_count": item.renewal_count,
            "total_paid": str(item.total_paid),
            "formatted_total_paid": format_amount(item.total_paid),
        }
        for item in subscriptions
    ]


async def get_subscription_stats(
    session: AsyncSession,
    *,
    now_utc: datetime,
) -> dict[str, object]:
    counts = await SubscriptionsRepo.count_by_status(session)
    active = await SubscriptionsRepo.count_active(session, now_utc=now_utc)
    total_revenue = await SubscriptionsRepo.sum_total_paid(session)

    since_utc = now_utc - timedelta(days=STATS_LOOKBACK_DAYS)
    rows = await SubscriptionsRepo.list_created_since(session, since_utc=since_utc)
    per_day_count: dict[str, int] = defaultdict(int)
    per_day_revenue: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for created_at, paid_price in rows:
        day = created_at.date().isoformat()
        per_day_count[day] += 1
        per_day_revenue[day] += paid_price

    return {
        "active": active,
        "expired": counts.get("expired", 0),
        "total_revenue": str(total_revenue),
        "formatted_total_revenue": format_amount(total_revenue),
        "daily": [
            {
                "date": day,
                "new_subscriptions": per_day_count[day],
                "revenue": str(per_day_revenue[day]),
            }
            for day in sorted(per_day_count, reverse=True)
        ],
    }


async def list_upcoming_expiries(
    session: AsyncSession,
    *,
    now_utc: datetime,
    days: int = UPCOMING_EXPIRY_DEFAULT_DAYS,
) -> list[dict[str, object]]:
    subscriptions = await SubscriptionsRepo.list_expiring_between(
        session,
        now_utc=now_utc,
        until_utc=now_utc + timedelta(days=days),
    )
    usernames = await UsersRepo.get_usernames(session, {item.user_id for item in subscriptions})
    return [
        {
            "subscription_id": str(item.id),
            "user_id": item.user_id,
            "username": usernames.get(item.user_id),
            "title": item.title,
            "expires_at": item.expires_at.isoformat(),
            "expires_in_days": math.ceil(
                (item.expires_at - now_utc).total_seconds() / SECONDS_PER_DAY
            ),
            "warning_sent": item.warning_sent,
        }
        for item in subscriptions
    ]
