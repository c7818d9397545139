from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.db.models.subscriptions import (
    SUBSCRIPTION_STATUS_ACTIVE,
    SUBSCRIPTION_STATUS_EXPIRED,
    Subscription,
)

SweepCursor = tuple[datetime, UUID]


def _page_after(stmt: Select, after: SweepCursor | None) -> Select:
    if after is not None:
        last_expires_at, last_id = after
        stmt = stmt.where(
            or_(
                Subscription.expires_at > last_expires_at,
                and_(Subscription.expires_at == last_expires_at, Subscription.id > last_id),
            )
        )
    return stmt.order_by(Subscription.expires_at.asc(), Subscription.id.asc())


class SubscriptionsRepo:
    @staticmethod
    async def _get_active_for_user(
        session: AsyncSession,
        user_id: int,
        now_utc: datetime,
        for_update: bool = False,
    ) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == SUBSCRIPTION_STATUS_ACTIVE,
                Subscription.expires_at > now_utc,
            )
            .order_by(Subscription.expires_at.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active_for_user(
        session: AsyncSession,
        user_id: int,
        now_utc: datetime,
    ) -> Subscription | None:
        return await SubscriptionsRepo._get_active_for_user(session, user_id, now_utc)

    @staticmethod
    async def get_active_for_user_for_update(
        session: AsyncSession,
        user_id: int,
        now_utc: datetime,
    ) -> Subscription | None:
        return await SubscriptionsRepo._get_active_for_user(
            session,
            user_id,
            now_utc,
            for_update=True,
        )

    @staticmethod
    async def get_by_id_for_update(
        session: AsyncSession,
        subscription_id: UUID,
    ) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.id == subscription_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(session: AsyncSession, *, subscription: Subscription) -> Subscription:
        session.add(subscription)
        await session.flush()
        return subscription

    @staticmethod
    async def list_warning_candidates(
        session: AsyncSession,
        *,
        now_utc: datetime,
        window_end_utc: datetime,
        limit: int,
        after: SweepCursor | None = None,
    ) -> list[SweepCursor]:
        stmt = select(Subscription.expires_at, Subscription.id).where(
            Subscription.status == SUBSCRIPTION_STATUS_ACTIVE,
            Subscription.warning_sent.is_(False),
            Subscription.expires_at > now_utc,
            Subscription.expires_at <= window_end_utc,
        )
        stmt = _page_after(stmt, after).limit(limit)
        result = await session.execute(stmt)
        return [(row.expires_at, row.id) for row in result]

    @staticmethod
    async def list_expiry_candidates(
        session: AsyncSession,
        *,
        now_utc: datetime,
        limit: int,
        after: SweepCursor | None = None,
    ) -> list[SweepCursor]:
        stmt = select(Subscription.expires_at, Subscription.id).where(
            Subscription.status == SUBSCRIPTION_STATUS_ACTIVE,
            Subscription.expires_at < now_utc,
        )
        stmt = _page_after(stmt, after).limit(limit)
        result = await session.execute(stmt)
        return [(row.expires_at, row.id) for row in result]

    @staticmethod
    async def has_other_active_with_role(
        session: AsyncSession,
        *,
        user_id: int,
        role_id: str,
        exclude_subscription_id: UUID,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            select(Subscription.id)
            .where(
                Subscription.user_id == user_id,
                Subscription.granted_role_id == role_id,
                Subscription.id != exclude_subscription_id,
                Subscription.status == SUBSCRIPTION_STATUS_ACTIVE,
                Subscription.expires_at > now_utc,
            )
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def count_active(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = select(func.count(Subscription.id)).where(
            Subscription.status == SUBSCRIPTION_STATUS_ACTIVE,
            Subscription.expires_at > now_utc,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_by_status(session: AsyncSession) -> dict[str, int]:
        stmt = select(Subscription.status, func.count(Subscription.id)).group_by(
            Subscription.status
        )
        result = await session.execute(stmt)
        counts = {SUBSCRIPTION_STATUS_ACTIVE: 0, SUBSCRIPTION_STATUS_EXPIRED: 0}
        for status, count in result:
            counts[str(status)] = int(count)
        return counts

    @staticmethod
    async def sum_total_paid(session: AsyncSession) -> Decimal:
        stmt = select(func.coalesce(func.sum(Subscription.total_paid), 0))
        result = await session.execute(stmt)
        return Decimal(str(result.scalar_one()))

    @staticmethod
    async def list_created_since(
        session: AsyncSession,
        *,
        since_utc: datetime,
    ) -> list[tuple[datetime, Decimal]]:
        stmt = (
            select(Subscription.created_at, Subscription.paid_price)
            .where(Subscription.created_at >= since_utc)
            .order_by(Subscription.created_at.asc())
        )
        result = await session.execute(stmt)
        return [(row.created_at, row.paid_price) for row in result]

    @staticmethod
    async def list_expiring_between(
        session: AsyncSession,
        *,
        now_utc: datetime,
        until_utc: datetime,
        limit: int = 100,
    ) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(
                Subscription.status == SUBSCRIPTION_STATUS_ACTIVE,
                Subscription.expires_at > now_utc,
                Subscription.expires_at <= until_utc,
            )
            .order_by(Subscription.expires_at.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_for_user(
        session: AsyncSession,
        *,
        user_id: int,
        limit: int = 50,
    ) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
