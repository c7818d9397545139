from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.db.models.users import User


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: int) -> User | None:
        return await session.get(User, user_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, user_id: int) -> User | None:
        stmt = select(User).where(User.id == user_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_usernames(session: AsyncSession, user_ids: set[int]) -> dict[int, str | None]:
        if not user_ids:
            return {}
        stmt = select(User.id, User.username).where(User.id.in_(tuple(user_ids)))
        result = await session.execute(stmt)
        return {int(row.id): row.username for row in result}

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        user_id: int,
        username: str | None,
        balance: Decimal,
        now_utc: datetime,
    ) -> User:
        user = User(
            id=user_id,
            username=username,
            balance=balance,
            created_at=now_utc,
            updated_at=now_utc,
        )
        session.add(user)
        await session.flush()
        return user

    @staticmethod
    async def set_balance(
        session: AsyncSession,
        *,
        user_id: int,
        amount: Decimal,
        now_utc: datetime,
    ) -> int:
        stmt = update(User).where(User.id == user_id).values(balance=amount, updated_at=now_utc)
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def add_balance(
        session: AsyncSession,
        *,
        user_id: int,
        amount: Decimal,
        now_utc: datetime,
    ) -> int:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(balance=User.balance + amount, updated_at=now_utc)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def subtract_balance(
        session: AsyncSession,
        *,
        user_id: int,
        amount: Decimal,
        now_utc: datetime,
    ) -> int:
        clamped = case((User.balance > amount, User.balance - amount), else_=Decimal("0"))
        stmt = update(User).where(User.id == user_id).values(balance=clamped, updated_at=now_utc)
        result = await session.execute(stmt)
        return result.rowcount or 0
