from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.db.models.users import User
from subledger.db.repo.users_repo import UsersRepo
from subledger.economy.balance.errors import (
    BalanceAdjustmentError,
    BalanceUserNotFoundError,
    UserAlreadyExistsError,
)
from subledger.economy.balance.types import (
    BALANCE_OPERATION_ADD,
    BALANCE_OPERATION_SET,
    BALANCE_OPERATION_SUBTRACT,
    BALANCE_OPERATIONS,
    BalanceAdjustmentResult,
)

logger = structlog.get_logger(__name__)


class BalanceService:
    @staticmethod
    async def register_user(
        session: AsyncSession,
        *,
        user_id: int,
        username: str | None,
        initial_balance: Decimal,
        now_utc: datetime,
    ) -> User:
        existing = await UsersRepo.get_by_id(session, user_id)
        if existing is not None:
            raise UserAlreadyExistsError
        user = await UsersRepo.create(
            session,
            user_id=user_id,
            username=username,
            balance=initial_balance,
            now_utc=now_utc,
        )
        logger.info("user_registered", user_id=user_id, balance=str(initial_balance))
        return user

    @staticmethod
    async def adjust_balance(
        session: AsyncSession,
        *,
        user_id: int,
        operation: str,
        amount: Decimal,
        now_utc: datetime,
        reason: str | None = None,
    ) -> BalanceAdjustmentResult:
        if operation not in BALANCE_OPERATIONS:
            raise BalanceAdjustmentError(f"unsupported operation: {operation}")
        if not amount.is_finite() or amount < 0:
            raise BalanceAdjustmentError("amount must be a non-negative number")

        user = await UsersRepo.get_by_id_for_update(session, user_id)
        if user is None:
            raise BalanceUserNotFoundError

        balance_before = user.balance
        if operation == BALANCE_OPERATION_SET:
            await UsersRepo.set_balance(session, user_id=user_id, amount=amount, now_utc=now_utc)
        elif operation == BALANCE_OPERATION_ADD:
            await UsersRepo.add_balance(session, user_id=user_id, amount=amount, now_utc=now_utc)
        elif operation == BALANCE_OPERATION_SUBTRACT:
            await UsersRepo.subtract_balance(
                session,
                user_id=user_id,
                amount=amount,
                now_utc=now_utc,
            )

        await session.refresh(user)
        result = BalanceAdjustmentResult(
            user_id=user_id,
            operation=operation,
            amount=amount,
            balance_before=balance_before,
            balance_after=user.balance,
        )
        logger.info(
            "user_balance_adjusted",
            user_id=user_id,
            operation=operation,
            amount=str(amount),
            balance_before=str(result.balance_before),
            balance_after=str(result.balance_after),
            reason=reason,
        )
        return result
