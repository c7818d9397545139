from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from subledger.db.repo.subscriptions_repo import SubscriptionsRepo
from subledger.db.repo.transactions_repo import TransactionsRepo
from subledger.db.repo.users_repo import UsersRepo
from subledger.economy.subscriptions.catalog import Plan
from subledger.economy.subscriptions.errors import (
    DuplicateTransactionError,
    InsufficientBalanceError,
    UserNotFoundError,
)
from subledger.economy.subscriptions.types import (
    PriceBreakdown,
    PurchaseResult,
    SubscriptionSnapshot,
    TransactionSnapshot,
    UserSnapshot,
)

from .builder import _build_subscription, _build_transaction, _extend_subscription


async def apply_purchase(
    session: AsyncSession,
    *,
    user_id: int,
    plan: Plan,
    price: PriceBreakdown,
    idempotency_key: str,
    now_utc: datetime,
) -> PurchaseResult:
    """Debit the balance and create or extend the user's subscription.

    Must run inside an open transaction. The user row is locked first so two
    purchases by the same user serialize on it; the idempotency key is checked
    again under that lock before the balance is looked at.
    """
    user = await UsersRepo.get_by_id_for_update(session, user_id)

    existing = await TransactionsRepo.get_by_idempotency_key(session, idempotency_key)
    if existing is not None:
        raise DuplicateTransactionError(idempotency_key)

    if user is None:
        raise UserNotFoundError(user_id)

    balance_before = user.balance
    if balance_before < price.final:
        raise InsufficientBalanceError(balance=balance_before, required=price.final)

    active = await SubscriptionsRepo.get_active_for_user_for_update(session, user_id, now_utc)
    is_renewal = active is not None
    superseded_role_id: str | None = None
    if active is not None:
        if active.granted_role_id != plan.granted_role_id:
            superseded_role_id = active.granted_role_id
        subscription = _extend_subscription(active, plan, price=price, now_utc=now_utc)
    else:
        subscription = await SubscriptionsRepo.create(
            session,
            subscription=_build_subscription(plan, user_id=user_id, price=price, now_utc=now_utc),
        )

    balance_after = balance_before - price.final
    user.balance = balance_after
    user.updated_at = now_utc

    transaction = await TransactionsRepo.create(
        session,
        transaction=_build_transaction(
            plan,
            user_id=user_id,
            subscription_id=subscription.id,
            idempotency_key=idempotency_key,
            price=price,
            is_renewal=is_renewal,
            balance_before=balance_before,
            balance_after=balance_after,
            now_utc=now_utc,
        ),
    )

    return PurchaseResult(
        final_price=price.final,
        price=price,
        user=UserSnapshot.from_model(user),
        subscription=SubscriptionSnapshot.from_model(subscription),
        transaction=TransactionSnapshot.from_model(transaction),
        is_renewal=is_renewal,
        superseded_role_id=superseded_role_id,
    )
