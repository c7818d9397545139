from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from subledger.db.models.subscriptions import Subscription
from subledger.db.models.transactions import Transaction
from subledger.db.models.users import User


@dataclass(frozen=True, slots=True)
class PriceBreakdown:
    original: Decimal
    final: Decimal
    discount_amount: Decimal

    @property
    def has_discount(self) -> bool:
        return self.discount_amount > 0


@dataclass(frozen=True, slots=True)
class UserSnapshot:
    id: int
    username: str | None
    balance: Decimal

    @classmethod
    def from_model(cls, user: User) -> UserSnapshot:
        return cls(id=user.id, username=user.username, balance=user.balance)


@dataclass(frozen=True, slots=True)
class SubscriptionSnapshot:
    id: UUID
    user_id: int
    plan_id: str
    title: str
    granted_role_id: str
    status: str
    started_at: datetime
    expires_at: datetime
    duration_days: int
    paid_price: Decimal
    total_paid: Decimal
    renewal_count: int
    expired_at: datetime | None = None

    @classmethod
    def from_model(cls, subscription: Subscription) -> SubscriptionSnapshot:
        return cls(
            id=subscription.id,
            user_id=subscription.user_id,
            plan_id=subscription.plan_id,
            title=subscription.title,
            granted_role_id=subscription.granted_role_id,
            status=subscription.status,
            started_at=subscription.started_at,
            expires_at=subscription.expires_at,
            duration_days=subscription.duration_days,
            paid_price=subscription.paid_price,
            total_paid=subscription.total_paid,
            renewal_count=subscription.renewal_count,
            expired_at=subscription.expired_at,
        )


@dataclass(frozen=True, slots=True)
class TransactionSnapshot:
    id: UUID
    idempotency_key: str
    type: str
    amount: Decimal
    final_price: Decimal
    discount_amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    created_at: datetime

    @classmethod
    def from_model(cls, transaction: Transaction) -> TransactionSnapshot:
        return cls(
            id=transaction.id,
            idempotency_key=transaction.idempotency_key,
            type=transaction.type,
            amount=transaction.amount,
            final_price=transaction.final_price,
            discount_amount=transaction.discount_amount,
            balance_before=transaction.balance_before,
            balance_after=transaction.balance_after,
            created_at=transaction.created_at,
        )


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    final_price: Decimal
    price: PriceBreakdown
    user: UserSnapshot
    subscription: SubscriptionSnapshot
    transaction: TransactionSnapshot
    is_renewal: bool
    superseded_role_id: str | None = None
