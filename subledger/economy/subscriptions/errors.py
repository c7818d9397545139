from __future__ import annotations

from decimal import Decimal


class SubscriptionError(Exception):
    pass


class PlanNotFoundError(SubscriptionError):
    def __init__(self, plan_id: str) -> None:
        super().__init__(f"plan not found: {plan_id}")
        self.plan_id = plan_id


class UserNotFoundError(SubscriptionError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"user not found: {user_id}")
        self.user_id = user_id


class InsufficientBalanceError(SubscriptionError):
    def __init__(self, *, balance: Decimal, required: Decimal) -> None:
        super().__init__(f"insufficient balance: have {balance}, need {required}")
        self.balance = balance
        self.required = required


class DuplicateTransactionError(SubscriptionError):
    def __init__(self, idempotency_key: str) -> None:
        super().__init__(f"duplicate transaction: {idempotency_key}")
        self.idempotency_key = idempotency_key


class TransientStoreError(SubscriptionError):
    pass


class NotificationError(Exception):
    pass
