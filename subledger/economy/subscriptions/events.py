from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from subledger.economy.subscriptions.catalog import Plan
from subledger.economy.subscriptions.types import (
    PurchaseResult,
    SubscriptionSnapshot,
    TransactionSnapshot,
    UserSnapshot,
)

EVENT_PURCHASED = "purchased"
EVENT_RENEWED = "renewed"
EVENT_WARNING = "warning"
EVENT_EXPIRED = "expired"
EVENT_PRESENCE = "presence"


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    kind: str
    occurred_at: datetime
    subscription: SubscriptionSnapshot | None = None
    user: UserSnapshot | None = None
    plan: Plan | None = None
    transaction: TransactionSnapshot | None = None
    superseded_role_id: str | None = None
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def is_renewal(self) -> bool:
        return self.kind == EVENT_RENEWED


class EventPublisher(Protocol):
    def publish(self, event: LifecycleEvent) -> None: ...


def purchase_event(result: PurchaseResult, *, plan: Plan, occurred_at: datetime) -> LifecycleEvent:
    return LifecycleEvent(
        kind=EVENT_RENEWED if result.is_renewal else EVENT_PURCHASED,
        occurred_at=occurred_at,
        subscription=result.subscription,
        user=result.user,
        plan=plan,
        transaction=result.transaction,
        superseded_role_id=result.superseded_role_id,
    )


def warning_event(subscription: SubscriptionSnapshot, *, occurred_at: datetime) -> LifecycleEvent:
    return LifecycleEvent(kind=EVENT_WARNING, occurred_at=occurred_at, subscription=subscription)


def expired_event(subscription: SubscriptionSnapshot, *, occurred_at: datetime) -> LifecycleEvent:
    return LifecycleEvent(kind=EVENT_EXPIRED, occurred_at=occurred_at, subscription=subscription)


def presence_event(*, occurred_at: datetime, reason: str) -> LifecycleEvent:
    return LifecycleEvent(kind=EVENT_PRESENCE, occurred_at=occurred_at, metadata={"reason": reason})
