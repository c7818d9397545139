from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from fastapi import FastAPI

from subledger.economy.subscriptions.types import (
    PriceBreakdown,
    PurchaseResult,
    SubscriptionSnapshot,
    TransactionSnapshot,
    UserSnapshot,
)
from subledger.main import create_app
from tests.fakes import NOW_UTC, ROLE_ID, FixedClock

INTERNAL_TOKEN = "internal-secret"
INTERNAL_HEADERS = {"X-Internal-Token": INTERNAL_TOKEN}


def internal_settings(*, allowlist: str = "127.0.0.1/32", trusted_proxies: str = "") -> SimpleNamespace:
    return SimpleNamespace(
        internal_api_token=INTERNAL_TOKEN,
        internal_api_allowlist=allowlist,
        internal_api_trusted_proxies=trusted_proxies,
    )


class NullSession:
    async def __aenter__(self) -> NullSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class NullSessionFactory:
    def __call__(self) -> NullSession:
        return NullSession()

    def begin(self) -> NullSession:
        return NullSession()


class FakeEngine:
    def __init__(self, *, result: PurchaseResult | None = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[dict[str, object]] = []

    async def purchase(self, *, user_id: int, plan_id: str, idempotency_key: str) -> PurchaseResult:
        self.calls.append({"user_id": user_id, "plan_id": plan_id, "idempotency_key": idempotency_key})
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


def purchase_result(*, is_renewal: bool = False) -> PurchaseResult:
    price = PriceBreakdown(original=Decimal("300"), final=Decimal("270"), discount_amount=Decimal("30"))
    return PurchaseResult(
        final_price=price.final,
        price=price,
        user=UserSnapshot(id=1001, username="neo", balance=Decimal("230")),
        subscription=SubscriptionSnapshot(
            id=uuid4(),
            user_id=1001,
            plan_id="monthly",
            title="Monthly",
            granted_role_id=ROLE_ID,
            status="active",
            started_at=NOW_UTC,
            expires_at=NOW_UTC + timedelta(days=30),
            duration_days=30,
            paid_price=price.final,
            total_paid=price.final,
            renewal_count=1 if is_renewal else 0,
        ),
        transaction=TransactionSnapshot(
            id=uuid4(),
            idempotency_key="k-1",
            type="renewal" if is_renewal else "purchase",
            amount=price.original,
            final_price=price.final,
            discount_amount=price.discount_amount,
            balance_before=Decimal("500"),
            balance_after=Decimal("230"),
            created_at=NOW_UTC,
        ),
        is_renewal=is_renewal,
    )


def build_test_app(*, catalog=None, engine=None, scheduler=None) -> FastAPI:
    app = create_app()
    app.state.services = SimpleNamespace(
        catalog=catalog,
        engine=engine or FakeEngine(),
        clock=FixedClock(NOW_UTC),
        outbox=SimpleNamespace(counters={"published": 0, "dropped": 0}, pending=0),
    )
    app.state.session_factory = NullSessionFactory()
    app.state.scheduler = scheduler
    return app
