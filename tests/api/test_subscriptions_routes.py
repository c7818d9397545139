from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from subledger.api.routes import subscriptions as subscriptions_routes
from subledger.economy.subscriptions.errors import (
    DuplicateTransactionError,
    InsufficientBalanceError,
    PlanNotFoundError,
    TransientStoreError,
    UserNotFoundError,
)
from subledger.services import internal_auth
from tests.api.helpers import (
    INTERNAL_HEADERS,
    FakeEngine,
    build_test_app,
    internal_settings,
    purchase_result,
)


@pytest.fixture(autouse=True)
def _internal_settings(monkeypatch) -> None:
    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings())


def test_plans_are_listed_with_computed_prices(catalog) -> None:
    client = TestClient(build_test_app(catalog=catalog))

    response = client.get("/subscriptions/plans")

    assert response.status_code == 200
    plans = {plan["id"]: plan for plan in response.json()["plans"]}
    assert set(plans) == {"monthly", "fortnight", "weekly", "quarterly", "vip"}
    quarterly = plans["quarterly"]
    assert quarterly["duration_text"] == "3 Months"
    assert quarterly["formatted_original"] == "800"
    assert quarterly["formatted_final"] == "600"
    assert quarterly["formatted_discount"] == "200"
    assert quarterly["discount"] == {"type": "percent", "value": "25"}
    assert plans["monthly"]["discount"] is None


def test_purchase_returns_subscription_details() -> None:
    engine = FakeEngine(result=purchase_result())
    client = TestClient(build_test_app(engine=engine), client=("127.0.0.1", 5100))

    response = client.post(
        "/subscriptions/purchase",
        json={"user_id": 1001, "plan_id": "monthly"},
        headers={**INTERNAL_HEADERS, "Idempotency-Key": "order-77"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["formatted_final_price"] == "270"
    assert payload["is_renewal"] is False
    assert payload["message"] == "Subscription Monthly purchased successfully!"
    assert engine.calls == [{"user_id": 1001, "plan_id": "monthly", "idempotency_key": "order-77"}]


def test_purchase_generates_idempotency_key_when_missing() -> None:
    engine = FakeEngine(result=purchase_result(is_renewal=True))
    client = TestClient(build_test_app(engine=engine), client=("127.0.0.1", 5101))

    response = client.post(
        "/subscriptions/purchase",
        json={"user_id": 1001, "plan_id": "monthly"},
        headers=INTERNAL_HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Subscription Monthly renewed successfully!"
    assert str(engine.calls[0]["idempotency_key"]).startswith("purchase:")


@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (PlanNotFoundError("lifetime"), 404, "E_PLAN_NOT_FOUND"),
        (UserNotFoundError(1001), 404, "E_USER_NOT_FOUND"),
        (DuplicateTransactionError("k-1"), 409, "E_DUPLICATE_TRANSACTION"),
        (TransientStoreError("db down"), 503, "E_TRY_AGAIN"),
    ],
)
def test_purchase_errors_map_to_status_codes(error: Exception, status_code: int, code: str) -> None:
    client = TestClient(build_test_app(engine=FakeEngine(error=error)), client=("127.0.0.1", 5102))

    response = client.post(
        "/subscriptions/purchase",
        json={"user_id": 1001, "plan_id": "monthly"},
        headers=INTERNAL_HEADERS,
    )

    assert response.status_code == status_code
    assert response.json()["detail"]["code"] == code
    assert "details" not in response.json()["detail"]


def test_insufficient_balance_reports_amounts() -> None:
    error = InsufficientBalanceError(balance=Decimal("50"), required=Decimal("200"))
    client = TestClient(build_test_app(engine=FakeEngine(error=error)), client=("127.0.0.1", 5103))

    response = client.post(
        "/subscriptions/purchase",
        json={"user_id": 1001, "plan_id": "monthly"},
        headers=INTERNAL_HEADERS,
    )

    assert response.status_code == 402
    detail = response.json()["detail"]
    assert detail["code"] == "E_INSUFFICIENT_BALANCE"
    assert detail["balance"] == "50"
    assert detail["required"] == "200"
    assert detail["message"] == "Insufficient VV balance. You have 50 VV but need 200 VV."


def test_purchase_rejects_invalid_payload() -> None:
    client = TestClient(build_test_app(), client=("127.0.0.1", 5104))

    response = client.post(
        "/subscriptions/purchase",
        json={"user_id": 0, "plan_id": ""},
        headers=INTERNAL_HEADERS,
    )

    assert response.status_code == 422


def test_user_subscription_views(monkeypatch) -> None:
    async def _view(session, *, user_id: int, now_utc, timezone_name: str):
        del session, now_utc, timezone_name
        return {"user_id": user_id, "plan_id": "monthly"}

    async def _history(session, *, user_id: int, now_utc):
        del session, now_utc
        return [{"plan_id": "monthly"}, {"plan_id": "weekly"}]

    monkeypatch.setattr(
        subscriptions_routes,
        "SubscriptionService",
        SimpleNamespace(get_active_subscription_view=_view, list_subscription_history=_history),
    )
    client = TestClient(build_test_app(), client=("127.0.0.1", 5105))

    active = client.get("/users/1001/subscription", headers=INTERNAL_HEADERS)
    history = client.get("/users/1001/subscriptions", headers=INTERNAL_HEADERS)

    assert active.status_code == 200
    assert active.json() == {"user_id": 1001, "subscription": {"user_id": 1001, "plan_id": "monthly"}}
    assert history.status_code == 200
    assert [item["plan_id"] for item in history.json()["subscriptions"]] == ["monthly", "weekly"]
