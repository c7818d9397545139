from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from subledger.api.routes import internal_subscriptions as internal_routes
from subledger.economy.balance.errors import BalanceUserNotFoundError, UserAlreadyExistsError
from subledger.services import internal_auth
from tests.api.helpers import INTERNAL_HEADERS, INTERNAL_TOKEN, build_test_app, internal_settings


class _FakeScheduler:
    is_running = True
    last_run_at = None
    next_run_at = None

    def __init__(self) -> None:
        self.runs = 0

    async def run_periodic_sweep(self) -> dict[str, dict[str, int]]:
        self.runs += 1
        return {"warning": {"warned": 1}, "expiry": {"expired": 2}}


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("GET", "/internal/subscriptions/stats"),
        ("GET", "/internal/subscriptions/upcoming"),
        ("POST", "/internal/subscriptions/expiry-check"),
        ("POST", "/subscriptions/purchase"),
        ("GET", "/users/1/subscription"),
    ],
)
def test_internal_routes_reject_missing_token(monkeypatch, method: str, path: str) -> None:
    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings())
    client = TestClient(build_test_app(), client=("127.0.0.1", 5200))

    response = client.request(method, path, json={"user_id": 1, "plan_id": "monthly"})

    assert response.status_code == 403
    assert response.json()["detail"] == {"code": "E_FORBIDDEN"}


def test_internal_routes_reject_ip_outside_allowlist(monkeypatch) -> None:
    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings(allowlist="10.0.0.0/8"))
    client = TestClient(build_test_app(), client=("127.0.0.1", 5201))

    response = client.get("/internal/subscriptions/stats", headers=INTERNAL_HEADERS)

    assert response.status_code == 403


def test_forwarded_for_is_ignored_from_untrusted_peer(monkeypatch) -> None:
    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings(allowlist="10.1.2.3/32"))
    client = TestClient(build_test_app(), client=("127.0.0.1", 5202))

    response = client.get(
        "/internal/subscriptions/stats",
        headers={**INTERNAL_HEADERS, "X-Forwarded-For": "10.1.2.3"},
    )

    assert response.status_code == 403


def test_forwarded_for_is_used_behind_trusted_proxy(monkeypatch) -> None:
    monkeypatch.setattr(
        internal_auth,
        "get_settings",
        lambda: internal_settings(allowlist="10.1.2.3/32", trusted_proxies="127.0.0.1/32"),
    )
    scheduler = _FakeScheduler()
    client = TestClient(build_test_app(scheduler=scheduler), client=("127.0.0.1", 5203))

    response = client.post(
        "/internal/subscriptions/expiry-check",
        headers={"X-Internal-Token": INTERNAL_TOKEN, "X-Forwarded-For": "10.1.2.3, 127.0.0.1"},
    )

    assert response.status_code == 200
    assert scheduler.runs == 1


def test_force_expiry_check_without_scheduler(monkeypatch) -> None:
    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings())
    client = TestClient(build_test_app(scheduler=None), client=("127.0.0.1", 5204))

    response = client.post("/internal/subscriptions/expiry-check", headers=INTERNAL_HEADERS)

    assert response.status_code == 503
    assert response.json()["detail"] == {"code": "E_SCHEDULER_UNAVAILABLE"}


def test_stats_include_scheduler_and_outbox_state(monkeypatch) -> None:
    async def _stats(session, *, now_utc):
        del session, now_utc
        return {"active": 3, "expired": 1, "total_revenue": "900"}

    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings())
    monkeypatch.setattr(
        internal_routes,
        "SubscriptionService",
        SimpleNamespace(get_subscription_stats=_stats),
    )
    client = TestClient(build_test_app(scheduler=_FakeScheduler()), client=("127.0.0.1", 5205))

    response = client.get("/internal/subscriptions/stats", headers=INTERNAL_HEADERS)

    assert response.status_code == 200
    payload = response.json()
    assert payload["active"] == 3
    assert payload["scheduler"] == {"running": True, "last_run_at": None, "next_run_at": None}
    assert payload["outbox"] == {"published": 0, "dropped": 0, "pending": 0}


def test_upcoming_rejects_out_of_range_days(monkeypatch) -> None:
    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings())
    client = TestClient(build_test_app(), client=("127.0.0.1", 5206))

    response = client.get("/internal/subscriptions/upcoming?days=0", headers=INTERNAL_HEADERS)

    assert response.status_code == 422


def test_balance_adjustment_rejects_unknown_operation(monkeypatch) -> None:
    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings())
    client = TestClient(build_test_app(), client=("127.0.0.1", 5207))

    response = client.post(
        "/internal/users/1001/balance",
        json={"operation": "multiply", "amount": "2"},
        headers=INTERNAL_HEADERS,
    )

    assert response.status_code == 422
    assert response.json()["detail"] == {"code": "E_BALANCE_OPERATION_INVALID"}


def test_balance_adjustment_for_unknown_user(monkeypatch) -> None:
    async def _missing(session, **kwargs):
        del session, kwargs
        raise BalanceUserNotFoundError

    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings())
    monkeypatch.setattr(internal_routes, "BalanceService", SimpleNamespace(adjust_balance=_missing))
    client = TestClient(build_test_app(), client=("127.0.0.1", 5208))

    response = client.post(
        "/internal/users/404/balance",
        json={"operation": "add", "amount": "10"},
        headers=INTERNAL_HEADERS,
    )

    assert response.status_code == 404
    assert response.json()["detail"] == {"code": "E_USER_NOT_FOUND"}


def test_register_existing_user_conflicts(monkeypatch) -> None:
    async def _exists(session, **kwargs):
        del session, kwargs
        raise UserAlreadyExistsError

    monkeypatch.setattr(internal_auth, "get_settings", lambda: internal_settings())
    monkeypatch.setattr(internal_routes, "BalanceService", SimpleNamespace(register_user=_exists))
    client = TestClient(build_test_app(), client=("127.0.0.1", 5209))

    response = client.post("/internal/users", json={"user_id": 1001}, headers=INTERNAL_HEADERS)

    assert response.status_code == 409
    assert response.json()["detail"] == {"code": "E_USER_EXISTS"}
