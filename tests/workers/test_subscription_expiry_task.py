from __future__ import annotations

from subledger.workers.tasks import subscription_expiry


def test_run_expiry_sweep_wraps_async_job(monkeypatch) -> None:
    async def _fake_sweep() -> dict[str, object]:
        return {"expiry": {"expired": 2}, "dispatched": 3}

    monkeypatch.setattr(subscription_expiry, "run_expiry_sweep_async", _fake_sweep)

    result = subscription_expiry.run_expiry_sweep()

    assert result == {"expiry": {"expired": 2}, "dispatched": 3}


def test_run_recovery_sweep_wraps_async_job(monkeypatch) -> None:
    async def _fake_sweep() -> dict[str, object]:
        return {"expiry": {"expired": 0}, "dispatched": 0}

    monkeypatch.setattr(subscription_expiry, "run_recovery_sweep_async", _fake_sweep)

    result = subscription_expiry.run_recovery_sweep()

    assert result["dispatched"] == 0


def test_tasks_are_registered_on_celery_app() -> None:
    registered = set(subscription_expiry.celery_app.tasks)

    assert "subledger.workers.tasks.subscription_expiry.run_expiry_sweep" in registered
    assert "subledger.workers.tasks.subscription_expiry.run_recovery_sweep" in registered
