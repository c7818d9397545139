from __future__ import annotations

import json
import os
from decimal import Decimal

import pytest

from subledger.economy.subscriptions.catalog import (
    CatalogProvider,
    InvalidPlanError,
    parse_plan,
)


def _write(path, payload) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_parse_plan_accepts_alternate_field_names() -> None:
    plan = parse_plan(
        {
            "id": "monthly",
            "name": "Monthly Access",
            "price_vv": "300",
            "duration_days": 30,
            "granted_role_id": 42,
            "discount": {"type": "percent", "value": 10},
        }
    )

    assert plan.title == "Monthly Access"
    assert plan.price == Decimal("300")
    assert plan.duration_days == 30
    assert plan.granted_role_id == "42"
    assert plan.discount is not None
    assert plan.discount.as_dict() == {"type": "percent", "value": "10"}


@pytest.mark.parametrize(
    "raw",
    [
        {"price": 10, "days": 1, "role_id": "1"},
        {"id": "x", "price": -1, "days": 1, "role_id": "1"},
        {"id": "x", "price": "abc", "days": 1, "role_id": "1"},
        {"id": "x", "price": 10, "days": 0, "role_id": "1"},
        {"id": "x", "price": 10, "days": True, "role_id": "1"},
        {"id": "x", "price": 10, "days": 1},
        {"id": "x", "price": 10, "days": 1, "role_id": "1", "discount": {"type": "bogus", "value": 1}},
        {"id": "x", "price": 10, "days": 1, "role_id": "1", "discount": {"type": "percent", "value": 150}},
    ],
)
def test_parse_plan_rejects_invalid_entries(raw) -> None:
    with pytest.raises(InvalidPlanError):
        parse_plan(raw)


def test_catalog_skips_invalid_and_duplicate_entries(tmp_path) -> None:
    path = tmp_path / "plans.json"
    _write(
        path,
        {
            "plans": [
                {"id": "a", "price": 10, "days": 7, "role_id": "1"},
                {"id": "a", "price": 20, "days": 7, "role_id": "1"},
                {"id": "b", "price": 10, "days": 0, "role_id": "1"},
                "not-a-plan",
                {"id": "c", "price": 5, "days": 1, "role_id": "2"},
            ]
        },
    )

    plans = CatalogProvider(path).get_plans()

    assert [plan.id for plan in plans] == ["a", "c"]
    assert plans[0].price == Decimal("10")


def test_catalog_missing_file_yields_empty_catalog(tmp_path) -> None:
    catalog = CatalogProvider(tmp_path / "missing.json")

    assert catalog.get_plans() == ()
    assert catalog.get_plan("a") is None


def test_catalog_malformed_json_yields_empty_catalog(tmp_path) -> None:
    path = tmp_path / "plans.json"
    path.write_text("{not json", encoding="utf-8")

    assert CatalogProvider(path).get_plans() == ()


def test_catalog_reloads_when_file_changes(tmp_path) -> None:
    path = tmp_path / "plans.json"
    _write(path, [{"id": "a", "price": 10, "days": 7, "role_id": "1"}])
    catalog = CatalogProvider(path)
    assert catalog.get_plan("a") is not None

    _write(path, [{"id": "b", "price": 10, "days": 7, "role_id": "1"}])
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

    assert catalog.get_plan("a") is None
    assert catalog.get_plan("b") is not None


def test_catalog_serves_cache_until_mtime_moves(tmp_path) -> None:
    path = tmp_path / "plans.json"
    _write(path, [{"id": "a", "price": 10, "days": 7, "role_id": "1"}])
    catalog = CatalogProvider(path)
    first = catalog.get_plans()
    original_mtime = path.stat().st_mtime_ns

    _write(path, [{"id": "b", "price": 10, "days": 7, "role_id": "1"}])
    os.utime(path, ns=(original_mtime, original_mtime))

    assert catalog.get_plans() is first
    assert [plan.id for plan in catalog.get_plans(force_reload=True)] == ["b"]
