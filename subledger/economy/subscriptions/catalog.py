from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

DISCOUNT_TYPE_PERCENT = "percent"
DISCOUNT_TYPE_FIXED = "fixed"
DISCOUNT_TYPES = frozenset({DISCOUNT_TYPE_PERCENT, DISCOUNT_TYPE_FIXED})


@dataclass(frozen=True, slots=True)
class Discount:
    type: str
    value: Decimal

    def as_dict(self) -> dict[str, object]:
        return {"type": self.type, "value": str(self.value)}


@dataclass(frozen=True, slots=True)
class Plan:
    id: str
    title: str
    price: Decimal
    duration_days: int
    granted_role_id: str
    discount: Discount | None = None
    description: str | None = None


class InvalidPlanError(ValueError):
    pass


def _parse_decimal(raw: object, *, field: str) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidPlanError(f"{field} is not a number") from exc
    if not value.is_finite() or value < 0:
        raise InvalidPlanError(f"{field} must be a non-negative number")
    return value


def _parse_discount(raw: object) -> Discount | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise InvalidPlanError("discount must be an object")
    discount_type = raw.get("type")
    if discount_type not in DISCOUNT_TYPES:
        raise InvalidPlanError(f"unsupported discount type: {discount_type!r}")
    value = _parse_decimal(raw.get("value"), field="discount.value")
    if discount_type == DISCOUNT_TYPE_PERCENT and value > 100:
        raise InvalidPlanError("percent discount must be <= 100")
    return Discount(type=str(discount_type), value=value)


def parse_plan(raw: Mapping[str, object]) -> Plan:
    plan_id = raw.get("id")
    if not isinstance(plan_id, str) or not plan_id.strip():
        raise InvalidPlanError("id is required")

    raw_price = raw.get("price", raw.get("price_vv"))
    price = _parse_decimal(raw_price, field="price")

    raw_days = raw.get("days", raw.get("duration_days"))
    if isinstance(raw_days, bool) or not isinstance(raw_days, int) or raw_days <= 0:
        raise InvalidPlanError("days must be a positive integer")

    role_id = raw.get("role_id", raw.get("granted_role_id"))
    if role_id is None or not str(role_id).strip():
        raise InvalidPlanError("role_id is required")

    title = raw.get("title") or raw.get("name") or plan_id
    description = raw.get("description")
    return Plan(
        id=plan_id.strip(),
        title=str(title),
        price=price,
        duration_days=raw_days,
        granted_role_id=str(role_id).strip(),
        discount=_parse_discount(raw.get("discount")),
        description=str(description) if description is not None else None,
    )


class CatalogProvider:
    """Plan catalog backed by a JSON file, reloaded when the file changes.

    The cache is keyed on the file's modification time. Concurrent refreshes
    are harmless: the last one to finish wins.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._plans: tuple[Plan, ...] | None = None
        self._loaded_mtime_ns: int | None = None

    @property
    def path(self) -> Path:
        return self._path

    def get_plans(self, force_reload: bool = False) -> tuple[Plan, ...]:
        try:
            mtime_ns = self._path.stat().st_mtime_ns
        except OSError:
            logger.warning("subscription_plans_unavailable", path=str(self._path))
            return ()

        if (
            self._plans is None
            or force_reload
            or self._loaded_mtime_ns is None
            or mtime_ns > self._loaded_mtime_ns
        ):
            try:
                self._plans = self._load()
            except (OSError, ValueError):
                logger.exception("subscription_plans_load_failed", path=str(self._path))
                return ()
            self._loaded_mtime_ns = mtime_ns
            logger.info(
                "subscription_plans_cache_updated",
                path=str(self._path),
                plans_total=len(self._plans),
            )
        return self._plans

    def get_plan(self, plan_id: str) -> Plan | None:
        for plan in self.get_plans():
            if plan.id == plan_id:
                return plan
        return None

    def _load(self) -> tuple[Plan, ...]:
        payload = json.loads(self._path.read_text(encoding="utf-8"))
        if isinstance(payload, Mapping):
            payload = payload.get("plans", [])
        if not isinstance(payload, list):
            raise ValueError("plans file must contain a JSON array")

        plans: list[Plan] = []
        seen_ids: set[str] = set()
        for index, raw in enumerate(payload):
            if not isinstance(raw, Mapping):
                logger.warning("subscription_plan_skipped", index=index, reason="not_an_object")
                continue
            try:
                plan = parse_plan(raw)
            except InvalidPlanError as exc:
                logger.warning("subscription_plan_skipped", index=index, reason=str(exc))
                continue
            if plan.id in seen_ids:
                logger.warning("subscription_plan_skipped", index=index, reason="duplicate_id")
                continue
            seen_ids.add(plan.id)
            plans.append(plan)
        return tuple(plans)
