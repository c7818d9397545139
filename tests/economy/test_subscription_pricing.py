from __future__ import annotations

from decimal import Decimal

from subledger.economy.subscriptions.catalog import Discount, Plan
from subledger.economy.subscriptions.pricing import calculate_price, describe_price


def _plan(price: str, discount: Discount | None = None) -> Plan:
    return Plan(
        id="p",
        title="Plan",
        price=Decimal(price),
        duration_days=30,
        granted_role_id="1",
        discount=discount,
    )


def test_calculate_price_without_discount_keeps_original() -> None:
    price = calculate_price(_plan("300"))

    assert price.original == Decimal("300")
    assert price.final == Decimal("300")
    assert price.discount_amount == Decimal("0")
    assert price.has_discount is False


def test_calculate_price_applies_percent_discount() -> None:
    price = calculate_price(_plan("100", Discount(type="percent", value=Decimal("25"))))

    assert price.final == Decimal("75")
    assert price.discount_amount == Decimal("25")
    assert price.has_discount is True


def test_calculate_price_applies_fixed_discount() -> None:
    price = calculate_price(_plan("800", Discount(type="fixed", value=Decimal("50"))))

    assert price.final == Decimal("750")
    assert price.discount_amount == Decimal("50")


def test_calculate_price_floors_fixed_discount_at_zero() -> None:
    price = calculate_price(_plan("100", Discount(type="fixed", value=Decimal("150"))))

    assert price.final == Decimal("0")
    assert price.discount_amount == Decimal("100")


def test_calculate_price_full_percent_discount_is_free() -> None:
    price = calculate_price(_plan("100", Discount(type="percent", value=Decimal("100"))))

    assert price.final == Decimal("0")
    assert price.discount_amount == Decimal("100")


def test_describe_price_formats_all_amounts() -> None:
    price = calculate_price(_plan("2500.5", Discount(type="percent", value=Decimal("10"))))

    assert describe_price(price) == {
        "formatted_original": "2,500.5",
        "formatted_final": "2,250.45",
        "formatted_discount": "250.05",
    }
