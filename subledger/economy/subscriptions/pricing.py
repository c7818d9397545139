from __future__ import annotations

from decimal import Decimal

from subledger.core.formatting import format_amount
from subledger.economy.subscriptions.catalog import (
    DISCOUNT_TYPE_FIXED,
    DISCOUNT_TYPE_PERCENT,
    Plan,
)
from subledger.economy.subscriptions.types import PriceBreakdown

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def calculate_price(plan: Plan) -> PriceBreakdown:
    original = plan.price
    discount = plan.discount
    if discount is None:
        return PriceBreakdown(original=original, final=original, discount_amount=ZERO)

    if discount.type == DISCOUNT_TYPE_PERCENT:
        final = original * (HUNDRED - discount.value) / HUNDRED
    elif discount.type == DISCOUNT_TYPE_FIXED:
        final = original - discount.value
    else:
        final = original

    final = max(ZERO, final)
    return PriceBreakdown(original=original, final=final, discount_amount=original - final)


def describe_price(price: PriceBreakdown) -> dict[str, str]:
    return {
        "formatted_original": format_amount(price.original),
        "formatted_final": format_amount(price.final),
        "formatted_discount": format_amount(price.discount_amount),
    }
