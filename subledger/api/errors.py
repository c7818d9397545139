from __future__ import annotations

from fastapi import HTTPException

from subledger.core.config import get_settings
from subledger.core.formatting import format_amount
from subledger.economy.subscriptions.errors import (
    DuplicateTransactionError,
    InsufficientBalanceError,
    PlanNotFoundError,
    SubscriptionError,
    TransientStoreError,
    UserNotFoundError,
)

GENERIC_TRY_AGAIN_MESSAGE = "Something went wrong while processing your purchase. Please try again."


def _detail(code: str, message: str, exc: Exception, **extra: object) -> dict[str, object]:
    detail: dict[str, object] = {"code": code, "message": message, **extra}
    if get_settings().is_dev:
        detail["details"] = str(exc)
    return detail


def subscription_http_error(exc: SubscriptionError) -> HTTPException:
    currency = get_settings().currency_label
    if isinstance(exc, PlanNotFoundError):
        return HTTPException(
            status_code=404,
            detail=_detail("E_PLAN_NOT_FOUND", "The selected plan does not exist.", exc),
        )
    if isinstance(exc, UserNotFoundError):
        return HTTPException(
            status_code=404,
            detail=_detail("E_USER_NOT_FOUND", "User account was not found.", exc),
        )
    if isinstance(exc, InsufficientBalanceError):
        balance = format_amount(exc.balance)
        required = format_amount(exc.required)
        return HTTPException(
            status_code=402,
            detail=_detail(
                "E_INSUFFICIENT_BALANCE",
                f"Insufficient {currency} balance. You have {balance} {currency} "
                f"but need {required} {currency}.",
                exc,
                balance=balance,
                required=required,
            ),
        )
    if isinstance(exc, DuplicateTransactionError):
        return HTTPException(
            status_code=409,
            detail=_detail(
                "E_DUPLICATE_TRANSACTION",
                "This purchase has already been processed.",
                exc,
            ),
        )
    if isinstance(exc, TransientStoreError):
        return HTTPException(
            status_code=503,
            detail=_detail("E_TRY_AGAIN", GENERIC_TRY_AGAIN_MESSAGE, exc),
        )
    return HTTPException(status_code=500, detail=_detail("E_INTERNAL", GENERIC_TRY_AGAIN_MESSAGE, exc))
