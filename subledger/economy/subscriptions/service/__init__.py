from __future__ import annotations

from .builder import _build_subscription, _build_transaction, _extend_subscription
from .constants import (
    HISTORY_DEFAULT_LIMIT,
    STATS_LOOKBACK_DAYS,
    UPCOMING_EXPIRY_DEFAULT_DAYS,
    WARNING_WINDOW_DAYS,
)
from .purchase import apply_purchase
from .queries import (
    get_active_subscription_view,
    get_subscription_stats,
    list_subscription_history,
    list_upcoming_expiries,
)


class SubscriptionService:
    _build_subscription = staticmethod(_build_subscription)
    _extend_subscription = staticmethod(_extend_subscription)
    _build_transaction = staticmethod(_build_transaction)
    apply_purchase = staticmethod(apply_purchase)
    get_active_subscription_view = staticmethod(get_active_subscription_view)
    list_subscription_history = staticmethod(list_subscription_history)
    get_subscription_stats = staticmethod(get_subscription_stats)
    list_upcoming_expiries = staticmethod(list_upcoming_expiries)


__all__ = [
    "HISTORY_DEFAULT_LIMIT",
    "STATS_LOOKBACK_DAYS",
    "UPCOMING_EXPIRY_DEFAULT_DAYS",
    "WARNING_WINDOW_DAYS",
    "SubscriptionService",
]
