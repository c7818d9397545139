from __future__ import annotations

from datetime import datetime
from typing import Any

from subledger.core.formatting import (
    format_amount,
    format_discord_timestamp,
    format_duration,
    format_time_remaining,
)
from subledger.economy.subscriptions.catalog import Plan
from subledger.economy.subscriptions.pricing import calculate_price
from subledger.economy.subscriptions.types import (
    SubscriptionSnapshot,
    TransactionSnapshot,
    UserSnapshot,
)

COLOR_PURCHASE = 0x00FF7F
COLOR_NEW_TRANSACTION = 0x28A745
COLOR_RENEWAL = 0xFFA500
COLOR_WARNING = 0xFFA500
COLOR_EXPIRED = 0xFF0000
DEFAULT_AVATAR_URL = "https://cdn.discordapp.com/embed/avatars/0.png"
DEFAULT_FOOTER = "Subscription System"


def _mention(user_id: int) -> str:
    return f"<@{user_id}>"


def _role_mention(role_id: str) -> str:
    return f"<@&{role_id}>"


def _user_field(user_id: int, username: str | None) -> dict[str, Any]:
    value = _mention(user_id) if not username else f"{_mention(user_id)}\n{username}"
    return {"name": "User", "value": value, "inline": True}


def _footer(guild: dict[str, str | None] | None, *, fallback: str = DEFAULT_FOOTER) -> dict[str, Any]:
    if guild and guild.get("name"):
        footer: dict[str, Any] = {"text": f"{guild['name']} • {DEFAULT_FOOTER}"}
        if guild.get("icon"):
            footer["icon_url"] = guild["icon"]
        return footer
    return {"text": fallback}


def build_purchase_message(
    *,
    user: UserSnapshot,
    plan: Plan,
    subscription: SubscriptionSnapshot,
    is_renewal: bool,
    currency_label: str,
    now_utc: datetime,
    avatar_url: str | None = None,
    guild: dict[str, str | None] | None = None,
) -> dict[str, Any]:
    price = calculate_price(plan)
    amount = f"{format_amount(price.final)} {currency_label}"
    if price.has_discount:
        amount += f" ({format_amount(price.discount_amount)} {currency_label} saved!)"

    embed = {
        "color": COLOR_PURCHASE,
        "author": {"name": "Subscription Renewed" if is_renewal else "New Subscription Added"},
        "description": f"{_mention(user.id)} has received a subscription!",
        "thumbnail": {"url": avatar_url or DEFAULT_AVATAR_URL},
        "fields": [
            _user_field(user.id, user.username),
            {"name": "Duration", "value": format_duration(plan.duration_days), "inline": True},
            {
                "name": "Expires",
                "value": format_discord_timestamp(subscription.expires_at, "F"),
                "inline": True,
            },
            {"name": "Amount", "value": amount, "inline": True},
            {"name": "Role", "value": _role_mention(subscription.granted_role_id), "inline": True},
            {
                "name": "Status",
                "value": "Renewed" if is_renewal else "New subscription",
                "inline": True,
            },
        ],
        "footer": _footer(guild),
        "timestamp": now_utc.isoformat(),
    }
    return {"content": _mention(user.id), "embeds": [embed]}


def build_transaction_message(
    *,
    user: UserSnapshot,
    plan: Plan,
    transaction: TransactionSnapshot,
    currency_label: str,
    now_utc: datetime,
    avatar_url: str | None = None,
    guild: dict[str, str | None] | None = None,
) -> dict[str, Any]:
    is_renewal = transaction.type == "renewal"
    if transaction.discount_amount > 0:
        savings = f"Saved {format_amount(transaction.discount_amount)} {currency_label}"
    else:
        savings = "No discount"
    balance = (
        f"{format_amount(transaction.balance_before)} → "
        f"{format_amount(transaction.balance_after)} {currency_label}"
    )

    embed = {
        "color": COLOR_RENEWAL if is_renewal else COLOR_NEW_TRANSACTION,
        "author": {"name": "Subscription Renewed" if is_renewal else "New Transaction"},
        "description": f"Transaction completed for {_mention(user.id)}",
        "thumbnail": {"url": avatar_url or DEFAULT_AVATAR_URL},
        "fields": [
            {**_user_field(user.id, user.username), "name": "Customer"},
            {
                "name": "Plan",
                "value": f"{plan.title}\n{format_duration(plan.duration_days)}",
                "inline": True,
            },
            {
                "name": "Amount",
                "value": f"{format_amount(transaction.final_price)} {currency_label}",
                "inline": True,
            },
            {"name": "Type", "value": "Renewal" if is_renewal else "New Purchase", "inline": True},
            {"name": "Savings", "value": savings, "inline": True},
            {"name": "Balance", "value": balance, "inline": True},
        ],
        "footer": {
            **_footer(guild),
            "text": f"Transaction ID: {str(transaction.id)[-8:]}",
        },
        "timestamp": now_utc.isoformat(),
    }
    return {"embeds": [embed]}


def build_expiry_warning_message(
    *,
    subscription: SubscriptionSnapshot,
    currency_label: str,
    now_utc: datetime,
    username: str | None = None,
    avatar_url: str | None = None,
    guild: dict[str, str | None] | None = None,
) -> dict[str, Any]:
    remaining = format_time_remaining(now_utc=now_utc, expires_at=subscription.expires_at)
    embed = {
        "title": "Subscription Expiring Soon",
        "description": f"{_mention(subscription.user_id)}\n{remaining}",
        "color": COLOR_WARNING,
        "thumbnail": {"url": avatar_url or DEFAULT_AVATAR_URL},
        "fields": [
            _user_field(subscription.user_id, username),
            {"name": "Plan", "value": subscription.title or "Premium", "inline": True},
            {
                "name": "Expires",
                "value": format_discord_timestamp(subscription.expires_at, "F"),
                "inline": True,
            },
            {
                "name": "Time Remaining",
                "value": format_discord_timestamp(subscription.expires_at, "R"),
                "inline": True,
            },
            {"name": "Role", "value": _role_mention(subscription.granted_role_id), "inline": True},
            {
                "name": "Total Spent",
                "value": f"{format_amount(subscription.total_paid)} {currency_label}",
                "inline": True,
            },
            {
                "name": "Action",
                "value": "Renew your subscription to keep your perks!",
                "inline": False,
            },
        ],
        "footer": _footer(guild),
        "timestamp": now_utc.isoformat(),
    }
    return {"content": _mention(subscription.user_id), "embeds": [embed]}


def build_expired_message(
    *,
    subscription: SubscriptionSnapshot,
    currency_label: str,
    now_utc: datetime,
    username: str | None = None,
    avatar_url: str | None = None,
    guild: dict[str, str | None] | None = None,
) -> dict[str, Any]:
    embed = {
        "title": "Subscription Expired",
        "description": f"{_mention(subscription.user_id)}\nYour subscription has ended.",
        "color": COLOR_EXPIRED,
        "thumbnail": {"url": avatar_url or DEFAULT_AVATAR_URL},
        "fields": [
            _user_field(subscription.user_id, username),
            {
                "name": "Expired",
                "value": format_discord_timestamp(subscription.expires_at, "R"),
                "inline": False,
            },
            {
                "name": "Exact Time",
                "value": format_discord_timestamp(subscription.expires_at, "F"),
                "inline": False,
            },
            {
                "name": "Role Removed",
                "value": _role_mention(subscription.granted_role_id),
                "inline": True,
            },
            {
                "name": "Total Spent",
                "value": f"{format_amount(subscription.total_paid)} {currency_label}",
                "inline": True,
            },
        ],
        "footer": _footer(guild),
        "timestamp": now_utc.isoformat(),
    }
    return {"content": _mention(subscription.user_id), "embeds": [embed]}
