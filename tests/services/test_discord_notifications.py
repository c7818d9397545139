from __future__ import annotations

import json
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from subledger.economy.subscriptions.catalog import Discount, Plan
from subledger.economy.subscriptions.errors import NotificationError
from subledger.economy.subscriptions.types import (
    SubscriptionSnapshot,
    TransactionSnapshot,
    UserSnapshot,
)
from subledger.services.discord_client import DiscordClient
from subledger.services.discord_embeds import build_purchase_message, build_transaction_message
from subledger.services.notifications import DiscordNotificationSink
from tests.fakes import NOW_UTC, ROLE_ID, FixedClock

PLAN = Plan(
    id="monthly",
    title="Monthly",
    price=Decimal("300"),
    duration_days=30,
    granted_role_id=ROLE_ID,
    discount=Discount(type="percent", value=Decimal("10")),
)
USER = UserSnapshot(id=1001, username="neo", balance=Decimal("230"))
SUBSCRIPTION = SubscriptionSnapshot(
    id=uuid4(),
    user_id=1001,
    plan_id="monthly",
    title="Monthly",
    granted_role_id=ROLE_ID,
    status="active",
    started_at=NOW_UTC,
    expires_at=NOW_UTC + timedelta(days=1, hours=3),
    duration_days=30,
    paid_price=Decimal("270"),
    total_paid=Decimal("270"),
    renewal_count=0,
)
TRANSACTION = TransactionSnapshot(
    id=uuid4(),
    idempotency_key="k-1",
    type="purchase",
    amount=Decimal("300"),
    final_price=Decimal("270"),
    discount_amount=Decimal("30"),
    balance_before=Decimal("500"),
    balance_after=Decimal("230"),
    created_at=NOW_UTC,
)


class _Recorder:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET" and request.url.path.endswith("/guilds/900"):
            return httpx.Response(200, json={"name": "Virelia", "icon": None})
        if request.method == "GET":
            return httpx.Response(200, json={"avatar": None})
        if request.method == "POST":
            return httpx.Response(200, json={"id": "m1"})
        return httpx.Response(204)

    def posts(self) -> list[tuple[str, dict]]:
        return [
            (request.url.path, json.loads(request.content))
            for request in self.requests
            if request.method == "POST"
        ]


def _sink(recorder: _Recorder, *, token: str = "bot-token", guild_id: str = "900", **channels):
    client = DiscordClient(
        bot_token=token,
        guild_id=guild_id,
        base_url="https://discord.test/api/v10",
        transport=httpx.MockTransport(recorder),
    )
    return DiscordNotificationSink(
        client=client,
        presence=None,
        purchase_channel_id=channels.get("purchase", "10"),
        transaction_channel_id=channels.get("transaction", "11"),
        expiry_channel_id=channels.get("expiry", "12"),
        warning_channel_id=channels.get("warning", ""),
        currency_label="VV",
        clock=FixedClock(NOW_UTC),
    )


def test_purchase_message_shows_savings_and_role() -> None:
    payload = build_purchase_message(
        user=USER,
        plan=PLAN,
        subscription=SUBSCRIPTION,
        is_renewal=False,
        currency_label="VV",
        now_utc=NOW_UTC,
    )

    embed = payload["embeds"][0]
    fields = {field["name"]: field["value"] for field in embed["fields"]}
    assert payload["content"] == "<@1001>"
    assert embed["author"]["name"] == "New Subscription Added"
    assert fields["Amount"] == "270 VV (30 VV saved!)"
    assert fields["Duration"] == "1 Month"
    assert fields["Role"] == f"<@&{ROLE_ID}>"


def test_transaction_message_shows_balance_movement() -> None:
    payload = build_transaction_message(
        user=USER,
        plan=PLAN,
        transaction=TRANSACTION,
        currency_label="VV",
        now_utc=NOW_UTC,
    )

    embed = payload["embeds"][0]
    fields = {field["name"]: field["value"] for field in embed["fields"]}
    assert embed["author"]["name"] == "New Transaction"
    assert fields["Balance"] == "500 → 230 VV"
    assert fields["Savings"] == "Saved 30 VV"
    assert embed["footer"]["text"] == f"Transaction ID: {str(TRANSACTION.id)[-8:]}"


@pytest.mark.asyncio
async def test_notifications_go_to_configured_channels() -> None:
    recorder = _Recorder()
    sink = _sink(recorder)

    await sink.notify_purchased(user=USER, plan=PLAN, subscription=SUBSCRIPTION, is_renewal=True)
    await sink.notify_transaction(user=USER, plan=PLAN, transaction=TRANSACTION)
    await sink.notify_expired(SUBSCRIPTION)

    posts = recorder.posts()
    assert [path for path, _ in posts] == [
        "/api/v10/channels/10/messages",
        "/api/v10/channels/11/messages",
        "/api/v10/channels/12/messages",
    ]
    assert posts[0][1]["embeds"][0]["author"]["name"] == "Subscription Renewed"
    assert posts[0][1]["embeds"][0]["footer"]["text"].startswith("Virelia")
    assert posts[2][1]["embeds"][0]["title"] == "Subscription Expired"


@pytest.mark.asyncio
async def test_warning_falls_back_to_expiry_channel() -> None:
    recorder = _Recorder()
    sink = _sink(recorder, warning="")

    await sink.notify_expiry_warning(SUBSCRIPTION)

    path, payload = recorder.posts()[0]
    assert path == "/api/v10/channels/12/messages"
    embed = payload["embeds"][0]
    assert embed["title"] == "Subscription Expiring Soon"
    assert "Your subscription expires in 1 day and 3 hours!" in embed["description"]


@pytest.mark.asyncio
async def test_unset_channel_skips_without_network() -> None:
    recorder = _Recorder()
    sink = _sink(recorder, purchase="")

    await sink.notify_purchased(user=USER, plan=PLAN, subscription=SUBSCRIPTION, is_renewal=False)

    assert recorder.requests == []


@pytest.mark.asyncio
async def test_role_changes_require_guild_configuration() -> None:
    recorder = _Recorder()
    sink = _sink(recorder, guild_id="")

    with pytest.raises(NotificationError):
        await sink.grant_role(1001, ROLE_ID)
    assert await sink.revoke_role(1001, ROLE_ID) is False
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_role_changes_call_discord() -> None:
    recorder = _Recorder()
    sink = _sink(recorder)

    assert await sink.grant_role(1001, ROLE_ID) is True
    assert await sink.revoke_role(1001, ROLE_ID) is True
    assert [request.method for request in recorder.requests] == ["PUT", "DELETE"]
