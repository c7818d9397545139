from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subledger.core.clock import Clock, SystemClock
from subledger.core.config import Settings
from subledger.economy.subscriptions.catalog import CatalogProvider
from subledger.economy.subscriptions.engine import PurchaseEngine
from subledger.economy.subscriptions.expiry import ExpirySweeper
from subledger.services.discord_client import DiscordClient
from subledger.services.notifications import DiscordNotificationSink, NotificationSink
from subledger.services.outbox import LifecycleOutbox
from subledger.services.presence import PresenceService


@dataclass(slots=True)
class LifecycleServices:
    catalog: CatalogProvider
    discord: DiscordClient
    presence: PresenceService
    sink: NotificationSink
    outbox: LifecycleOutbox
    engine: PurchaseEngine
    sweeper: ExpirySweeper
    clock: Clock

    async def aclose(self) -> None:
        await self.outbox.stop()
        await self.discord.aclose()


def build_lifecycle_services(
    settings: Settings,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    clock: Clock | None = None,
    sink: NotificationSink | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LifecycleServices:
    clock = clock or SystemClock()
    catalog = CatalogProvider(settings.plans_path)
    discord = DiscordClient(
        bot_token=settings.discord_bot_token,
        guild_id=settings.discord_guild_id,
        base_url=settings.discord_api_base_url,
        timeout_seconds=settings.discord_request_timeout_seconds,
        transport=transport,
    )
    presence = PresenceService(
        session_factory=session_factory,
        client=discord,
        nickname_base=settings.presence_nickname,
        clock=clock,
    )
    if sink is None:
        sink = DiscordNotificationSink(
            client=discord,
            presence=presence,
            purchase_channel_id=settings.discord_purchase_channel_id,
            transaction_channel_id=settings.discord_transaction_channel_id,
            expiry_channel_id=settings.discord_expiry_channel_id,
            warning_channel_id=settings.discord_warning_channel_id,
            currency_label=settings.currency_label,
            clock=clock,
        )
    outbox = LifecycleOutbox(
        sink=sink,
        session_factory=session_factory,
        clock=clock,
        max_attempts=settings.outbox_max_attempts,
        retry_delay_seconds=settings.outbox_retry_delay_seconds,
        transaction_retention_seconds=settings.transaction_retention_seconds,
        warning_dispatch_delay_seconds=settings.warning_dispatch_delay_seconds,
        expired_dispatch_delay_seconds=settings.expired_dispatch_delay_seconds,
    )
    engine = PurchaseEngine(
        session_factory=session_factory,
        catalog=catalog,
        publisher=outbox,
        clock=clock,
    )
    sweeper = ExpirySweeper(
        session_factory=session_factory,
        publisher=outbox,
        batch_size=settings.sweep_batch_size,
    )
    return LifecycleServices(
        catalog=catalog,
        discord=discord,
        presence=presence,
        sink=sink,
        outbox=outbox,
        engine=engine,
        sweeper=sweeper,
        clock=clock,
    )
