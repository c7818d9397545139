from __future__ import annotations

from typing import Protocol

import structlog

from subledger.core.clock import Clock, SystemClock
from subledger.economy.subscriptions.catalog import Plan
from subledger.economy.subscriptions.errors import NotificationError
from subledger.economy.subscriptions.types import (
    SubscriptionSnapshot,
    TransactionSnapshot,
    UserSnapshot,
)
from subledger.services.discord_client import DiscordClient
from subledger.services.discord_embeds import (
    build_expired_message,
    build_expiry_warning_message,
    build_purchase_message,
    build_transaction_message,
)
from subledger.services.presence import PresenceService

logger = structlog.get_logger(__name__)


class NotificationSink(Protocol):
    async def notify_purchased(
        self,
        *,
        user: UserSnapshot,
        plan: Plan,
        subscription: SubscriptionSnapshot,
        is_renewal: bool,
    ) -> None: ...

    async def notify_transaction(
        self,
        *,
        user: UserSnapshot,
        plan: Plan,
        transaction: TransactionSnapshot,
    ) -> None: ...

    async def notify_expired(self, subscription: SubscriptionSnapshot) -> None: ...

    async def notify_expiry_warning(self, subscription: SubscriptionSnapshot) -> None: ...

    async def grant_role(self, user_id: int, role_id: str) -> bool: ...

    async def revoke_role(self, user_id: int, role_id: str) -> bool: ...

    async def refresh_presence(self) -> None: ...


class DiscordNotificationSink:
    def __init__(
        self,
        *,
        client: DiscordClient,
        presence: PresenceService | None,
        purchase_channel_id: str,
        transaction_channel_id: str,
        expiry_channel_id: str,
        warning_channel_id: str,
        currency_label: str,
        clock: Clock | None = None,
    ) -> None:
        self._client = client
        self._presence = presence
        self._purchase_channel_id = purchase_channel_id
        self._transaction_channel_id = transaction_channel_id
        self._expiry_channel_id = expiry_channel_id
        self._warning_channel_id = warning_channel_id or expiry_channel_id
        self._currency_label = currency_label
        self._clock = clock or SystemClock()

    def _can_send(self, *, kind: str, channel_id: str) -> bool:
        if not channel_id:
            logger.warning("discord_notification_skipped", kind=kind, reason="channel_not_set")
            return False
        if not self._client.has_token:
            logger.warning("discord_notification_skipped", kind=kind, reason="missing_bot_token")
            return False
        return True

    async def _send(self, *, kind: str, channel_id: str, payload: dict[str, object]) -> None:
        await self._client.send_message(channel_id=channel_id, payload=payload)
        logger.info("discord_notification_sent", kind=kind, channel_id=channel_id)

    async def notify_purchased(
        self,
        *,
        user: UserSnapshot,
        plan: Plan,
        subscription: SubscriptionSnapshot,
        is_renewal: bool,
    ) -> None:
        if not self._can_send(kind="purchase", channel_id=self._purchase_channel_id):
            return
        payload = build_purchase_message(
            user=user,
            plan=plan,
            subscription=subscription,
            is_renewal=is_renewal,
            currency_label=self._currency_label,
            now_utc=self._clock.now(),
            avatar_url=await self._client.get_avatar_url(user.id),
            guild=await self._client.get_guild_info(),
        )
        await self._send(kind="purchase", channel_id=self._purchase_channel_id, payload=payload)

    async def notify_transaction(
        self,
        *,
        user: UserSnapshot,
        plan: Plan,
        transaction: TransactionSnapshot,
    ) -> None:
        if not self._can_send(kind="transaction", channel_id=self._transaction_channel_id):
            return
        payload = build_transaction_message(
            user=user,
            plan=plan,
            transaction=transaction,
            currency_label=self._currency_label,
            now_utc=self._clock.now(),
            avatar_url=await self._client.get_avatar_url(user.id),
            guild=await self._client.get_guild_info(),
        )
        await self._send(
            kind="transaction",
            channel_id=self._transaction_channel_id,
            payload=payload,
        )

    async def notify_expired(self, subscription: SubscriptionSnapshot) -> None:
        if not self._can_send(kind="expired", channel_id=self._expiry_channel_id):
            return
        payload = build_expired_message(
            subscription=subscription,
            currency_label=self._currency_label,
            now_utc=self._clock.now(),
            avatar_url=await self._client.get_avatar_url(subscription.user_id),
            guild=await self._client.get_guild_info(),
        )
        await self._send(kind="expired", channel_id=self._expiry_channel_id, payload=payload)

    async def notify_expiry_warning(self, subscription: SubscriptionSnapshot) -> None:
        if not self._can_send(kind="warning", channel_id=self._warning_channel_id):
            return
        payload = build_expiry_warning_message(
            subscription=subscription,
            currency_label=self._currency_label,
            now_utc=self._clock.now(),
            avatar_url=await self._client.get_avatar_url(subscription.user_id),
            guild=await self._client.get_guild_info(),
        )
        await self._send(kind="warning", channel_id=self._warning_channel_id, payload=payload)

    async def grant_role(self, user_id: int, role_id: str) -> bool:
        if not self._client.is_guild_configured:
            raise NotificationError("discord guild or bot token is not configured")
        await self._client.add_member_role(user_id=user_id, role_id=role_id)
        logger.info("discord_role_granted", user_id=user_id, role_id=role_id)
        return True

    async def revoke_role(self, user_id: int, role_id: str) -> bool:
        if not self._client.is_guild_configured:
            logger.warning("discord_role_revoke_skipped", reason="missing_configuration")
            return False
        await self._client.remove_member_role(user_id=user_id, role_id=role_id)
        logger.info("discord_role_revoked", user_id=user_id, role_id=role_id)
        return True

    async def refresh_presence(self) -> None:
        if self._presence is None:
            return
        await self._presence.refresh()
