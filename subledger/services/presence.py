from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subledger.core.clock import Clock, SystemClock
from subledger.db.repo.subscriptions_repo import SubscriptionsRepo
from subledger.services.discord_client import DiscordClient

logger = structlog.get_logger(__name__)


def build_nickname(base: str, active_count: int) -> str:
    if active_count <= 0:
        return base
    return f"{base} ({active_count})"


class PresenceService:
    """Keeps the bot's guild nickname in step with the active subscription count."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        client: DiscordClient,
        nickname_base: str,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._nickname_base = nickname_base
        self._clock = clock or SystemClock()
        self._last_count: int | None = None

    @property
    def last_count(self) -> int | None:
        return self._last_count

    async def count_active(self) -> int:
        async with self._session_factory() as session:
            return await SubscriptionsRepo.count_active(session, now_utc=self._clock.now())

    async def refresh(self, *, force: bool = False) -> int:
        active_count = await self.count_active()
        if not force and active_count == self._last_count:
            return active_count

        if not self._client.is_guild_configured:
            logger.warning("presence_refresh_skipped", reason="discord_not_configured")
            self._last_count = active_count
            return active_count

        nickname = build_nickname(self._nickname_base, active_count)
        await self._client.set_own_nickname(nickname)
        self._last_count = active_count
        logger.info("presence_nickname_updated", nickname=nickname, active_count=active_count)
        return active_count
