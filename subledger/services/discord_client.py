from __future__ import annotations

from typing import Any

import httpx
import structlog

from subledger.economy.subscriptions.errors import NotificationError

logger = structlog.get_logger(__name__)

CDN_BASE_URL = "https://cdn.discordapp.com"
ROLE_ERROR_MESSAGES = {
    404: "member not found in guild",
    403: "bot lacks permission to manage roles",
    400: "invalid role or user id",
}


class DiscordAPIError(NotificationError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DiscordClient:
    """Thin REST wrapper over the Discord bot API.

    Only the calls the subscription lifecycle needs are covered: member role
    changes, channel messages, the bot's own nickname and a couple of lookups
    used to decorate embeds.
    """

    def __init__(
        self,
        *,
        bot_token: str,
        guild_id: str,
        base_url: str = "https://discord.com/api/v10",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._guild_id = guild_id
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bot {bot_token}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    @property
    def has_token(self) -> bool:
        return bool(self._bot_token)

    @property
    def is_guild_configured(self) -> bool:
        return bool(self._bot_token) and bool(self._guild_id)

    @property
    def guild_id(self) -> str:
        return self._guild_id

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise DiscordAPIError(f"discord request failed: {exc}") from exc

    def _member_role_path(self, user_id: int, role_id: str) -> str:
        return f"/guilds/{self._guild_id}/members/{user_id}/roles/{role_id}"

    async def _change_member_role(self, method: str, *, user_id: int, role_id: str) -> None:
        response = await self._request(method, self._member_role_path(user_id, role_id))
        if response.is_success:
            return
        message = ROLE_ERROR_MESSAGES.get(
            response.status_code,
            f"role change failed with status {response.status_code}",
        )
        raise DiscordAPIError(message, status_code=response.status_code)

    async def add_member_role(self, *, user_id: int, role_id: str) -> None:
        await self._change_member_role("PUT", user_id=user_id, role_id=role_id)

    async def remove_member_role(self, *, user_id: int, role_id: str) -> None:
        await self._change_member_role("DELETE", user_id=user_id, role_id=role_id)

    async def send_message(self, *, channel_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", f"/channels/{channel_id}/messages", json=payload)
        if not response.is_success:
            raise DiscordAPIError(
                f"message to channel {channel_id} failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    async def set_own_nickname(self, nickname: str) -> None:
        response = await self._request(
            "PATCH",
            f"/guilds/{self._guild_id}/members/@me",
            json={"nick": nickname},
        )
        if not response.is_success:
            raise DiscordAPIError(
                f"nickname update failed with status {response.status_code}",
                status_code=response.status_code,
            )

    async def get_guild_info(self) -> dict[str, str | None] | None:
        if not self.is_guild_configured:
            return None
        try:
            response = await self._request("GET", f"/guilds/{self._guild_id}")
        except DiscordAPIError:
            logger.warning("discord_guild_lookup_failed", guild_id=self._guild_id)
            return None
        if not response.is_success:
            logger.warning(
                "discord_guild_lookup_failed",
                guild_id=self._guild_id,
                status_code=response.status_code,
            )
            return None
        data = response.json()
        icon = data.get("icon")
        return {
            "name": data.get("name"),
            "icon": f"{CDN_BASE_URL}/icons/{self._guild_id}/{icon}.png" if icon else None,
        }

    async def get_avatar_url(self, user_id: int) -> str | None:
        if not self.has_token:
            return None
        try:
            response = await self._request("GET", f"/users/{user_id}")
        except DiscordAPIError:
            return None
        if not response.is_success:
            return None
        avatar = response.json().get("avatar")
        if avatar:
            extension = "gif" if str(avatar).startswith("a_") else "png"
            return f"{CDN_BASE_URL}/avatars/{user_id}/{avatar}.{extension}?size=256"
        return f"{CDN_BASE_URL}/embed/avatars/{(int(user_id) >> 22) % 6}.png"
