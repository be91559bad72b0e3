"""Async lookups against the Discord REST API used by maintenance jobs."""

from __future__ import annotations

import asyncio
from typing import Any, Iterable

import httpx
import structlog

from ..config import DeliveryConfig

UNKNOWN_MEMBER = 10007
UNKNOWN_USER = 10013
UNKNOWN_ROLE = 10011
UNKNOWN_GUILD = 10004
CONFIRMED_ABSENCE_CODES = frozenset({UNKNOWN_GUILD, UNKNOWN_MEMBER, UNKNOWN_ROLE, UNKNOWN_USER})


class PlatformAPIError(RuntimeError):
    """A Discord API call returned an error response."""

    def __init__(self, status_code: int, code: int | None = None, message: str = "") -> None:
        super().__init__(f"Discord API error {status_code} (code={code}): {message}")
        self.status_code = status_code
        self.code = code
        self.message = message

    @property
    def confirms_absence(self) -> bool:
        if self.code is not None:
            return self.code in CONFIRMED_ABSENCE_CODES
        return self.status_code == 404


class DiscordAPI:
    """Minimal async Discord client with a per-guild role cache."""

    def __init__(self, client: httpx.AsyncClient, logger: structlog.BoundLogger | None = None) -> None:
        self._client = client
        self._roles: dict[str, set[str]] = {}
        self.logger = logger or structlog.get_logger("feed_relay.discord_api")

    @classmethod
    def from_config(
        cls, config: DeliveryConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> "DiscordAPI":
        headers = {"User-Agent": "feed-relay (https://github.com/feed-relay, 0.1)"}
        if config.bot_token:
            headers["Authorization"] = f"Bot {config.bot_token}"
        client = httpx.AsyncClient(
            base_url=config.api_base.rstrip("/"),
            headers=headers,
            timeout=config.request_timeout,
            transport=transport,
        )
        return cls(client)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str) -> Any:
        response = await self._client.get(path)
        if response.is_success:
            return response.json()
        code: int | None = None
        message = response.text
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code") if isinstance(body.get("code"), int) else None
            message = str(body.get("message", message))
        raise PlatformAPIError(response.status_code, code, message)

    async def fetch_user(self, user_id: str) -> dict[str, Any]:
        return await self._get(f"/users/{user_id}")

    async def fetch_roles(self, guild_id: str) -> set[str]:
        roles = await self._get(f"/guilds/{guild_id}/roles")
        return {str(role["id"]) for role in roles}

    async def warm_role_cache(self, guild_ids: Iterable[str]) -> None:
        """Load the role sets of the given guilds; guilds that fail stay uncached."""

        pending = sorted(set(guild_ids) - set(self._roles))
        results = await asyncio.gather(
            *(self.fetch_roles(guild_id) for guild_id in pending), return_exceptions=True
        )
        for guild_id, result in zip(pending, results):
            if isinstance(result, BaseException):
                self.logger.warning("role_cache_failed", guild_id=guild_id, error=str(result))
                continue
            self._roles[guild_id] = result

    def role_ids(self, guild_id: str) -> set[str] | None:
        """Cached role ids of a guild, or None when the guild is not cached."""

        return self._roles.get(guild_id)


__all__ = [
    "CONFIRMED_ABSENCE_CODES",
    "DiscordAPI",
    "PlatformAPIError",
    "UNKNOWN_MEMBER",
    "UNKNOWN_USER",
]
