"""
quietwatch.services.delivery — Reminder Delivery Transports
============================================================

The reminder service hands a member id and rendered text to a
:class:`DeliveryTransport` and gets back a :class:`DeliveryResult`.
Transports never raise for ordinary delivery failures (missing guild,
no suitable channel, Discord/HTTP errors); they report
``delivered=False``.

Two implementations:

- :class:`GuildChannelDelivery` — used inside the bot process; sends
  through the live gateway client.
- :class:`RestChannelDelivery` — used by the dashboard API, which has no
  gateway connection; talks to Discord's REST API with ``httpx``.

Both post into the first text channel whose name contains the configured
keyword (``"bot"`` by default), in guild channel order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

import discord
import httpx

from quietwatch.config import DEFAULT_REMINDER_CHANNEL_KEYWORD

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"

# Discord channel type id for guild text channels
GUILD_TEXT_CHANNEL_TYPE = 0


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    delivered: bool
    channel_label: str | None = None


class DeliveryTransport(Protocol):
    async def deliver(self, member_id: str, text: str) -> DeliveryResult: ...


def matches_keyword(channel_name: str, keyword: str) -> bool:
    return keyword.lower() in channel_name.lower()


def pick_channel(channels: Iterable[dict], keyword: str) -> dict | None:
    """First text channel (by position) whose name contains *keyword*.

    *channels* are Discord REST channel objects.
    """
    text_channels = sorted(
        (c for c in channels if c.get("type") == GUILD_TEXT_CHANNEL_TYPE),
        key=lambda c: (c.get("position", 0), int(c.get("id", 0))),
    )
    for channel in text_channels:
        if matches_keyword(channel.get("name", ""), keyword):
            return channel
    return None


# ---------------------------------------------------------------------------
# Gateway transport (bot process)
# ---------------------------------------------------------------------------
class GuildChannelDelivery:
    """Posts reminders through a connected :class:`discord.Client`."""

    def __init__(
        self,
        client: discord.Client,
        guild_id: int,
        keyword: str = DEFAULT_REMINDER_CHANNEL_KEYWORD,
    ) -> None:
        self.client = client
        self.guild_id = guild_id
        self.keyword = keyword

    async def deliver(self, member_id: str, text: str) -> DeliveryResult:
        guild = self.client.get_guild(self.guild_id)
        if guild is None:
            logger.warning("Reminder not delivered: guild %d not found", self.guild_id)
            return DeliveryResult(False)

        channel = next(
            (ch for ch in guild.text_channels if matches_keyword(ch.name, self.keyword)),
            None,
        )
        if channel is None:
            logger.warning(
                "Reminder not delivered: no text channel matching %r in guild %s",
                self.keyword, guild.name,
            )
            return DeliveryResult(False)

        try:
            await channel.send(
                text,
                allowed_mentions=discord.AllowedMentions(
                    everyone=False, roles=False, users=True,
                ),
            )
        except discord.HTTPException as exc:
            logger.warning(
                "Reminder to %s failed in #%s: %s", member_id, channel.name, exc,
                extra={"member_id": member_id},
            )
            return DeliveryResult(False)

        return DeliveryResult(True, channel.name)


# ---------------------------------------------------------------------------
# REST transport (API process)
# ---------------------------------------------------------------------------
class RestChannelDelivery:
    """Posts reminders through Discord's REST API using a bot token.

    Parameters
    ----------
    token:
        Bot token (sent as ``Authorization: Bot <token>``).
    guild_id:
        Guild whose channels are searched.
    client:
        Optional shared :class:`httpx.AsyncClient`.  A short-lived client
        is opened per delivery when omitted.
    """

    def __init__(
        self,
        token: str,
        guild_id: str | int,
        keyword: str = DEFAULT_REMINDER_CHANNEL_KEYWORD,
        client: httpx.AsyncClient | None = None,
        base_url: str = DISCORD_API,
    ) -> None:
        self.token = token
        self.guild_id = str(guild_id)
        self.keyword = keyword
        self._client = client
        self.base_url = base_url.rstrip("/")

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self.token}"}

    async def deliver(self, member_id: str, text: str) -> DeliveryResult:
        if self._client is not None:
            return await self._deliver(self._client, member_id, text)
        async with httpx.AsyncClient(timeout=10) as client:
            return await self._deliver(client, member_id, text)

    async def _deliver(
        self, client: httpx.AsyncClient, member_id: str, text: str,
    ) -> DeliveryResult:
        try:
            resp = await client.get(
                f"{self.base_url}/guilds/{self.guild_id}/channels",
                headers=self._headers,
            )
            resp.raise_for_status()
            channel = pick_channel(resp.json(), self.keyword)
            if channel is None:
                logger.warning(
                    "Reminder not delivered: no text channel matching %r in guild %s",
                    self.keyword, self.guild_id,
                )
                return DeliveryResult(False)

            resp = await client.post(
                f"{self.base_url}/channels/{channel['id']}/messages",
                headers=self._headers,
                json={
                    "content": text,
                    "allowed_mentions": {"parse": [], "users": [member_id]},
                },
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Reminder to %s failed via REST: %s", member_id, exc,
                extra={"member_id": member_id},
            )
            return DeliveryResult(False)

        return DeliveryResult(True, channel.get("name"))
