"""
quietwatch.bot.cogs.activity — Message & Voice Event Capture
=============================================================

Feeds gateway events into the :class:`ActivityTracker`:

- ``on_message`` → ``message`` (guild messages from humans only)
- ``on_voice_state_update`` → ``voice_join`` / ``voice_leave``

Channel moves and mute/deafen changes are not engagement events and are
ignored.  The tracker never raises; a dropped event is already logged
there.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from quietwatch.database.models import ActivityKind

if TYPE_CHECKING:
    from quietwatch.bot.core import QuietwatchBot

logger = logging.getLogger(__name__)


def voice_transition(
    before: discord.VoiceState, after: discord.VoiceState,
) -> ActivityKind | None:
    """Map a voice-state change to the activity it represents, if any."""
    if before.channel is None and after.channel is not None:
        return ActivityKind.VOICE_JOIN
    if before.channel is not None and after.channel is None:
        return ActivityKind.VOICE_LEAVE
    return None


class Activity(commands.Cog, name="Activity"):
    """Records messages and voice joins/leaves for every human member."""

    def __init__(self, bot: QuietwatchBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return

        await self.bot.tracker.on_message(
            str(message.author.id),
            message.author.name,
            getattr(message.channel, "name", None) or str(message.channel.id),
        )

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if member.bot:
            return

        kind = voice_transition(before, after)
        if kind is None:
            return

        channel = after.channel if kind == ActivityKind.VOICE_JOIN else before.channel
        payload = {
            "channel_id": str(channel.id),
            "self_mute": bool(after.self_mute),
            "self_deaf": bool(after.self_deaf),
        }
        if kind == ActivityKind.VOICE_JOIN:
            await self.bot.tracker.on_voice_join(str(member.id), member.name, channel.name, payload)
        else:
            await self.bot.tracker.on_voice_leave(str(member.id), member.name, channel.name, payload)
        logger.debug("%s %s %s", member, kind, channel)


async def setup(bot: QuietwatchBot) -> None:
    await bot.add_cog(Activity(bot))
