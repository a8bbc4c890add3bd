"""
quietwatch.bot.cogs.membership — Member Join Capture
=====================================================

Registers members the moment they join, so their inactivity clock starts
at ``joined_at`` rather than at the next bot restart.  Requires the
GUILD_MEMBERS privileged intent.

Leaving members keep their rows and history.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

if TYPE_CHECKING:
    from quietwatch.bot.core import QuietwatchBot

logger = logging.getLogger(__name__)


class Membership(commands.Cog, name="Membership"):
    """Creates member rows on GUILD_MEMBER_ADD."""

    def __init__(self, bot: QuietwatchBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        if member.bot:
            return

        created = await self.bot.tracker.on_member_joined(
            str(member.id), member.name, member.display_name, member.joined_at,
        )
        if created:
            logger.info("Member joined: %s (ID: %d)", member.display_name, member.id)


async def setup(bot: QuietwatchBot) -> None:
    await bot.add_cog(Membership(bot))
