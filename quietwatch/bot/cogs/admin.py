"""
quietwatch.bot.cogs.admin — Admin Slash Commands
=================================================

- /remind — send a re-engagement reminder to one member right now
- /force-check — reclassify every tracked member

Both require the configured ``admin_role_id`` and answer ephemerally.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

if TYPE_CHECKING:
    from quietwatch.bot.core import QuietwatchBot

logger = logging.getLogger(__name__)


def has_admin_role(user: discord.abc.User | None, admin_role_id: int) -> bool:
    roles = getattr(user, "roles", None)
    if not roles:
        return False
    return any(role.id == admin_role_id for role in roles)


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: QuietwatchBot = interaction.client  # type: ignore[assignment]
        return has_admin_role(interaction.user, bot.cfg.admin_role_id)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Operator commands for Quietwatch."""

    def __init__(self, bot: QuietwatchBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /remind
    # -------------------------------------------------------------------
    @app_commands.command(name="remind", description="Send a re-engagement reminder now.")
    @app_commands.describe(member="The member to remind")
    @is_admin()
    async def remind(self, interaction: discord.Interaction, member: discord.Member) -> None:
        await interaction.response.defer(ephemeral=True)

        sent = await self.bot.reminders.send_manual_reminder(str(member.id))
        if sent:
            await interaction.followup.send(
                f"✅ Reminder sent to **{member.display_name}**.", ephemeral=True,
            )
        else:
            await interaction.followup.send(
                f"❌ Could not remind **{member.display_name}** "
                "(unknown member or delivery failed — see logs).",
                ephemeral=True,
            )
        logger.info(
            "/remind by %s for %s → %s", interaction.user, member.id, sent,
            extra={"task": "manual_reminder", "member_id": str(member.id)},
        )

    # -------------------------------------------------------------------
    # /force-check
    # -------------------------------------------------------------------
    @app_commands.command(name="force-check", description="Reclassify every tracked member.")
    @is_admin()
    async def force_check(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        changed = await self.bot.tracker.classify_all_members()
        await interaction.followup.send(
            f"✅ Classification complete — {changed} member(s) updated.", ephemeral=True,
        )

    async def cog_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            message = "❌ You need the admin role to use this command."
        else:
            logger.error("Admin command failed: %s", error, exc_info=error)
            message = "❌ Something went wrong — see the bot logs."

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)


async def setup(bot: QuietwatchBot) -> None:
    await bot.add_cog(Admin(bot))
