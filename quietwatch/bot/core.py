"""
quietwatch.bot.core — Bot Instance & Cog Loader
================================================

Defines :class:`QuietwatchBot`, a ``commands.Bot`` subclass that:

1. Carries the shared config, DB engine, repository, activity tracker and
   reminder service so every Cog can reach them via ``self.bot.*``.
2. Loads the Cogs listed in :data:`EXTENSIONS`.
3. On ready: starts the reminder scheduler, then syncs the slash-command
   tree, creates rows for guild members we don't track yet, and stores the
   guild id if configuration has none.  A failing step is logged and the
   rest still run.
4. On close: stops the scheduler.
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from quietwatch.config import QuietwatchConfig
from quietwatch.database.engine import run_db
from quietwatch.services.activity_tracker import ActivityTracker, MemberSnapshot
from quietwatch.services.delivery import GuildChannelDelivery
from quietwatch.services.reminder_service import ReminderService
from quietwatch.services.repository import SqlRepository

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "quietwatch.bot.cogs.activity",
    "quietwatch.bot.cogs.membership",
    "quietwatch.bot.cogs.admin",
]


class QuietwatchBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`QuietwatchConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` for the Quietwatch schema.
    """

    def __init__(self, cfg: QuietwatchConfig, engine: Engine) -> None:
        # MESSAGE_CONTENT is not needed: only the fact that a message was
        # sent is recorded.  GUILD_MEMBERS is privileged (member sync, joins).
        intents = discord.Intents.default()
        intents.members = True
        intents.voice_states = True
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} — activity tracking & re-engagement",
        )

        self.cfg = cfg
        self.engine = engine
        self.repo = SqlRepository(engine)
        self.tracker = ActivityTracker(self.repo)
        self.reminders = ReminderService(
            self.repo,
            GuildChannelDelivery(self, cfg.guild_id, cfg.reminder_channel_keyword),
        )

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions.  One broken Cog doesn't stop the bot."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception:
                logger.exception("Failed to load extension %s", ext)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated.

        The scheduler starts first; each later startup step logs its own
        failure so one bad step never keeps the others from running.
        """
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        # on_ready can fire again after a reconnect; start() ignores repeats
        self.reminders.start()

        for step in (self._sync_commands, self._sync_guild_members, self._remember_server_id):
            try:
                await step()
            except Exception:
                logger.exception(
                    "Startup step %s failed", step.__name__, extra={"task": "on_ready"},
                )

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        self.reminders.stop()
        await super().close()

    # -----------------------------------------------------------------------
    # Startup helpers
    # -----------------------------------------------------------------------
    async def _sync_commands(self) -> None:
        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    def _primary_guild(self) -> discord.Guild | None:
        guild = self.get_guild(self.cfg.guild_id)
        if guild is None and self.guilds:
            guild = self.guilds[0]
        return guild

    async def _sync_guild_members(self) -> None:
        """Create member rows for every non-bot guild member not yet stored."""
        guild = self._primary_guild()
        if guild is None:
            logger.warning("Primary guild %d not found — skipping member sync", self.cfg.guild_id)
            return

        snapshots = [
            MemberSnapshot(
                id=str(m.id),
                handle=m.name,
                display_name=m.display_name,
                joined_at=m.joined_at,
            )
            async for m in guild.fetch_members(limit=None)
            if not m.bot
        ]
        created = await self.tracker.sync_members(snapshots)
        logger.info(
            "Synced %d guild members from %s (%d new)", len(snapshots), guild.name, created,
        )

    async def _remember_server_id(self) -> None:
        guild = self._primary_guild()
        if guild is None:
            return
        config = await run_db(self.repo.get_configuration)
        if config is not None and config.server_id:
            return
        await run_db(self.repo.update_configuration, actor="bot", server_id=str(guild.id))
        logger.info("Stored server id %s in configuration", guild.id)
