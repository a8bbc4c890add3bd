"""
quietwatch.api.deps — FastAPI dependency injection
===================================================

The API process has no gateway connection.  Manual reminders sent from
the dashboard go out through :class:`RestChannelDelivery` using the bot
token and server id stored in configuration.
"""

from __future__ import annotations

import asyncio
import logging
import os
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy import Engine

from quietwatch.config import DEFAULT_REMINDER_CHANNEL_KEYWORD, QuietwatchConfig, load_config
from quietwatch.database.engine import create_db_engine
from quietwatch.services.activity_tracker import ActivityTracker
from quietwatch.services.delivery import DeliveryResult, DeliveryTransport, RestChannelDelivery
from quietwatch.services.reminder_service import ReminderService
from quietwatch.services.repository import SqlRepository

logger = logging.getLogger(__name__)

# One dispatch lock for every request in this process
_DISPATCH_LOCK = asyncio.Lock()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> QuietwatchConfig | None:
    """``config.yaml`` if present.  The API runs without one."""
    try:
        return load_config()
    except FileNotFoundError:
        logger.warning("config.yaml not found — API using stored configuration only")
        return None


@lru_cache(maxsize=1)
def _repository(engine: Engine) -> SqlRepository:
    return SqlRepository(engine)


def get_repository(engine: Annotated[Engine, Depends(get_engine)]) -> SqlRepository:
    return _repository(engine)


@lru_cache(maxsize=1)
def _tracker(repo: SqlRepository) -> ActivityTracker:
    return ActivityTracker(repo)


def get_tracker(repo: Annotated[SqlRepository, Depends(get_repository)]) -> ActivityTracker:
    return _tracker(repo)


class MissingCredentialsDelivery:
    """Stand-in transport while no token or server id is configured."""

    async def deliver(self, member_id: str, text: str) -> DeliveryResult:
        logger.warning(
            "Reminder to %s not delivered: Discord token or server id not configured",
            member_id, extra={"member_id": member_id},
        )
        return DeliveryResult(False)


def get_delivery(
    repo: Annotated[SqlRepository, Depends(get_repository)],
) -> DeliveryTransport:
    """REST transport built from stored credentials."""
    settings = repo.get_configuration()
    cfg = get_config()

    token = (settings.discord_token if settings else None) or os.getenv("DISCORD_TOKEN")
    server_id = (settings.server_id if settings else None) or (cfg.guild_id if cfg else None)
    if not token or not server_id:
        return MissingCredentialsDelivery()

    keyword = cfg.reminder_channel_keyword if cfg else DEFAULT_REMINDER_CHANNEL_KEYWORD
    return RestChannelDelivery(token, server_id, keyword)


def get_reminder_service(
    repo: Annotated[SqlRepository, Depends(get_repository)],
    transport: Annotated[DeliveryTransport, Depends(get_delivery)],
) -> ReminderService:
    return ReminderService(repo, transport, dispatch_lock=_DISPATCH_LOCK)
