"""
quietwatch.database.seed — Default Configuration Seeder
========================================================

Inserts the singleton ``bot_settings`` row on first startup so the
scheduler and dashboard always find a configuration.

Idempotent — an existing row (and every value an admin changed) is left
untouched.
"""

from __future__ import annotations

import logging
import os

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from quietwatch.constants import (
    DEFAULT_INACTIVITY_THRESHOLD_DAYS,
    DEFAULT_RATE_LIMIT_MINUTES,
    DEFAULT_REMINDER_COOLDOWN_DAYS,
    DEFAULT_REMINDER_TEMPLATE,
    SETTINGS_ROW_ID,
    utcnow,
)
from quietwatch.database.models import BotSettings

logger = logging.getLogger(__name__)


def seed_default_settings(engine: Engine) -> bool:
    """Insert the default configuration row if it doesn't exist.

    The Discord token is taken from ``DISCORD_TOKEN`` when present, so a
    fresh install picks up the secret from ``.env``.

    Returns True if a row was inserted.
    """
    session = Session(engine)
    try:
        if session.get(BotSettings, SETTINGS_ROW_ID) is not None:
            return False

        session.add(BotSettings(
            id=SETTINGS_ROW_ID,
            discord_token=os.getenv("DISCORD_TOKEN") or None,
            inactivity_threshold=DEFAULT_INACTIVITY_THRESHOLD_DAYS,
            reminder_cooldown=DEFAULT_REMINDER_COOLDOWN_DAYS,
            rate_limit_minutes=DEFAULT_RATE_LIMIT_MINUTES,
            reminder_template=DEFAULT_REMINDER_TEMPLATE,
            is_active=False,
            updated_at=utcnow(),
        ))
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    logger.info("Seeded default bot settings.")
    return True
