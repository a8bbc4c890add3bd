"""
quietwatch.config — YAML Configuration Loader
==============================================

**Why this file exists:**
This module reads ``config.yaml`` for **infrastructure-only** settings
(Discord identity, dashboard port, admin role).  All reminder tuning
values (inactivity threshold, cooldown, rate limit, message template)
live in the ``bot_settings`` database row, editable from the dashboard.

Usage::

    from quietwatch.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Quietwatch Dev"
    print(cfg.guild_id)          # 1468816181854081229
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_REMINDER_CHANNEL_KEYWORD = "bot"


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure/identity only.
# Reminder tuning lives in the DB ``bot_settings`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class QuietwatchConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Contains only infrastructure and identity settings.  Reminder
    thresholds and the message template are in the ``bot_settings`` row
    and read through :mod:`quietwatch.services.settings_service`.
    """

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int  # Primary guild snowflake (for member sync & delivery)

    # Dashboard
    dashboard_port: int

    # Admin
    admin_role_id: int  # Discord role required for /remind and /force-check

    # Reminders are posted to the first text channel whose name contains this
    reminder_channel_keyword: str = DEFAULT_REMINDER_CHANNEL_KEYWORD


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> QuietwatchConfig:
    """Read *path* and return a :class:`QuietwatchConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return QuietwatchConfig(
        community_name=raw["community_name"],
        bot_prefix=raw["bot_prefix"],
        guild_id=int(raw["guild_id"]),
        dashboard_port=int(raw["dashboard_port"]),
        admin_role_id=int(raw["admin_role_id"]),
        reminder_channel_keyword=(
            str(raw["reminder_channel_keyword"]).lower()
            if raw.get("reminder_channel_keyword")
            else DEFAULT_REMINDER_CHANNEL_KEYWORD
        ),
    )
