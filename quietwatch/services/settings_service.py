"""
quietwatch.services.settings_service — Runtime Configuration Access
====================================================================

Read/write helpers around the single ``bot_settings`` row, shaped for the
dashboard and the slash commands.  The Discord token never leaves this
module in clear text: views carry ``has_discord_token`` plus a masked
preview instead.

Every change is audited by the repository into ``settings_log``.
"""

from __future__ import annotations

import logging
from typing import Any

from quietwatch.database.models import BotSettings
from quietwatch.services.repository import SqlRepository

logger = logging.getLogger(__name__)


def mask_token(token: str | None) -> str | None:
    """``"abcd…wxyz"`` style preview, or None when no token is stored."""
    if not token:
        return None
    if len(token) <= 8:
        return "•" * len(token)
    return f"{token[:4]}…{token[-4:]}"


def settings_view(row: BotSettings | None) -> dict[str, Any] | None:
    """Dashboard-facing dict for a configuration row."""
    if row is None:
        return None
    return {
        "server_id": row.server_id,
        "inactivity_threshold": row.inactivity_threshold,
        "reminder_cooldown": row.reminder_cooldown,
        "rate_limit_minutes": row.rate_limit_minutes,
        "reminder_template": row.reminder_template,
        "is_active": row.is_active,
        "has_discord_token": bool(row.discord_token),
        "discord_token_preview": mask_token(row.discord_token),
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def get_settings(repo: SqlRepository) -> dict[str, Any] | None:
    return settings_view(repo.get_configuration())


def update_settings(
    repo: SqlRepository, *, actor: str | None = None, **fields: Any,
) -> dict[str, Any]:
    """Apply a partial update and return the new view.

    Raises ``ValueError`` for fields that are not configuration fields.
    """
    row = repo.update_configuration(actor=actor, **fields)
    changed = sorted(k for k in fields if k != "discord_token")
    if "discord_token" in fields:
        changed.append("discord_token (masked)")
    logger.info(
        "Settings updated by %s: %s", actor or "unknown", ", ".join(changed) or "(nothing)",
        extra={"task": "settings_update"},
    )
    return settings_view(row)


def set_active(repo: SqlRepository, active: bool, *, actor: str | None = None) -> dict[str, Any]:
    """Toggle the scheduler gate (``is_active``)."""
    return update_settings(repo, actor=actor, is_active=active)


def settings_history(repo: SqlRepository, limit: int = 25) -> list[dict[str, Any]]:
    return [
        {
            "id": entry.id,
            "actor": entry.actor,
            "before": entry.before_snapshot,
            "after": entry.after_snapshot,
            "timestamp": entry.timestamp.isoformat(),
        }
        for entry in repo.list_configuration_changes(limit)
    ]
