"""
quietwatch.api.routes.settings — Runtime settings, audit & live logs
=====================================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator

from quietwatch.api.deps import get_repository
from quietwatch.database.engine import run_db
from quietwatch.services import settings_service
from quietwatch.services.log_buffer import (
    VALID_LEVELS,
    get_current_level,
    get_logs,
    read_persisted_logs,
    set_capture_level,
)
from quietwatch.services.repository import SqlRepository

router = APIRouter(tags=["settings"])
logger = logging.getLogger(__name__)

API_LOG_SOURCE = "api"

# Fields a PUT may set back to null
CLEARABLE_FIELDS = frozenset({"discord_token", "server_id"})


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    inactivity_threshold: int | None = Field(None, ge=1, le=365)
    reminder_cooldown: int | None = Field(None, ge=1, le=30)
    rate_limit_minutes: int | None = Field(None, ge=1, le=60)
    reminder_template: str | None = Field(None, max_length=2000)
    discord_token: str | None = None
    server_id: str | None = Field(None, max_length=32)
    is_active: bool | None = None

    @field_validator("reminder_template")
    @classmethod
    def _template_not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("reminder_template must not be empty")
        return value


class LogLevelUpdate(BaseModel):
    level: str


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
async def get_settings(repo: SqlRepository = Depends(get_repository)):
    view = await run_db(settings_service.get_settings, repo)
    if view is None:
        raise HTTPException(404, detail="Settings not initialised")
    return view


@router.put("/settings")
async def update_settings(
    body: SettingsUpdate,
    repo: SqlRepository = Depends(get_repository),
):
    # An explicit null clears a credential; for tuning fields it means "unchanged"
    fields = {
        k: v for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k in CLEARABLE_FIELDS
    }
    return await run_db(settings_service.update_settings, repo, actor="dashboard", **fields)


@router.get("/settings/history")
async def settings_history(
    limit: int = Query(25, ge=1, le=100),
    repo: SqlRepository = Depends(get_repository),
):
    return {"changes": await run_db(settings_service.settings_history, repo, limit)}


# ---------------------------------------------------------------------------
# Live Logs
# ---------------------------------------------------------------------------
@router.get("/logs")
async def get_live_logs(
    tail: int = Query(200, ge=1, le=5000),
    level: str | None = Query(None),
    logger_filter: str | None = Query(None, alias="logger"),
    source: str = Query(API_LOG_SOURCE, pattern="^(api|bot)$"),
    repo: SqlRepository = Depends(get_repository),
):
    """Recent log entries.

    ``source=api`` reads this process's ring buffer; ``source=bot`` reads
    the records the bot process persisted to the database.
    """
    if source == API_LOG_SOURCE:
        entries = get_logs(tail=tail, level=level, logger_filter=logger_filter)
    else:
        entries = await run_db(
            read_persisted_logs, repo.engine, source, tail, level, logger_filter,
        )
    return {
        "entries": entries,
        "total": len(entries),
        "source": source,
        "capture_level": get_current_level(),
        "valid_levels": list(VALID_LEVELS),
    }


@router.put("/logs/level")
def change_log_level(body: LogLevelUpdate):
    """Change the capture level of the ring-buffer handler on the fly."""
    level_name = body.level.upper()
    if level_name not in VALID_LEVELS:
        valid = ", ".join(VALID_LEVELS)
        raise HTTPException(400, detail=f"Invalid level. Must be one of: {valid}")
    return {"level": set_capture_level(level_name)}
