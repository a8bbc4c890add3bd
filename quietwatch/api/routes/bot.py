"""
quietwatch.api.routes.bot — Scheduler on/off switch & status
=============================================================

The reminder scheduler runs inside the bot process and checks
``is_active`` on every tick, so toggling it here takes effect at the
next tick without a restart.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from quietwatch.api.deps import get_repository
from quietwatch.constants import SCHEDULER_INTERVAL_SECONDS
from quietwatch.database.engine import run_db
from quietwatch.services import settings_service
from quietwatch.services.repository import SqlRepository

router = APIRouter(prefix="/bot", tags=["bot"])


@router.get("/status")
async def bot_status(repo: SqlRepository = Depends(get_repository)):
    config = await run_db(repo.get_configuration)
    members = await run_db(repo.list_members)
    last = await run_db(repo.get_most_recent_reminder)
    return {
        "is_active": bool(config and config.is_active),
        "has_discord_token": bool(config and config.discord_token),
        "server_id": config.server_id if config else None,
        "member_count": len(members),
        "scheduler_interval_seconds": SCHEDULER_INTERVAL_SECONDS,
        "last_reminder_at": last.sent_at.isoformat() if last else None,
    }


@router.post("/start")
async def start_bot(repo: SqlRepository = Depends(get_repository)):
    view = await run_db(settings_service.set_active, repo, True, actor="dashboard")
    return {"success": True, "is_active": view["is_active"]}


@router.post("/stop")
async def stop_bot(repo: SqlRepository = Depends(get_repository)):
    view = await run_db(settings_service.set_active, repo, False, actor="dashboard")
    return {"success": True, "is_active": view["is_active"]}
