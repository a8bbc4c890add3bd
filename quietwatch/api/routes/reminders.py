"""
quietwatch.api.routes.reminders — Reminder history, manual send & force check
==============================================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from quietwatch.api.deps import get_reminder_service, get_repository, get_tracker
from quietwatch.database.engine import run_db
from quietwatch.services.activity_tracker import ActivityTracker
from quietwatch.services.reminder_service import ReminderService
from quietwatch.services.repository import SqlRepository

router = APIRouter(prefix="/reminders", tags=["reminders"])
logger = logging.getLogger(__name__)

RECENT_REMINDER_DAYS = 7


@router.get("/recent")
async def recent_reminders(
    limit: int = Query(50, ge=1, le=500),
    repo: SqlRepository = Depends(get_repository),
):
    """Reminders sent in the last week, newest first."""
    reminders = await run_db(repo.list_recent_reminders, None, RECENT_REMINDER_DAYS)
    members = {m.id: m for m in await run_db(repo.list_members)}
    return {
        "reminders": [
            {
                "id": r.id,
                "member_id": r.member_id,
                "handle": members[r.member_id].handle if r.member_id in members else None,
                "sent_at": r.sent_at.isoformat(),
                "days_since_last_activity": r.days_since_last_activity,
                "channel_label": r.channel_label,
            }
            for r in reminders[:limit]
        ],
    }


@router.post("/send/{member_id}")
async def send_reminder(
    member_id: str,
    repo: SqlRepository = Depends(get_repository),
    service: ReminderService = Depends(get_reminder_service),
):
    """Manual dispatch: ignores the rate limit and the per-member cooldown."""
    if await run_db(repo.get_member, member_id) is None:
        raise HTTPException(404, detail=f"Member {member_id} not found")

    if not await service.send_manual_reminder(member_id):
        raise HTTPException(400, detail="Failed to send reminder")
    return {"success": True, "member_id": member_id}


@router.post("/force-check")
async def force_check(tracker: ActivityTracker = Depends(get_tracker)):
    """Reclassify every tracked member now."""
    changed = await tracker.classify_all_members()
    return {"success": True, "changed": changed}
