"""
quietwatch.api.routes.members — Members, stats & activity feed
===============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from quietwatch.api.deps import get_repository
from quietwatch.constants import DEFAULT_INACTIVITY_THRESHOLD_DAYS
from quietwatch.database.engine import run_db
from quietwatch.database.models import Activity, Member, MemberStatus
from quietwatch.engine.classification import days_inactive
from quietwatch.services.repository import SqlRepository

router = APIRouter(tags=["members"])

# Look-back used to annotate inactive members with their last reminder
LAST_REMINDER_LOOKBACK_DAYS = 30


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def member_to_dict(member: Member) -> dict:
    return {
        "id": member.id,
        "handle": member.handle,
        "display_name": member.display_name,
        "joined_at": _iso(member.joined_at),
        "last_activity": _iso(member.last_activity),
        "status": member.status,
        "messages_this_week": member.messages_this_week,
        "voice_time_this_week": member.voice_time_this_week,
        "total_messages": member.total_messages,
        "total_voice_time": member.total_voice_time,
    }


def activity_to_dict(activity: Activity, member: Member | None = None) -> dict:
    data = {
        "id": activity.id,
        "member_id": activity.member_id,
        "kind": activity.kind,
        "channel_label": activity.channel_label,
        "timestamp": _iso(activity.timestamp),
        "payload": activity.payload,
    }
    if member is not None:
        data["handle"] = member.handle
        data["display_name"] = member.display_name
    return data


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------
@router.get("/members")
async def list_members(repo: SqlRepository = Depends(get_repository)):
    members = await run_db(repo.list_members)
    return {"members": [member_to_dict(m) for m in members], "total": len(members)}


@router.get("/members/stats")
async def member_stats(repo: SqlRepository = Depends(get_repository)):
    members = await run_db(repo.list_members)
    sent_today = await run_db(repo.list_recent_reminders, None, 1)
    by_status = {s.value: 0 for s in MemberStatus}
    for m in members:
        by_status[m.status] = by_status.get(m.status, 0) + 1
    return {
        "total_members": len(members),
        "active_members": by_status[MemberStatus.ACTIVE.value],
        "inactive_members": by_status[MemberStatus.INACTIVE.value],
        "very_inactive_members": by_status[MemberStatus.VERY_INACTIVE.value],
        "reminders_sent_today": len(sent_today),
    }


@router.get("/members/inactive")
async def inactive_members(repo: SqlRepository = Depends(get_repository)):
    """Reminder candidates at the live threshold, longest-quiet first."""
    config = await run_db(repo.get_configuration)
    threshold = (config.inactivity_threshold if config else None) or DEFAULT_INACTIVITY_THRESHOLD_DAYS

    members = await run_db(repo.list_inactive_members, threshold)
    recent = await run_db(repo.list_recent_reminders, None, LAST_REMINDER_LOOKBACK_DAYS)
    last_reminder: dict[str, str] = {}
    for r in recent:  # newest first
        last_reminder.setdefault(r.member_id, r.sent_at.isoformat())

    now = repo.now()
    return {
        "threshold_days": threshold,
        "members": [
            {
                **member_to_dict(m),
                "days_since_last_activity": days_inactive(m, now),
                "last_reminder_at": last_reminder.get(m.id),
            }
            for m in members
        ],
    }


@router.get("/members/{member_id}/activities")
async def member_activities(
    member_id: str,
    limit: int = Query(50, ge=1, le=500),
    repo: SqlRepository = Depends(get_repository),
):
    if await run_db(repo.get_member, member_id) is None:
        raise HTTPException(404, detail=f"Member {member_id} not found")
    activities = await run_db(repo.list_activities_by_member, member_id, limit)
    return {"activities": [activity_to_dict(a) for a in activities]}


# ---------------------------------------------------------------------------
# Activity feed
# ---------------------------------------------------------------------------
@router.get("/activities/recent")
async def recent_activities(
    limit: int = Query(10, ge=1, le=200),
    repo: SqlRepository = Depends(get_repository),
):
    activities = await run_db(repo.list_recent_activities, limit)
    members = {m.id: m for m in await run_db(repo.list_members)}
    return {
        "activities": [activity_to_dict(a, members.get(a.member_id)) for a in activities],
    }
