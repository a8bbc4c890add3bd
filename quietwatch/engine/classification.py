"""
quietwatch.engine.classification — Tier Rule, Weekly Counters, Templates
=========================================================================

Pure functions with no database access.  The services feed them rows and
timestamps and persist whatever they return.

Tier rule, in precedence order:

1. Any message, or any voice join, inside the trailing 7-day window
   → ``active``.
2. Otherwise, whole days since ``last_activity`` (falling back to
   ``joined_at``) ≥ the inactivity threshold → ``very_inactive``.
3. Otherwise → ``inactive``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from quietwatch.constants import (
    ACTIVITY_WINDOW_DAYS,
    VOICE_SESSION_MINUTES,
    days_between,
    mention,
)
from quietwatch.database.models import Activity, ActivityKind, Member, MemberStatus

__all__ = [
    "WeeklyCounters",
    "window_start",
    "weekly_counters",
    "classify",
    "classify_member",
    "days_inactive",
    "render_reminder",
]


@dataclass(frozen=True, slots=True)
class WeeklyCounters:
    """Rolling engagement totals for the trailing activity window."""

    messages: int = 0
    voice_joins: int = 0

    @property
    def voice_minutes(self) -> int:
        return self.voice_joins * VOICE_SESSION_MINUTES

    @property
    def has_engagement(self) -> bool:
        return self.messages > 0 or self.voice_joins > 0


def window_start(now: datetime) -> datetime:
    """Lower bound (inclusive) of the rolling activity window ending at *now*."""
    return now - timedelta(days=ACTIVITY_WINDOW_DAYS)


def weekly_counters(activities: Iterable[Activity], now: datetime) -> WeeklyCounters:
    """Count messages and voice joins that fall inside ``[now - 7d, now]``."""
    start = window_start(now)
    messages = 0
    voice_joins = 0
    for activity in activities:
        if not (start <= activity.timestamp <= now):
            continue
        if activity.kind == ActivityKind.MESSAGE:
            messages += 1
        elif activity.kind == ActivityKind.VOICE_JOIN:
            voice_joins += 1
    return WeeklyCounters(messages=messages, voice_joins=voice_joins)


def classify(
    counters: WeeklyCounters,
    reference_time: datetime,
    now: datetime,
    threshold_days: int,
) -> MemberStatus:
    """Apply the three-branch tier rule."""
    if counters.has_engagement:
        return MemberStatus.ACTIVE
    if days_between(reference_time, now) >= threshold_days:
        return MemberStatus.VERY_INACTIVE
    return MemberStatus.INACTIVE


def classify_member(
    member: Member,
    counters: WeeklyCounters,
    now: datetime,
    threshold_days: int,
) -> MemberStatus:
    return classify(counters, member.reference_time, now, threshold_days)


def days_inactive(member: Member, now: datetime) -> int:
    """Whole days since the member's last activity (or join)."""
    return days_between(member.reference_time, now)


def render_reminder(template: str, member_id: str, days: int) -> str:
    """Fill ``{user}`` with a mention of *member_id* and ``{days}`` with *days*.

    Every occurrence of each placeholder is replaced.  Any other braces in
    the template are left as written.
    """
    return template.replace("{user}", mention(member_id)).replace("{days}", str(days))
