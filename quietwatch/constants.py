"""
quietwatch.constants — Shared Constants & Helpers
==================================================

Single source of truth for window sizes, default tuning values and the
small time helpers every layer needs.  Import from here instead of
duplicating in cogs, services, and the API.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

# ---------------------------------------------------------------------------
# Rolling activity window
# ---------------------------------------------------------------------------
ACTIVITY_WINDOW_DAYS = 7

# Every voice join counts as one fixed-length session.  Real join/leave
# interval accounting is not attempted.
VOICE_SESSION_MINUTES = 30

# ---------------------------------------------------------------------------
# Runtime configuration defaults (seeded into ``bot_settings``)
# ---------------------------------------------------------------------------
DEFAULT_INACTIVITY_THRESHOLD_DAYS = 14
DEFAULT_REMINDER_COOLDOWN_DAYS = 3
DEFAULT_RATE_LIMIT_MINUTES = 10
DEFAULT_REMINDER_TEMPLATE = (
    "Hey {user}! \U0001f44b We noticed you haven't been active for {days} days. "
    "We miss you in the server! Come say hi when you get a chance. \U0001f60a"
)

SETTINGS_ROW_ID = "default"

# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------
# Tick period of the reminder loop.  Independent of ``rate_limit_minutes``.
SCHEDULER_INTERVAL_SECONDS = 10 * 60

# Channel labels stored on reminders when the transport reports none
SCHEDULED_REMINDER_CHANNEL = "bot-channel"
MANUAL_REMINDER_CHANNEL = "manual-reminder"


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware ``now`` in UTC.  The default clock everywhere."""
    return datetime.now(UTC)


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed from *earlier* to *later* (floored, never negative)."""
    return max(0, (later - earlier) // timedelta(days=1))


def mention(member_id: str) -> str:
    """Discord user mention markup for *member_id*."""
    return f"<@{member_id}>"
