"""
quietwatch.services.repository — Member / Activity / Reminder Store
====================================================================

The core services depend only on the :class:`Repository` protocol.
:class:`SqlRepository` is the SQLAlchemy implementation used by the bot
and the API.

All methods are synchronous — call them from coroutines via
``await run_db(repo.method, ...)``.  Returned rows are detached from
their session and safe to read anywhere.

Timestamps for activities, reminders and configuration changes are
assigned here, at write time, from the injected clock.

The bot and the API are separate processes over the same database, so
the two read-modify-write paths are serialised in the database itself:

* :meth:`SqlRepository.modify_member` selects the member row
  ``FOR UPDATE`` and applies the caller's changes in that transaction.
* :meth:`SqlRepository.claim_reminder` row-locks ``bot_settings``,
  re-checks the rate-limit and cooldown gates, and inserts the reminder
  before it is delivered.  A failed delivery releases the claim.

SQLite has no row locks; there the single shared connection of the
test suite already serialises writers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import Engine, func, select

from quietwatch.constants import SETTINGS_ROW_ID, Clock, utcnow
from quietwatch.database.engine import get_session
from quietwatch.database.models import (
    Activity,
    ActivityKind,
    BotSettings,
    Member,
    Reminder,
    SettingsLog,
)

logger = logging.getLogger(__name__)

MEMBER_UPDATE_FIELDS: frozenset[str] = frozenset({
    "handle",
    "display_name",
    "last_activity",
    "status",
    "messages_this_week",
    "voice_time_this_week",
    "total_messages",
    "total_voice_time",
})

CUMULATIVE_FIELDS: tuple[str, ...] = ("total_messages", "total_voice_time")

CONFIGURATION_FIELDS: frozenset[str] = frozenset({
    "discord_token",
    "server_id",
    "inactivity_threshold",
    "reminder_cooldown",
    "rate_limit_minutes",
    "reminder_template",
    "is_active",
})


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class RepositoryError(Exception):
    """Base class for repository-level failures."""


class MemberNotFoundError(RepositoryError):
    def __init__(self, member_id: str) -> None:
        super().__init__(f"Member {member_id} not found")
        self.member_id = member_id


class MemberExistsError(RepositoryError):
    def __init__(self, member_id: str) -> None:
        super().__init__(f"Member {member_id} already exists")
        self.member_id = member_id


BLOCKED_RATE_LIMIT = "rate_limited"
BLOCKED_COOLDOWN = "cooldown"


class ReminderBlockedError(RepositoryError):
    """A reminder claim was refused because a gate is closed.

    ``reason`` is :data:`BLOCKED_RATE_LIMIT` or :data:`BLOCKED_COOLDOWN`.
    """

    def __init__(self, member_id: str, reason: str) -> None:
        super().__init__(f"Reminder for {member_id} blocked: {reason}")
        self.member_id = member_id
        self.reason = reason


MemberChanges = Callable[[Member, list[Activity]], dict[str, Any]]


# ---------------------------------------------------------------------------
# Interface consumed by the core
# ---------------------------------------------------------------------------
class Repository(Protocol):
    """Durable home for members, activities, reminders and configuration."""

    def now(self) -> datetime: ...

    def get_member(self, member_id: str) -> Member | None: ...

    def list_members(self) -> Sequence[Member]: ...

    def create_member(
        self,
        member_id: str,
        handle: str,
        display_name: str | None = None,
        joined_at: datetime | None = None,
        last_activity: datetime | None = None,
    ) -> Member: ...

    def update_member(self, member_id: str, **fields: Any) -> Member: ...

    def modify_member(
        self, member_id: str, compute: MemberChanges, since: datetime | None = None,
    ) -> tuple[Member, dict[str, Any]]: ...

    def list_inactive_members(self, day_threshold: int) -> Sequence[Member]: ...

    def append_activity(
        self,
        member_id: str,
        kind: ActivityKind,
        channel_label: str | None,
        payload: dict | None = None,
    ) -> Activity: ...

    def list_activities_by_member(
        self,
        member_id: str,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> Sequence[Activity]: ...

    def list_recent_activities(self, limit: int = 10) -> Sequence[Activity]: ...

    def append_reminder(
        self, member_id: str, days_since_last_activity: int, channel_label: str,
    ) -> Reminder: ...

    def claim_reminder(
        self,
        member_id: str,
        days_since_last_activity: int,
        channel_label: str,
        *,
        rate_limit_minutes: int | None = None,
        cooldown_days: int | None = None,
    ) -> Reminder: ...

    def confirm_reminder(self, reminder_id: int, channel_label: str) -> Reminder: ...

    def release_reminder(self, reminder_id: int) -> None: ...

    def list_recent_reminders(
        self, member_id: str | None, within_days: float,
    ) -> Sequence[Reminder]: ...

    def get_most_recent_reminder(self) -> Reminder | None: ...

    def get_configuration(self) -> BotSettings | None: ...

    def update_configuration(
        self, actor: str | None = None, **fields: Any,
    ) -> BotSettings: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------
def configuration_snapshot(row: BotSettings | None) -> dict[str, Any] | None:
    """Plain-dict view of a configuration row for the audit log.

    The Discord token is never copied out; only its presence is recorded.
    """
    if row is None:
        return None
    return {
        "has_discord_token": bool(row.discord_token),
        "server_id": row.server_id,
        "inactivity_threshold": row.inactivity_threshold,
        "reminder_cooldown": row.reminder_cooldown,
        "rate_limit_minutes": row.rate_limit_minutes,
        "reminder_template": row.reminder_template,
        "is_active": row.is_active,
    }


def _apply_member_fields(member: Member, fields: dict[str, Any]) -> None:
    unknown = set(fields) - MEMBER_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Unknown member fields: {sorted(unknown)}")
    for name in CUMULATIVE_FIELDS:
        if name in fields and fields[name] < (getattr(member, name) or 0):
            raise ValueError(f"{name} may not decrease for member {member.id}")
    for name, value in fields.items():
        setattr(member, name, value)


class SqlRepository:
    """:class:`Repository` backed by a SQLAlchemy :class:`Engine`.

    Parameters
    ----------
    engine:
        Engine for the Quietwatch schema.
    clock:
        Source of "now" for write-time timestamps and age queries.
    """

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # -------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------
    def get_member(self, member_id: str) -> Member | None:
        with get_session(self.engine) as session:
            return session.get(Member, member_id)

    def list_members(self) -> list[Member]:
        with get_session(self.engine) as session:
            return list(session.scalars(
                select(Member).order_by(Member.joined_at, Member.id)
            ).all())

    def create_member(
        self,
        member_id: str,
        handle: str,
        display_name: str | None = None,
        joined_at: datetime | None = None,
        last_activity: datetime | None = None,
    ) -> Member:
        """Insert a new member.  Raises :class:`MemberExistsError` on duplicates."""
        with get_session(self.engine) as session:
            if session.get(Member, member_id) is not None:
                raise MemberExistsError(member_id)
            member = Member(
                id=member_id,
                handle=handle,
                display_name=display_name,
                joined_at=joined_at or self.now(),
                last_activity=last_activity,
                messages_this_week=0,
                voice_time_this_week=0,
                total_messages=0,
                total_voice_time=0,
            )
            session.add(member)
        logger.debug("Created member %s (%s)", member_id, handle)
        return member

    def update_member(self, member_id: str, **fields: Any) -> Member:
        """Overwrite the supplied fields of an existing member.

        Raises
        ------
        MemberNotFoundError
            If *member_id* is unknown.
        ValueError
            On an unknown field, or a cumulative counter moving backwards.
        """
        with get_session(self.engine) as session:
            member = session.get(Member, member_id)
            if member is None:
                raise MemberNotFoundError(member_id)
            _apply_member_fields(member, fields)
        return member

    def modify_member(
        self, member_id: str, compute: MemberChanges, since: datetime | None = None,
    ) -> tuple[Member, dict[str, Any]]:
        """Read-modify-write one member in a single locked transaction.

        The member row is selected ``FOR UPDATE``; a writer in another
        process waits until this one commits.  *compute* receives the
        locked row and its activities at or after *since* (newest first)
        and returns the fields to change.  An empty dict writes nothing.

        Returns the updated member and the changes applied.
        """
        with get_session(self.engine) as session:
            member = session.scalars(
                select(Member).where(Member.id == member_id).with_for_update()
            ).first()
            if member is None:
                raise MemberNotFoundError(member_id)

            stmt = select(Activity).where(Activity.member_id == member_id)
            if since is not None:
                stmt = stmt.where(Activity.timestamp >= since)
            activities = list(session.scalars(
                stmt.order_by(Activity.timestamp.desc(), Activity.id.desc())
            ).all())

            changes = compute(member, activities)
            if changes:
                _apply_member_fields(member, changes)
        return member, changes

    def list_inactive_members(self, day_threshold: int) -> list[Member]:
        """Members whose last activity (or join) is at least *day_threshold* days old.

        Longest-quiet first; ties broken by member id.
        """
        cutoff = self.now() - timedelta(days=day_threshold)
        reference = func.coalesce(Member.last_activity, Member.joined_at)
        with get_session(self.engine) as session:
            return list(session.scalars(
                select(Member)
                .where(reference <= cutoff)
                .order_by(reference.asc(), Member.id)
            ).all())

    # -------------------------------------------------------------------
    # Activities
    # -------------------------------------------------------------------
    def append_activity(
        self,
        member_id: str,
        kind: ActivityKind,
        channel_label: str | None,
        payload: dict | None = None,
    ) -> Activity:
        activity = Activity(
            member_id=member_id,
            kind=ActivityKind(kind).value,
            channel_label=channel_label,
            payload=payload,
            timestamp=self.now(),
        )
        with get_session(self.engine) as session:
            session.add(activity)
        return activity

    def list_activities_by_member(
        self,
        member_id: str,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[Activity]:
        """A member's activities, newest first, optionally bounded below by *since*."""
        stmt = select(Activity).where(Activity.member_id == member_id)
        if since is not None:
            stmt = stmt.where(Activity.timestamp >= since)
        stmt = stmt.order_by(Activity.timestamp.desc(), Activity.id.desc())
        if limit:
            stmt = stmt.limit(limit)
        with get_session(self.engine) as session:
            return list(session.scalars(stmt).all())

    def list_recent_activities(self, limit: int = 10) -> list[Activity]:
        with get_session(self.engine) as session:
            return list(session.scalars(
                select(Activity)
                .order_by(Activity.timestamp.desc(), Activity.id.desc())
                .limit(limit)
            ).all())

    # -------------------------------------------------------------------
    # Reminders
    # -------------------------------------------------------------------
    def append_reminder(
        self, member_id: str, days_since_last_activity: int, channel_label: str,
    ) -> Reminder:
        reminder = Reminder(
            member_id=member_id,
            days_since_last_activity=days_since_last_activity,
            channel_label=channel_label,
            sent_at=self.now(),
        )
        with get_session(self.engine) as session:
            session.add(reminder)
        return reminder

    def claim_reminder(
        self,
        member_id: str,
        days_since_last_activity: int,
        channel_label: str,
        *,
        rate_limit_minutes: int | None = None,
        cooldown_days: int | None = None,
    ) -> Reminder:
        """Check the gates and record a reminder in one transaction.

        The ``bot_settings`` row is locked ``FOR UPDATE`` first, so claims
        from the bot and the API queue behind each other and every gate
        read sees the other's committed reminder.  Pass ``None`` for a
        gate to skip it (manual dispatch).

        The claim is written before delivery; call :meth:`confirm_reminder`
        once delivered or :meth:`release_reminder` if delivery failed.

        Raises
        ------
        ReminderBlockedError
            If the global rate limit or the member's cooldown is active.
        """
        with get_session(self.engine) as session:
            session.execute(
                select(BotSettings.id)
                .where(BotSettings.id == SETTINGS_ROW_ID)
                .with_for_update()
            )
            now = self.now()

            if rate_limit_minutes is not None:
                last = session.scalars(
                    select(Reminder)
                    .order_by(Reminder.sent_at.desc(), Reminder.id.desc())
                    .limit(1)
                ).first()
                if last is not None and now - last.sent_at < timedelta(minutes=rate_limit_minutes):
                    raise ReminderBlockedError(member_id, BLOCKED_RATE_LIMIT)

            if cooldown_days is not None:
                recent = session.scalars(
                    select(Reminder.id)
                    .where(Reminder.member_id == member_id)
                    .where(Reminder.sent_at >= now - timedelta(days=cooldown_days))
                    .limit(1)
                ).first()
                if recent is not None:
                    raise ReminderBlockedError(member_id, BLOCKED_COOLDOWN)

            reminder = Reminder(
                member_id=member_id,
                days_since_last_activity=days_since_last_activity,
                channel_label=channel_label,
                sent_at=now,
            )
            session.add(reminder)
        return reminder

    def confirm_reminder(self, reminder_id: int, channel_label: str) -> Reminder:
        """Stamp a claimed reminder with the channel it was delivered to."""
        with get_session(self.engine) as session:
            reminder = session.get(Reminder, reminder_id)
            if reminder is None:
                raise RepositoryError(f"Reminder {reminder_id} not found")
            if reminder.channel_label != channel_label:
                reminder.channel_label = channel_label
        return reminder

    def release_reminder(self, reminder_id: int) -> None:
        """Drop a claimed reminder whose delivery failed."""
        with get_session(self.engine) as session:
            reminder = session.get(Reminder, reminder_id)
            if reminder is not None:
                session.delete(reminder)

    def list_recent_reminders(
        self, member_id: str | None, within_days: float,
    ) -> list[Reminder]:
        """Reminders sent in the last *within_days* days, newest first.

        ``member_id=None`` returns reminders for every member.
        """
        cutoff = self.now() - timedelta(days=within_days)
        stmt = select(Reminder).where(Reminder.sent_at >= cutoff)
        if member_id is not None:
            stmt = stmt.where(Reminder.member_id == member_id)
        stmt = stmt.order_by(Reminder.sent_at.desc(), Reminder.id.desc())
        with get_session(self.engine) as session:
            return list(session.scalars(stmt).all())

    def get_most_recent_reminder(self) -> Reminder | None:
        with get_session(self.engine) as session:
            return session.scalars(
                select(Reminder)
                .order_by(Reminder.sent_at.desc(), Reminder.id.desc())
                .limit(1)
            ).first()

    # -------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------
    def get_configuration(self) -> BotSettings | None:
        with get_session(self.engine) as session:
            return session.get(BotSettings, SETTINGS_ROW_ID)

    def update_configuration(self, actor: str | None = None, **fields: Any) -> BotSettings:
        """Overwrite the supplied configuration fields; omitted fields keep
        their value.  Creates the row with defaults if it is missing.

        Every call that changes something appends a :class:`SettingsLog`
        row with before/after snapshots.
        """
        unknown = set(fields) - CONFIGURATION_FIELDS
        if unknown:
            raise ValueError(f"Unknown configuration fields: {sorted(unknown)}")

        with get_session(self.engine) as session:
            row = session.get(BotSettings, SETTINGS_ROW_ID)
            before = configuration_snapshot(row)
            if row is None:
                row = BotSettings(id=SETTINGS_ROW_ID)
                session.add(row)
                session.flush()  # apply column defaults before snapshotting

            for name, value in fields.items():
                setattr(row, name, value)
            row.updated_at = self.now()

            after = configuration_snapshot(row)
            if before != after:
                session.add(SettingsLog(
                    actor=actor,
                    before_snapshot=before,
                    after_snapshot=after,
                    timestamp=self.now(),
                ))
        return row

    def list_configuration_changes(self, limit: int = 25) -> list[SettingsLog]:
        with get_session(self.engine) as session:
            return list(session.scalars(
                select(SettingsLog)
                .order_by(SettingsLog.timestamp.desc(), SettingsLog.id.desc())
                .limit(limit)
            ).all())
