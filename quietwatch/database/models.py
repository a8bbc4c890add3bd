"""
quietwatch.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- members       — Tracked community members with cached status tier
- activities    — Append-only engagement journal (message / voice join / leave)
- reminders     — Append-only record of every re-engagement reminder sent
- bot_settings  — Singleton runtime configuration row (``id = 'default'``)
- settings_log  — Append-only audit trail of configuration changes
- process_logs  — Log records persisted by the bot process for the dashboard
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from quietwatch.constants import (
    DEFAULT_INACTIVITY_THRESHOLD_DAYS,
    DEFAULT_RATE_LIMIT_MINUTES,
    DEFAULT_REMINDER_COOLDOWN_DAYS,
    DEFAULT_REMINDER_TEMPLATE,
    SETTINGS_ROW_ID,
)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Quietwatch ORM models."""


class UtcDateTime(TypeDecorator):
    """``DateTime(timezone=True)`` that always hands back aware UTC values.

    SQLite drops tzinfo on the way out; PostgreSQL keeps it.  Either way
    the application only ever sees aware UTC datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class MemberStatus(enum.StrEnum):
    """Activity tier derived from recent engagement."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    VERY_INACTIVE = "very_inactive"


class ActivityKind(enum.StrEnum):
    """Kinds of engagement recorded in the activity journal."""
    MESSAGE = "message"
    VOICE_JOIN = "voice_join"
    VOICE_LEAVE = "voice_leave"


# ---------------------------------------------------------------------------
# Members — one row per tracked Discord member
# ---------------------------------------------------------------------------
class Member(Base):
    """A tracked participant.

    ``status`` is a cached projection of the weekly counters and the time
    since ``last_activity`` (or ``joined_at``).  Only the classifier
    writes it.
    """
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # Discord snowflake
    handle: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100), default=None)
    joined_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    last_activity: Mapped[datetime | None] = mapped_column(UtcDateTime, default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MemberStatus.INACTIVE.value
    )
    messages_this_week: Mapped[int] = mapped_column(Integer, default=0)
    voice_time_this_week: Mapped[int] = mapped_column(Integer, default=0)  # minutes
    total_messages: Mapped[int] = mapped_column(Integer, default=0)
    total_voice_time: Mapped[int] = mapped_column(Integer, default=0)  # minutes

    activities: Mapped[list[Activity]] = relationship(
        back_populates="member", cascade="all, delete-orphan"
    )
    reminders: Mapped[list[Reminder]] = relationship(
        back_populates="member", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_members_status", "status"),
        Index("ix_members_last_activity", "last_activity"),
    )

    @property
    def reference_time(self) -> datetime:
        """``last_activity`` if the member ever did anything, else ``joined_at``."""
        return self.last_activity or self.joined_at

    def __repr__(self) -> str:
        return f"<Member id={self.id} handle={self.handle!r} status={self.status}>"


# ---------------------------------------------------------------------------
# Activities — append-only engagement journal
# ---------------------------------------------------------------------------
class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    channel_label: Mapped[str | None] = mapped_column(String(100), default=None)
    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    member: Mapped[Member] = relationship(back_populates="activities")

    __table_args__ = (
        Index("ix_activities_member_time", "member_id", "timestamp"),
        Index("ix_activities_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Activity id={self.id} member={self.member_id} kind={self.kind}>"


# ---------------------------------------------------------------------------
# Reminders — append-only record of sent notifications
# ---------------------------------------------------------------------------
class Reminder(Base):
    __tablename__ = "reminders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    sent_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    days_since_last_activity: Mapped[int] = mapped_column(Integer, nullable=False)
    channel_label: Mapped[str] = mapped_column(String(100), nullable=False)

    member: Mapped[Member] = relationship(back_populates="reminders")

    __table_args__ = (
        Index("ix_reminders_member_sent", "member_id", "sent_at"),
        Index("ix_reminders_sent_at", "sent_at"),
    )

    def __repr__(self) -> str:
        return f"<Reminder id={self.id} member={self.member_id} sent_at={self.sent_at}>"


# ---------------------------------------------------------------------------
# BotSettings — singleton runtime configuration
# ---------------------------------------------------------------------------
class BotSettings(Base):
    """Reminder tuning knobs plus the event-source credentials.

    Exactly one row (``id = 'default'``) exists once the database has
    been seeded.  Readers always go to the database; nothing here is
    cached in-process.
    """
    __tablename__ = "bot_settings"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default=SETTINGS_ROW_ID)
    discord_token: Mapped[str | None] = mapped_column(Text, default=None)
    server_id: Mapped[str | None] = mapped_column(String(32), default=None)
    inactivity_threshold: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_INACTIVITY_THRESHOLD_DAYS
    )
    reminder_cooldown: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_REMINDER_COOLDOWN_DAYS
    )
    rate_limit_minutes: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_RATE_LIMIT_MINUTES
    )
    reminder_template: Mapped[str] = mapped_column(
        Text, default=DEFAULT_REMINDER_TEMPLATE
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime | None] = mapped_column(UtcDateTime, default=None)

    def __repr__(self) -> str:
        return (
            f"<BotSettings threshold={self.inactivity_threshold} "
            f"cooldown={self.reminder_cooldown} active={self.is_active}>"
        )


# ---------------------------------------------------------------------------
# SettingsLog — append-only configuration audit trail
# ---------------------------------------------------------------------------
class SettingsLog(Base):
    __tablename__ = "settings_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)

    __table_args__ = (
        Index("ix_settings_log_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<SettingsLog id={self.id} actor={self.actor!r}>"


# ---------------------------------------------------------------------------
# ProcessLog — persisted log records from processes without an HTTP surface
# ---------------------------------------------------------------------------
class ProcessLog(Base):
    """One log record written by :class:`~quietwatch.services.log_buffer.DatabaseLogHandler`.

    The bot process has no API of its own; its records land here so the
    dashboard can read them.  Rows older than the retention window are
    pruned by the writer.
    """
    __tablename__ = "process_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    levelno: Mapped[int] = mapped_column(Integer, nullable=False)
    logger: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_process_logs_source_time", "source", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<ProcessLog id={self.id} source={self.source} level={self.level}>"
