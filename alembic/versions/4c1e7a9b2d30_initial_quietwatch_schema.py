"""Initial Quietwatch schema: members, activities, reminders, bot_settings,
settings_log

Revision ID: 4c1e7a9b2d30
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "4c1e7a9b2d30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "members",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("handle", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="inactive"),
        sa.Column("messages_this_week", sa.Integer(), server_default="0"),
        sa.Column("voice_time_this_week", sa.Integer(), server_default="0"),
        sa.Column("total_messages", sa.Integer(), server_default="0"),
        sa.Column("total_voice_time", sa.Integer(), server_default="0"),
    )
    op.create_index("ix_members_status", "members", ["status"])
    op.create_index("ix_members_last_activity", "members", ["last_activity"])

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "member_id", sa.String(32),
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("channel_label", sa.String(100), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_activities_member_time", "activities", ["member_id", "timestamp"])
    op.create_index("ix_activities_timestamp", "activities", ["timestamp"])

    op.create_table(
        "reminders",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "member_id", sa.String(32),
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("days_since_last_activity", sa.Integer(), nullable=False),
        sa.Column("channel_label", sa.String(100), nullable=False),
    )
    op.create_index("ix_reminders_member_sent", "reminders", ["member_id", "sent_at"])
    op.create_index("ix_reminders_sent_at", "reminders", ["sent_at"])

    op.create_table(
        "bot_settings",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("discord_token", sa.Text(), nullable=True),
        sa.Column("server_id", sa.String(32), nullable=True),
        sa.Column("inactivity_threshold", sa.Integer(), server_default="14"),
        sa.Column("reminder_cooldown", sa.Integer(), server_default="3"),
        sa.Column("rate_limit_minutes", sa.Integer(), server_default="10"),
        sa.Column("reminder_template", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "settings_log",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("actor", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_settings_log_timestamp", "settings_log", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_settings_log_timestamp", table_name="settings_log")
    op.drop_table("settings_log")
    op.drop_table("bot_settings")
    op.drop_index("ix_reminders_sent_at", table_name="reminders")
    op.drop_index("ix_reminders_member_sent", table_name="reminders")
    op.drop_table("reminders")
    op.drop_index("ix_activities_timestamp", table_name="activities")
    op.drop_index("ix_activities_member_time", table_name="activities")
    op.drop_table("activities")
    op.drop_index("ix_members_last_activity", table_name="members")
    op.drop_index("ix_members_status", table_name="members")
    op.drop_table("members")
