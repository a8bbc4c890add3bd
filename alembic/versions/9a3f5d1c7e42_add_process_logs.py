"""Add process_logs for log records persisted by the bot process

Revision ID: 9a3f5d1c7e42
Revises: 4c1e7a9b2d30
Create Date: 2026-10-19 15:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "9a3f5d1c7e42"
down_revision = "4c1e7a9b2d30"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "process_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("levelno", sa.Integer(), nullable=False),
        sa.Column("logger", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("context", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_process_logs_source_time", "process_logs", ["source", "timestamp"])


def downgrade() -> None:
    op.drop_index("ix_process_logs_source_time", table_name="process_logs")
    op.drop_table("process_logs")
