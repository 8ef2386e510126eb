"""
Инициальная миграция.

Создаёт таблицы:
- competitions
- registrations
- tasks
- dead_letters
- notifications
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

# Тип общий для трёх таблиц: создаём один раз явно
_TASK_KIND = postgresql.ENUM("confirmation", "reminder", name="taskkind", create_type=False)
_TASK_STATUS = postgresql.ENUM("queued", "running", name="taskstatus", create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        postgresql.ENUM("confirmation", "reminder", name="taskkind").create(bind, checkfirst=True)
        postgresql.ENUM("queued", "running", name="taskstatus").create(bind, checkfirst=True)

    op.create_table(
        "competitions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("organizer_id", sa.String(length=64), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("reg_deadline", sa.DateTime(), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("capacity > 0", name="ck_competitions_capacity_positive"),
    )

    op.create_table(
        "registrations",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "competition_id",
            sa.String(length=64),
            sa.ForeignKey("competitions.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True, unique=True),
        sa.Column("registered_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "competition_id", name="uq_registrations_user_competition"),
    )
    op.create_index("ix_registrations_competition", "registrations", ["competition_id"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("kind", _TASK_KIND, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("dedup_key", sa.String(length=255), nullable=True, unique=True),
        sa.Column("status", _TASK_STATUS, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("backoff_base_sec", sa.Float(), nullable=False),
        sa.Column("run_at", sa.DateTime(), nullable=False),
        sa.Column("locked_by", sa.String(length=128), nullable=True),
        sa.Column("lease_until", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tasks_status_run_at", "tasks", ["status", "run_at"])

    op.create_table(
        "dead_letters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("task_id", sa.String(length=64), nullable=False),
        sa.Column("kind", _TASK_KIND, nullable=False),
        sa.Column("dedup_key", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_dead_letters_created_at", "dead_letters", ["created_at"])
    op.create_index("ix_dead_letters_dedup_key", "dead_letters", ["dedup_key"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("dedup_key", sa.String(length=255), nullable=False, unique=True),
        sa.Column("kind", _TASK_KIND, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("registration_id", sa.String(length=64), nullable=False),
        sa.Column("competition_id", sa.String(length=64), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("task_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_dead_letters_dedup_key", table_name="dead_letters")
    op.drop_index("ix_dead_letters_created_at", table_name="dead_letters")
    op.drop_table("dead_letters")
    op.drop_index("ix_tasks_status_run_at", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_registrations_competition", table_name="registrations")
    op.drop_table("registrations")
    op.drop_table("competitions")

    op.execute("DROP TYPE IF EXISTS taskstatus")
    op.execute("DROP TYPE IF EXISTS taskkind")
