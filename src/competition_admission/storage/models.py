"""
ORM-модели базы данных.

Назначение:
- соревнования (только чтение: ими владеет внешний CRUD-модуль)
- регистрации (пишет только контроллер допуска)
- durable-очередь задач и DLQ
- уведомления (видимый результат обработчиков)

Время хранится как naive UTC, наружу отдаётся aware UTC (UTCDateTime).
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from competition_admission.common.ids import new_uuid
from competition_admission.common.time import utc_now
from competition_admission.domain.enums import TaskKind, TaskStatus


class UTCDateTime(TypeDecorator):
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


# =============================================================================
# BASE
# =============================================================================
class Base(DeclarativeBase):
    pass


# =============================================================================
# COMPETITION
# =============================================================================
class Competition(Base):
    """
    Соревнование. Для ядра — только чтение.
    """

    __tablename__ = "competitions"
    __table_args__ = (CheckConstraint("capacity > 0", name="ck_competitions_capacity_positive"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_uuid)
    title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    organizer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    reg_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    start_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# =============================================================================
# REGISTRATION
# =============================================================================
class Registration(Base):
    """
    Регистрация участника. После создания не меняется.
    """

    __tablename__ = "registrations"
    __table_args__ = (
        UniqueConstraint("user_id", "competition_id", name="uq_registrations_user_competition"),
        Index("ix_registrations_competition", "competition_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_uuid)
    competition_id: Mapped[str] = mapped_column(ForeignKey("competitions.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # NULL допускается многократно, непустой ключ даёт ровно одна регистрация навсегда
    idempotency_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    registered_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)


# =============================================================================
# TASK QUEUE
# =============================================================================
class Task(Base):
    """
    Задача durable-очереди.
    """

    __tablename__ = "tasks"
    __table_args__ = (Index("ix_tasks_status_run_at", "status", "run_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_uuid)
    kind: Mapped[TaskKind] = mapped_column(Enum(TaskKind), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    # Детерминированная идентичность задачи (дедуп постановок)
    dedup_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus), default=TaskStatus.queued, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    backoff_base_sec: Mapped[float] = mapped_column(Float, default=2.0, nullable=False)

    run_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    locked_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    lease_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)


# =============================================================================
# DEAD LETTERS
# =============================================================================
class DeadLetter(Base):
    """
    Задача, исчерпавшая попытки. Только добавление.
    """

    __tablename__ = "dead_letters"
    __table_args__ = (Index("ix_dead_letters_created_at", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[TaskKind] = mapped_column(Enum(TaskKind), nullable=False)
    dedup_key: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    last_error: Mapped[str] = mapped_column(Text, default="", nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)


# =============================================================================
# NOTIFICATIONS
# =============================================================================
class Notification(Base):
    """
    Уведомление (почтовый ящик пользователя).
    dedup_key уникален: повторное выполнение задачи не создаёт второе уведомление.
    """

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dedup_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    kind: Mapped[TaskKind] = mapped_column(Enum(TaskKind), nullable=False)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    registration_id: Mapped[str] = mapped_column(String(64), nullable=False)
    competition_id: Mapped[str] = mapped_column(String(64), nullable=False)

    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, default="", nullable=False)
    task_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
