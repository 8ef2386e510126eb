"""
Репозитории (DAO слой).

Правила:
- Никакой бизнес-логики
- Только CRUD и запросы
- Транзакцией управляет вызывающая сторона (Database.session)
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, desc, func, select
from sqlalchemy.orm import Session

from competition_admission.domain.enums import TaskKind, TaskStatus

from .models import Competition, DeadLetter, Notification, Registration, Task


# =============================================================================
# COMPETITION REPOSITORY
# =============================================================================
class CompetitionRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, competition_id: str) -> Competition | None:
        return self.session.get(Competition, competition_id)

    def get_for_update(self, competition_id: str) -> Competition | None:
        """
        Чтение строки соревнования с блокировкой (SELECT ... FOR UPDATE).
        На SQLite блокировку даёт BEGIN IMMEDIATE, FOR UPDATE не рендерится.
        """
        stmt = select(Competition).where(Competition.id == competition_id).with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def list_starting_between(self, start: datetime, end: datetime) -> list[Competition]:
        stmt = (
            select(Competition)
            .where(
                Competition.deleted_at.is_(None),
                Competition.start_date.is_not(None),
                Competition.start_date >= start,
                Competition.start_date < end,
            )
            .order_by(Competition.start_date)
        )
        return list(self.session.execute(stmt).scalars())

    def add(self, competition: Competition) -> Competition:
        self.session.add(competition)
        return competition


# =============================================================================
# REGISTRATION REPOSITORY
# =============================================================================
class RegistrationRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, registration_id: str) -> Registration | None:
        return self.session.get(Registration, registration_id)

    def get_by_idempotency_key(self, key: str) -> Registration | None:
        stmt = select(Registration).where(Registration.idempotency_key == key)
        return self.session.execute(stmt).scalar_one_or_none()

    def get_for_user(self, *, user_id: str, competition_id: str) -> Registration | None:
        stmt = select(Registration).where(
            Registration.user_id == user_id,
            Registration.competition_id == competition_id,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def count_for_competition(self, competition_id: str) -> int:
        stmt = select(func.count(Registration.id)).where(
            Registration.competition_id == competition_id
        )
        return int(self.session.execute(stmt).scalar_one())

    def add(self, registration: Registration) -> Registration:
        self.session.add(registration)
        return registration

    def list_for_competition(self, competition_id: str) -> list[Registration]:
        stmt = (
            select(Registration)
            .where(Registration.competition_id == competition_id)
            .order_by(desc(Registration.registered_at), desc(Registration.id))
        )
        return list(self.session.execute(stmt).scalars())

    def list_for_user(self, user_id: str) -> list[Registration]:
        stmt = (
            select(Registration)
            .where(Registration.user_id == user_id)
            .order_by(desc(Registration.registered_at), desc(Registration.id))
        )
        return list(self.session.execute(stmt).scalars())

    def list_registered_between(
        self, start: datetime, end: datetime, *, limit: int = 500
    ) -> list[Registration]:
        stmt = (
            select(Registration)
            .where(Registration.registered_at >= start, Registration.registered_at < end)
            .order_by(Registration.registered_at)
            .limit(max(1, limit))
        )
        return list(self.session.execute(stmt).scalars())


# =============================================================================
# TASK REPOSITORY
# =============================================================================
class TaskRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, task_id: str) -> Task | None:
        return self.session.get(Task, task_id)

    def get_by_dedup_key(self, dedup_key: str) -> Task | None:
        stmt = select(Task).where(Task.dedup_key == dedup_key)
        return self.session.execute(stmt).scalar_one_or_none()

    def add(self, task: Task) -> Task:
        self.session.add(task)
        return task

    def next_eligible(self, now: datetime) -> Task | None:
        """
        Самая старая готовая к запуску задача.
        FOR UPDATE SKIP LOCKED: конкурентные воркеры не ждут друг друга
        и не забирают одну и ту же строку.
        """
        stmt = (
            select(Task)
            .where(Task.status == TaskStatus.queued, Task.run_at <= now)
            .order_by(Task.run_at, Task.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_owned(self, task_id: str, *, worker_id: str, attempts: int) -> Task | None:
        """
        Задача, которую всё ещё держит именно этот захват (воркер + номер попытки).
        """
        stmt = (
            select(Task)
            .where(
                Task.id == task_id,
                Task.status == TaskStatus.running,
                Task.locked_by == worker_id,
                Task.attempts == attempts,
            )
            .with_for_update()
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_expired_leases(self, now: datetime, *, limit: int = 200) -> list[Task]:
        stmt = (
            select(Task)
            .where(
                Task.status == TaskStatus.running,
                Task.lease_until.is_not(None),
                Task.lease_until < now,
            )
            .order_by(Task.lease_until)
            .limit(max(1, limit))
            .with_for_update(skip_locked=True)
        )
        return list(self.session.execute(stmt).scalars())

    def existing_dedup_keys(self, keys: Iterable[str]) -> set[str]:
        keys = list(keys)
        if not keys:
            return set()
        stmt = select(Task.dedup_key).where(Task.dedup_key.in_(keys))
        return {k for k in self.session.execute(stmt).scalars() if k}

    def delete(self, task_id: str) -> int:
        result = self.session.execute(delete(Task).where(Task.id == task_id))
        return int(result.rowcount or 0)

    def count(self, *, kind: TaskKind | None = None) -> int:
        stmt = select(func.count(Task.id))
        if kind is not None:
            stmt = stmt.where(Task.kind == kind)
        return int(self.session.execute(stmt).scalar_one())


# =============================================================================
# DEAD LETTER REPOSITORY
# =============================================================================
class DeadLetterRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def append_from_task(self, task: Task, *, error: str, now: datetime) -> DeadLetter:
        entry = DeadLetter(
            task_id=task.id,
            kind=task.kind,
            dedup_key=task.dedup_key,
            payload=dict(task.payload or {}),
            last_error=error,
            attempts=int(task.attempts),
            created_at=now,
        )
        self.session.add(entry)
        return entry

    def get(self, entry_id: int) -> DeadLetter | None:
        return self.session.get(DeadLetter, entry_id)

    def list_recent(self, *, limit: int = 100, kind: TaskKind | None = None) -> list[DeadLetter]:
        stmt = select(DeadLetter)
        if kind is not None:
            stmt = stmt.where(DeadLetter.kind == kind)
        stmt = stmt.order_by(desc(DeadLetter.created_at), desc(DeadLetter.id)).limit(
            max(1, min(limit, 500))
        )
        return list(self.session.execute(stmt).scalars())

    def list_for_task(self, task_id: str) -> list[DeadLetter]:
        stmt = select(DeadLetter).where(DeadLetter.task_id == task_id).order_by(DeadLetter.id)
        return list(self.session.execute(stmt).scalars())

    def existing_dedup_keys(self, keys: Iterable[str]) -> set[str]:
        keys = list(keys)
        if not keys:
            return set()
        stmt = select(DeadLetter.dedup_key).where(DeadLetter.dedup_key.in_(keys))
        return {k for k in self.session.execute(stmt).scalars() if k}

    def count(self) -> int:
        return int(self.session.execute(select(func.count(DeadLetter.id))).scalar_one())


# =============================================================================
# NOTIFICATION REPOSITORY
# =============================================================================
class NotificationRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_dedup_key(self, dedup_key: str) -> Notification | None:
        stmt = select(Notification).where(Notification.dedup_key == dedup_key)
        return self.session.execute(stmt).scalar_one_or_none()

    def add(self, notification: Notification) -> Notification:
        self.session.add(notification)
        return notification

    def existing_dedup_keys(self, keys: Iterable[str]) -> set[str]:
        keys = list(keys)
        if not keys:
            return set()
        stmt = select(Notification.dedup_key).where(Notification.dedup_key.in_(keys))
        return set(self.session.execute(stmt).scalars())

    def list_for_user(self, user_id: str, *, limit: int = 100) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(desc(Notification.created_at), desc(Notification.id))
            .limit(max(1, min(limit, 500)))
        )
        return list(self.session.execute(stmt).scalars())
