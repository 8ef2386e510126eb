"""
Неизменяемые представления записей хранилища.

Наружу из сервисов отдаём их, а не ORM-объекты: они не привязаны к сессии
и безопасны для передачи между потоками.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .enums import TaskKind, TaskStatus


@dataclass(frozen=True)
class RegistrationRecord:
    id: str
    user_id: str
    competition_id: str
    registered_at: datetime
    idempotency_key: str | None = None

    @classmethod
    def from_model(cls, row: Any) -> RegistrationRecord:
        return cls(
            id=row.id,
            user_id=row.user_id,
            competition_id=row.competition_id,
            registered_at=row.registered_at,
            idempotency_key=row.idempotency_key,
        )


@dataclass(frozen=True)
class TaskRecord:
    id: str
    kind: TaskKind
    payload: dict[str, Any]
    dedup_key: str | None
    status: TaskStatus
    attempts: int
    max_attempts: int
    backoff_base_sec: float
    run_at: datetime
    locked_by: str | None = None
    lease_until: datetime | None = None
    last_error: str | None = None

    @classmethod
    def from_model(cls, row: Any) -> TaskRecord:
        return cls(
            id=row.id,
            kind=TaskKind(row.kind),
            payload=dict(row.payload or {}),
            dedup_key=row.dedup_key,
            status=TaskStatus(row.status),
            attempts=int(row.attempts or 0),
            max_attempts=int(row.max_attempts or 1),
            backoff_base_sec=float(row.backoff_base_sec or 0.0),
            run_at=row.run_at,
            locked_by=row.locked_by,
            lease_until=row.lease_until,
            last_error=row.last_error,
        )


@dataclass(frozen=True)
class DeadLetterRecord:
    id: int
    task_id: str
    kind: TaskKind
    dedup_key: str | None
    payload: dict[str, Any]
    last_error: str
    attempts: int
    created_at: datetime

    @classmethod
    def from_model(cls, row: Any) -> DeadLetterRecord:
        return cls(
            id=int(row.id),
            task_id=row.task_id,
            kind=TaskKind(row.kind),
            dedup_key=row.dedup_key,
            payload=dict(row.payload or {}),
            last_error=row.last_error or "",
            attempts=int(row.attempts),
            created_at=row.created_at,
        )
