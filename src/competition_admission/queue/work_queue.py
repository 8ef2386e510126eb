"""
Durable очередь задач поверх транзакционного хранилища.

Назначение:
- задачи переживают падение процесса-продюсера (строки в таблице tasks)
- at-least-once: задача захватывается с арендой (lease); если воркер упал,
  аренда истекает и requeue_expired() возвращает задачу в очередь
- дедупликация постановок по dedup_key (детерминированная идентичность задачи)
- завершение (complete / reschedule / dead_letter) фенсится захватом:
  locked_by + attempts; опоздавший воркер с перехваченной арендой ничего не меняет

Состояния:
- queued  → готова к запуску после run_at
- running → захвачена воркером до lease_until
- успех / DLQ → строка удаляется
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from competition_admission.common.ids import new_uuid
from competition_admission.common.logging import get_queue_logger
from competition_admission.common.metrics import (
    DEAD_LETTERS_TOTAL,
    LEASES_EXPIRED_TOTAL,
    QUEUE_DEPTH,
    QUEUE_ENQUEUED_TOTAL,
    QUEUE_STALE_SETTLES_TOTAL,
)
from competition_admission.common.time import Clock, utc_now
from competition_admission.domain.enums import TaskStatus
from competition_admission.domain.records import DeadLetterRecord, TaskRecord
from competition_admission.storage.db import Database
from competition_admission.storage.models import Task
from competition_admission.storage.repositories import DeadLetterRepository, TaskRepository

from .tasks import ConfirmationTask, ReminderTask, default_dedup_key

log = get_queue_logger()

LEASE_EXPIRED_ERROR = "lease_expired"


class WorkQueue:
    def __init__(
        self,
        db: Database,
        *,
        default_max_attempts: int = 3,
        default_backoff_base_sec: float = 2.0,
        clock: Clock = utc_now,
    ) -> None:
        self.db = db
        self.default_max_attempts = max(1, int(default_max_attempts))
        self.default_backoff_base_sec = float(default_backoff_base_sec)
        self._clock = clock

    # -------------------------------------------------------------------------
    # Постановка
    # -------------------------------------------------------------------------
    def enqueue(
        self,
        task: ConfirmationTask | ReminderTask,
        *,
        max_attempts: int | None = None,
        backoff_base_sec: float | None = None,
        run_at: datetime | None = None,
        dedup_key: str | None = None,
    ) -> str:
        task_id, _ = self.try_enqueue(
            task,
            max_attempts=max_attempts,
            backoff_base_sec=backoff_base_sec,
            run_at=run_at,
            dedup_key=dedup_key,
        )
        return task_id

    def try_enqueue(
        self,
        task: ConfirmationTask | ReminderTask,
        *,
        max_attempts: int | None = None,
        backoff_base_sec: float | None = None,
        run_at: datetime | None = None,
        dedup_key: str | None = None,
    ) -> tuple[str, bool]:
        """
        Возвращает (task_id, created).
        created=False: задача с тем же dedup_key уже стоит в очереди / выполняется.
        """
        key = dedup_key or default_dedup_key(task)
        kind = task.task_kind
        now = self._clock()

        try:
            with self.db.session() as s:
                repo = TaskRepository(s)
                existing = repo.get_by_dedup_key(key)
                if existing is not None:
                    QUEUE_ENQUEUED_TOTAL.labels(kind=kind.value, result="deduplicated").inc()
                    log.info(
                        "task_enqueue_deduplicated",
                        extra={"payload": {"task_id": existing.id, "dedup_key": key}},
                    )
                    return existing.id, False

                row = repo.add(
                    Task(
                        id=new_uuid(),
                        kind=kind,
                        payload=task.to_wire(),
                        dedup_key=key,
                        status=TaskStatus.queued,
                        attempts=0,
                        max_attempts=max(1, int(max_attempts or self.default_max_attempts)),
                        backoff_base_sec=float(
                            self.default_backoff_base_sec
                            if backoff_base_sec is None
                            else backoff_base_sec
                        ),
                        run_at=run_at or now,
                        created_at=now,
                        updated_at=now,
                    )
                )
                task_id = row.id
        except IntegrityError:
            # Конкурентный продюсер успел вставить ту же идентичность
            with self.db.session() as s:
                existing = TaskRepository(s).get_by_dedup_key(key)
                if existing is None:
                    raise
                QUEUE_ENQUEUED_TOTAL.labels(kind=kind.value, result="deduplicated").inc()
                return existing.id, False

        QUEUE_ENQUEUED_TOTAL.labels(kind=kind.value, result="created").inc()
        log.info(
            "task_enqueued",
            extra={"payload": {"task_id": task_id, "kind": kind.value, "dedup_key": key}},
        )
        return task_id, True

    # -------------------------------------------------------------------------
    # Захват и завершение
    # -------------------------------------------------------------------------
    def claim_next(self, *, worker_id: str, lease_sec: float) -> TaskRecord | None:
        """
        Захватить следующую готовую задачу с арендой.
        Счётчик попыток растёт при захвате: падение воркера тоже расходует попытку.
        """
        now = self._clock()
        with self.db.session() as s:
            row = TaskRepository(s).next_eligible(now)
            if row is None:
                return None
            row.status = TaskStatus.running
            row.locked_by = worker_id
            row.lease_until = now + timedelta(seconds=max(1.0, float(lease_sec)))
            row.attempts = int(row.attempts or 0) + 1
            row.updated_at = now
            s.flush()
            return TaskRecord.from_model(row)

    def complete(
        self, task_id: str, *, worker_id: str | None = None, attempts: int | None = None
    ) -> bool:
        """
        worker_id/attempts — захват, от имени которого завершаем.
        Если аренду уже перехватили (reaper → другой воркер), ничего не меняем.
        """
        with self.db.session() as s:
            repo = TaskRepository(s)
            row = self._settle_target(repo, task_id, worker_id=worker_id, attempts=attempts)
            if row is None:
                return self._stale("complete", task_id, worker_id=worker_id, attempts=attempts)
            repo.delete(task_id)
        return True

    def reschedule(
        self,
        task_id: str,
        *,
        error: str,
        delay_sec: float,
        worker_id: str | None = None,
        attempts: int | None = None,
    ) -> datetime | None:
        now = self._clock()
        run_at = now + timedelta(seconds=max(0.0, float(delay_sec)))
        with self.db.session() as s:
            row = self._settle_target(
                TaskRepository(s), task_id, worker_id=worker_id, attempts=attempts
            )
            if row is None:
                self._stale("reschedule", task_id, worker_id=worker_id, attempts=attempts)
                return None
            row.status = TaskStatus.queued
            row.run_at = run_at
            row.locked_by = None
            row.lease_until = None
            row.last_error = error
            row.updated_at = now
        return run_at

    def dead_letter(
        self,
        task_id: str,
        *,
        error: str,
        worker_id: str | None = None,
        attempts: int | None = None,
    ) -> DeadLetterRecord | None:
        """
        Атомарно: запись в DLQ + удаление задачи из очереди.
        """
        now = self._clock()
        with self.db.session() as s:
            repo = TaskRepository(s)
            row = self._settle_target(repo, task_id, worker_id=worker_id, attempts=attempts)
            if row is None:
                self._stale("dead_letter", task_id, worker_id=worker_id, attempts=attempts)
                return None
            entry = DeadLetterRepository(s).append_from_task(row, error=error, now=now)
            repo.delete(task_id)
            s.flush()
            record = DeadLetterRecord.from_model(entry)

        DEAD_LETTERS_TOTAL.labels(kind=record.kind.value).inc()
        log.warning(
            "task_moved_to_dlq",
            extra={
                "payload": {
                    "task_id": task_id,
                    "dead_letter_id": record.id,
                    "kind": record.kind.value,
                    "attempts": record.attempts,
                    "error": error[:300],
                }
            },
        )
        return record

    def requeue_expired(self, *, limit: int = 200) -> int:
        """
        Вернуть в очередь задачи, чья аренда истекла (воркер упал / завис).
        Если попытки уже исчерпаны — сразу в DLQ.
        """
        now = self._clock()
        requeued = 0
        exhausted: list[tuple[str, str | None, int]] = []
        with self.db.session() as s:
            for row in TaskRepository(s).list_expired_leases(now, limit=limit):
                if int(row.attempts) >= int(row.max_attempts):
                    exhausted.append((row.id, row.locked_by, int(row.attempts)))
                    continue
                row.status = TaskStatus.queued
                row.run_at = now
                row.locked_by = None
                row.lease_until = None
                row.last_error = row.last_error or LEASE_EXPIRED_ERROR
                row.updated_at = now
                requeued += 1

        for task_id, worker_id, attempts in exhausted:
            self.dead_letter(
                task_id, error=LEASE_EXPIRED_ERROR, worker_id=worker_id, attempts=attempts
            )

        if requeued or exhausted:
            LEASES_EXPIRED_TOTAL.inc(requeued + len(exhausted))
            log.warning(
                "task_leases_expired",
                extra={"payload": {"requeued": requeued, "dead_lettered": len(exhausted)}},
            )
        return requeued

    # -------------------------------------------------------------------------
    # Фенсинг захвата
    # -------------------------------------------------------------------------
    @staticmethod
    def _settle_target(
        repo: TaskRepository, task_id: str, *, worker_id: str | None, attempts: int | None
    ) -> Task | None:
        # Без worker_id: ручная операция (оператор, тесты), фенсинга нет
        if worker_id is None:
            return repo.get(task_id)
        return repo.get_owned(task_id, worker_id=worker_id, attempts=int(attempts or 0))

    @staticmethod
    def _stale(op: str, task_id: str, *, worker_id: str | None, attempts: int | None) -> bool:
        if worker_id is not None:
            QUEUE_STALE_SETTLES_TOTAL.labels(op=op).inc()
            log.warning(
                "task_settle_stale",
                extra={
                    "payload": {
                        "op": op,
                        "task_id": task_id,
                        "worker_id": worker_id,
                        "attempts": attempts,
                    }
                },
            )
        return False

    # -------------------------------------------------------------------------
    # Чтение
    # -------------------------------------------------------------------------
    def get(self, task_id: str) -> TaskRecord | None:
        with self.db.session() as s:
            row = TaskRepository(s).get(task_id)
            return TaskRecord.from_model(row) if row else None

    def get_by_dedup_key(self, dedup_key: str) -> TaskRecord | None:
        with self.db.session() as s:
            row = TaskRepository(s).get_by_dedup_key(dedup_key)
            return TaskRecord.from_model(row) if row else None

    def depth(self) -> int:
        with self.db.session() as s:
            n = TaskRepository(s).count()
        QUEUE_DEPTH.set(n)
        return n
