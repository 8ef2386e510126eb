"""
Хранилище DLQ (dead letters).

Назначение:
- чтение записей оператором (список, карточка)
- ручной повтор: payload записи ставится в очередь новой задачей

Записи только добавляются (WorkQueue.dead_letter) и никогда не меняются,
в том числе при ручном повторе.
"""

from __future__ import annotations

from competition_admission.common.errors import NotFoundError
from competition_admission.common.logging import get_queue_logger
from competition_admission.domain.enums import TaskKind
from competition_admission.domain.records import DeadLetterRecord
from competition_admission.storage.db import Database
from competition_admission.storage.repositories import DeadLetterRepository

from .tasks import parse_task
from .work_queue import WorkQueue

log = get_queue_logger()


class DeadLetterStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def list_recent(
        self, *, limit: int = 100, kind: TaskKind | None = None
    ) -> list[DeadLetterRecord]:
        with self.db.session() as s:
            rows = DeadLetterRepository(s).list_recent(limit=limit, kind=kind)
            return [DeadLetterRecord.from_model(r) for r in rows]

    def get(self, entry_id: int) -> DeadLetterRecord | None:
        with self.db.session() as s:
            row = DeadLetterRepository(s).get(entry_id)
            return DeadLetterRecord.from_model(row) if row else None

    def list_for_task(self, task_id: str) -> list[DeadLetterRecord]:
        with self.db.session() as s:
            rows = DeadLetterRepository(s).list_for_task(task_id)
            return [DeadLetterRecord.from_model(r) for r in rows]

    def count(self) -> int:
        with self.db.session() as s:
            return DeadLetterRepository(s).count()

    def requeue(self, entry_id: int, queue: WorkQueue) -> str:
        """
        Ручной повтор оператором. Возвращает id новой задачи.
        """
        entry = self.get(entry_id)
        if entry is None:
            raise NotFoundError("Запись DLQ не найдена", details={"dead_letter_id": entry_id})

        task = parse_task(entry.payload)
        task_id = queue.enqueue(task, dedup_key=entry.dedup_key)
        log.info(
            "dead_letter_requeued",
            extra={
                "payload": {
                    "dead_letter_id": entry_id,
                    "kind": entry.kind.value,
                    "task_id": task_id,
                }
            },
        )
        return task_id
