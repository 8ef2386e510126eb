"""
Confirmation reconcile job.

Назначение:
- закрыть разрыв «commit регистрации → постановка подтверждения»:
  если процесс упал между ними, подтверждение потерялось бы
- регистрации за последние lookback_hours старше min_age_sec проверяются по
  ключу confirmation:{registration_id}; нет ни уведомления, ни живой задачи,
  ни записи в DLQ → задача ставится заново

DLQ намеренно не переигрывается: это решение оператора (scripts/dead_letters.py).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from competition_admission.common.ids import confirmation_dedup_key
from competition_admission.common.logging import get_project_logger
from competition_admission.common.metrics import SCHEDULER_RUNS_TOTAL
from competition_admission.common.time import Clock, utc_now
from competition_admission.domain.records import RegistrationRecord
from competition_admission.queue.tasks import ConfirmationTask
from competition_admission.queue.work_queue import WorkQueue
from competition_admission.storage.db import Database
from competition_admission.storage.repositories import (
    DeadLetterRepository,
    NotificationRepository,
    RegistrationRepository,
    TaskRepository,
)

log = get_project_logger()


@dataclass(frozen=True)
class ReconcileResult:
    scanned: int = 0
    enqueued: int = 0
    failed: int = 0


class ConfirmationReconciler:
    def __init__(
        self,
        db: Database,
        queue: WorkQueue,
        *,
        lookback_hours: float = 48.0,
        min_age_sec: float = 60.0,
        limit: int = 500,
        max_attempts: int = 3,
        backoff_base_sec: float = 2.0,
        clock: Clock = utc_now,
    ) -> None:
        self.db = db
        self.queue = queue
        self.lookback = timedelta(hours=float(lookback_hours))
        self.min_age = timedelta(seconds=max(0.0, float(min_age_sec)))
        self.limit = max(1, int(limit))
        self.max_attempts = max_attempts
        self.backoff_base_sec = backoff_base_sec
        self._clock = clock

    def _missing(self, now: datetime) -> tuple[int, list[RegistrationRecord]]:
        with self.db.session() as s:
            rows = RegistrationRepository(s).list_registered_between(
                now - self.lookback, now - self.min_age, limit=self.limit
            )
            regs = [RegistrationRecord.from_model(r) for r in rows]
            keys = [confirmation_dedup_key(r.id) for r in regs]
            known = (
                NotificationRepository(s).existing_dedup_keys(keys)
                | TaskRepository(s).existing_dedup_keys(keys)
                | DeadLetterRepository(s).existing_dedup_keys(keys)
            )
        return len(regs), [r for r in regs if confirmation_dedup_key(r.id) not in known]

    def run(self, now: datetime | None = None) -> ReconcileResult:
        now = now or self._clock()
        try:
            scanned, missing = self._missing(now)
        except Exception:
            SCHEDULER_RUNS_TOTAL.labels(job="confirmation_reconcile", result="failed").inc()
            raise

        enqueued = failed = 0
        for reg in missing:
            try:
                _, created = self.queue.try_enqueue(
                    ConfirmationTask(
                        registration_id=reg.id,
                        user_id=reg.user_id,
                        competition_id=reg.competition_id,
                    ),
                    max_attempts=self.max_attempts,
                    backoff_base_sec=self.backoff_base_sec,
                    dedup_key=confirmation_dedup_key(reg.id),
                )
            except Exception as e:
                failed += 1
                log.error(
                    "confirmation_reconcile_enqueue_failed",
                    extra={"payload": {"registration_id": reg.id, "err": str(e)[:300]}},
                )
                continue
            if created:
                enqueued += 1

        SCHEDULER_RUNS_TOTAL.labels(job="confirmation_reconcile", result="ok").inc()
        log.info(
            "confirmation_reconcile_finished",
            extra={"payload": {"scanned": scanned, "enqueued": enqueued, "failed": failed}},
        )
        return ReconcileResult(scanned=scanned, enqueued=enqueued, failed=failed)
