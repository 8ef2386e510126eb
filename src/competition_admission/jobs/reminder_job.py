"""
Reminder job.

Назначение:
- найти соревнования, стартующие в окне [now+lookahead, now+lookahead+window)
- для каждой регистрации на них поставить задачу напоминания

Повторные запуски:
- пересекающиеся запуски исключает RunLock (занят → запуск пропускается)
- повторный запуск в том же окне гасится dedup_key задачи
  reminder:{competition_id}:{user_id}:{YYYYMMDD}
- ключ, уже доставленный или лежащий в DLQ, повторно не ставится:
  вернуть напоминание из DLQ может только оператор (scripts/dead_letters.py)
- окно должно быть не короче интервала запуска, иначе старты между
  окнами соседних прогонов останутся без напоминания
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from competition_admission.common.ids import reminder_dedup_key
from competition_admission.common.logging import get_project_logger
from competition_admission.common.metrics import SCHEDULER_RUNS_TOTAL
from competition_admission.common.time import Clock, ensure_utc, utc_now
from competition_admission.queue.locks import RunLock
from competition_admission.queue.tasks import ReminderTask
from competition_admission.queue.work_queue import WorkQueue
from competition_admission.storage.db import Database
from competition_admission.storage.repositories import (
    CompetitionRepository,
    DeadLetterRepository,
    NotificationRepository,
    RegistrationRepository,
)

log = get_project_logger()

LOCK_NAME = "scheduler:reminders"


@dataclass(frozen=True)
class ReminderRunResult:
    skipped: bool = False
    competitions: int = 0
    registrations: int = 0
    enqueued: int = 0
    deduplicated: int = 0
    failed: int = 0


@dataclass(frozen=True)
class _Target:
    competition_id: str
    user_id: str
    registration_id: str
    dedup_key: str


class ReminderScheduler:
    def __init__(
        self,
        db: Database,
        queue: WorkQueue,
        lock: RunLock,
        *,
        lookahead_hours: float = 24.0,
        window_hours: float = 24.0,
        lock_ttl_sec: int = 600,
        max_attempts: int = 3,
        backoff_base_sec: float = 2.0,
        clock: Clock = utc_now,
    ) -> None:
        self.db = db
        self.queue = queue
        self.lock = lock
        self.lookahead = timedelta(hours=float(lookahead_hours))
        self.window = timedelta(hours=max(0.0, float(window_hours)))
        self.lock_ttl_sec = lock_ttl_sec
        self.max_attempts = max_attempts
        self.backoff_base_sec = backoff_base_sec
        self._clock = clock

    def window_for(self, now: datetime) -> tuple[datetime, datetime]:
        start = ensure_utc(now) + self.lookahead
        return start, start + self.window

    def run(self, now: datetime | None = None) -> ReminderRunResult:
        now = now or self._clock()
        with self.lock.hold(LOCK_NAME, self.lock_ttl_sec) as acquired:
            if not acquired:
                SCHEDULER_RUNS_TOTAL.labels(job="reminders", result="skipped").inc()
                log.info("reminder_run_skipped", extra={"payload": {"reason": "locked"}})
                return ReminderRunResult(skipped=True)
            try:
                result = self._run(now)
            except Exception:
                SCHEDULER_RUNS_TOTAL.labels(job="reminders", result="failed").inc()
                raise

        SCHEDULER_RUNS_TOTAL.labels(job="reminders", result="ok").inc()
        log.info(
            "reminder_run_finished",
            extra={
                "payload": {
                    "competitions": result.competitions,
                    "registrations": result.registrations,
                    "enqueued": result.enqueued,
                    "deduplicated": result.deduplicated,
                    "failed": result.failed,
                }
            },
        )
        return result

    def _collect(
        self, start: datetime, end: datetime
    ) -> tuple[int, list[_Target], set[str]]:
        targets: list[_Target] = []
        with self.db.session() as s:
            competitions = CompetitionRepository(s).list_starting_between(start, end)
            regs = RegistrationRepository(s)
            for comp in competitions:
                for reg in regs.list_for_competition(comp.id):
                    targets.append(
                        _Target(
                            competition_id=comp.id,
                            user_id=reg.user_id,
                            registration_id=reg.id,
                            dedup_key=reminder_dedup_key(
                                competition_id=comp.id,
                                user_id=reg.user_id,
                                start_date=comp.start_date,
                            ),
                        )
                    )
            # Уже доставленные и ушедшие в DLQ напоминания повторно не ставим
            keys = [t.dedup_key for t in targets]
            settled = NotificationRepository(s).existing_dedup_keys(keys)
            settled |= DeadLetterRepository(s).existing_dedup_keys(keys)
        return len(competitions), targets, settled

    def _run(self, now: datetime) -> ReminderRunResult:
        start, end = self.window_for(now)
        competitions, targets, settled = self._collect(start, end)

        enqueued = deduplicated = failed = 0
        for t in targets:
            if t.dedup_key in settled:
                deduplicated += 1
                continue
            try:
                _, created = self.queue.try_enqueue(
                    ReminderTask(
                        registration_id=t.registration_id,
                        user_id=t.user_id,
                        competition_id=t.competition_id,
                    ),
                    max_attempts=self.max_attempts,
                    backoff_base_sec=self.backoff_base_sec,
                    dedup_key=t.dedup_key,
                )
            except Exception as e:
                failed += 1
                log.error(
                    "reminder_enqueue_failed",
                    extra={
                        "payload": {
                            "registration_id": t.registration_id,
                            "err": str(e)[:300],
                        }
                    },
                )
                continue
            if created:
                enqueued += 1
            else:
                deduplicated += 1

        return ReminderRunResult(
            competitions=competitions,
            registrations=len(targets),
            enqueued=enqueued,
            deduplicated=deduplicated,
            failed=failed,
        )
