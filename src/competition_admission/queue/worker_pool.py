"""
Пул воркеров очереди.

Алгоритм каждого воркера:
- захватить следующую готовую задачу (если нет — подождать poll_interval)
- разобрать payload в вариант задачи и вызвать обработчик
- успех → задача удаляется
- ошибка и attempts < max_attempts → перенос на backoff (2s, 4s, 8s ...)
- ошибка и attempts >= max_attempts → DLQ, больше не повторяется

Важно:
- выполнение ограничено task_timeout_sec; таймаут = ошибка обработчика
- обработчик идёт в daemon-потоке: зависший поток в Python не убить,
  воркер бросает его и продолжает, а выход процесса он не держит
- завершение задачи передаёт захват (worker_id + attempts): если аренду
  за это время перехватили, результат опоздавшего воркера отбрасывается
- отдельный поток-reaper возвращает задачи с истёкшей арендой
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import ValidationError as PayloadValidationError

from competition_admission.common.errors import AppError, TaskTimeoutError
from competition_admission.common.ids import new_worker_id
from competition_admission.common.logging import get_queue_logger
from competition_admission.common.metrics import QUEUE_TASKS_TOTAL, track_task_latency
from competition_admission.domain.records import TaskRecord

from .retry import decide_retry
from .tasks import ConfirmationTask, ReminderTask, parse_task
from .work_queue import WorkQueue

log = get_queue_logger()

TaskHandler = Callable[[ConfirmationTask | ReminderTask, TaskRecord], None]


@dataclass(frozen=True)
class TaskOutcome:
    task_id: str
    result: str  # success|retry|dead_letter|stale
    attempts: int
    error: str | None = None
    delay_sec: float | None = None


def _describe_error(e: BaseException) -> str:
    if isinstance(e, AppError):
        text = f"{e.code}: {e.message}"
    else:
        text = f"{type(e).__name__}: {e}"
    return text[:1000]


def run_with_timeout(fn: Callable[[], None], *, timeout_sec: float, thread_name: str) -> None:
    """
    Выполнить fn в daemon-потоке, ждать не дольше timeout_sec.
    Ошибка fn пробрасывается, по таймауту — TaskTimeoutError.
    """
    errors: list[Exception] = []

    def _target() -> None:
        try:
            fn()
        except Exception as e:
            errors.append(e)

    t = threading.Thread(target=_target, name=thread_name, daemon=True)
    t.start()
    t.join(timeout_sec)
    if t.is_alive():
        raise TaskTimeoutError(timeout_sec)
    if errors:
        raise errors[0]


class WorkerPool:
    def __init__(
        self,
        queue: WorkQueue,
        handler: TaskHandler,
        *,
        concurrency: int = 4,
        poll_interval_sec: float = 1.0,
        lease_sec: float = 120.0,
        task_timeout_sec: float = 30.0,
        reaper_interval_sec: float = 30.0,
        reaper_limit: int = 200,
        name: str = "worker-notifications",
    ) -> None:
        self.queue = queue
        self.handler = handler
        self.concurrency = max(1, int(concurrency))
        self.poll_interval_sec = max(0.01, float(poll_interval_sec))
        self.task_timeout_sec = max(0.01, float(task_timeout_sec))
        # Аренда обязана пережить таймаут, иначе задачу заберёт второй воркер
        self.lease_sec = max(float(lease_sec), self.task_timeout_sec + 5.0)
        self.reaper_interval_sec = max(0.1, float(reaper_interval_sec))
        self.reaper_limit = max(1, int(reaper_limit))
        self.name = name

        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    # -------------------------------------------------------------------------
    # Жизненный цикл
    # -------------------------------------------------------------------------
    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        for i in range(self.concurrency):
            worker_id = new_worker_id(f"{self.name}-{i}")
            t = threading.Thread(
                target=self._worker_loop,
                args=(worker_id,),
                name=f"{self.name}-{i}",
                daemon=True,
            )
            t.start()
            self._threads.append(t)

        reaper = threading.Thread(target=self._reaper_loop, name=f"{self.name}-reaper", daemon=True)
        reaper.start()
        self._threads.append(reaper)

        log.info(
            "worker_pool_started",
            extra={
                "payload": {
                    "name": self.name,
                    "concurrency": self.concurrency,
                    "task_timeout_sec": self.task_timeout_sec,
                    "lease_sec": self.lease_sec,
                }
            },
        )

    def stop(self, *, timeout_sec: float | None = None) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout=timeout_sec)
        self._threads = []
        log.info("worker_pool_stopped", extra={"payload": {"name": self.name}})

    @property
    def running(self) -> bool:
        return bool(self._threads) and not self._stop.is_set()

    def _worker_loop(self, worker_id: str) -> None:
        while not self._stop.is_set():
            try:
                outcome = self.run_once(worker_id=worker_id)
            except Exception as e:
                # Никогда не роняем цикл воркера из-за одной задачи / сбоя БД
                log.error(
                    "worker_loop_error",
                    extra={"payload": {"worker_id": worker_id, "err": str(e)[:300]}},
                )
                outcome = None
            if outcome is None:
                self._stop.wait(self.poll_interval_sec)

    def _reaper_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.queue.requeue_expired(limit=self.reaper_limit)
            except Exception as e:
                log.warning("worker_reaper_error", extra={"payload": {"err": str(e)[:300]}})
            self._stop.wait(self.reaper_interval_sec)

    # -------------------------------------------------------------------------
    # Обработка
    # -------------------------------------------------------------------------
    def run_once(self, *, worker_id: str | None = None) -> TaskOutcome | None:
        """
        Захватить и выполнить одну задачу. None — готовых задач нет.
        """
        task = self.queue.claim_next(
            worker_id=worker_id or f"{self.name}-inline", lease_sec=self.lease_sec
        )
        if task is None:
            return None
        return self.execute(task)

    def drain(self, *, max_tasks: int = 1000) -> list[TaskOutcome]:
        """
        Синхронно выполнить все готовые задачи (inline-режим, тесты).
        """
        outcomes: list[TaskOutcome] = []
        while len(outcomes) < max_tasks:
            outcome = self.run_once()
            if outcome is None:
                break
            outcomes.append(outcome)
        return outcomes

    def execute(self, task: TaskRecord) -> TaskOutcome:
        kind = task.kind.value
        try:
            payload = parse_task(task.payload)
        except PayloadValidationError as e:
            # Повтор битый payload не починит
            error = f"invalid_payload: {str(e)[:500]}"
            if self.queue.dead_letter(task.id, error=error, **self._fence(task)) is None:
                return self._stale(task, error)
            QUEUE_TASKS_TOTAL.labels(kind=kind, result="dead_letter").inc()
            return TaskOutcome(task.id, "dead_letter", task.attempts, error=error)

        error: str | None = None
        with track_task_latency(kind):
            try:
                run_with_timeout(
                    lambda: self.handler(payload, task),
                    timeout_sec=self.task_timeout_sec,
                    thread_name=f"{self.name}-task-{task.id}",
                )
            except Exception as e:
                error = _describe_error(e)

        return self._settle(task, error)

    @staticmethod
    def _fence(task: TaskRecord) -> dict:
        return {"worker_id": task.locked_by, "attempts": task.attempts}

    def _stale(self, task: TaskRecord, error: str | None) -> TaskOutcome:
        QUEUE_TASKS_TOTAL.labels(kind=task.kind.value, result="stale").inc()
        return TaskOutcome(task.id, "stale", task.attempts, error=error)

    def _settle(self, task: TaskRecord, error: str | None) -> TaskOutcome:
        kind = task.kind.value
        if error is None:
            if not self.queue.complete(task.id, **self._fence(task)):
                return self._stale(task, None)
            QUEUE_TASKS_TOTAL.labels(kind=kind, result="success").inc()
            log.info(
                "task_succeeded",
                extra={"payload": {"task_id": task.id, "kind": kind, "attempts": task.attempts}},
            )
            return TaskOutcome(task.id, "success", task.attempts)

        decision = decide_retry(
            attempts=task.attempts,
            max_attempts=task.max_attempts,
            backoff_base_sec=task.backoff_base_sec,
        )
        if decision.dead_letter:
            if self.queue.dead_letter(task.id, error=error, **self._fence(task)) is None:
                return self._stale(task, error)
            QUEUE_TASKS_TOTAL.labels(kind=kind, result="dead_letter").inc()
            return TaskOutcome(task.id, "dead_letter", task.attempts, error=error)

        run_at = self.queue.reschedule(
            task.id, error=error, delay_sec=decision.delay_sec, **self._fence(task)
        )
        if run_at is None:
            return self._stale(task, error)
        QUEUE_TASKS_TOTAL.labels(kind=kind, result="retry").inc()
        log.warning(
            "task_retry_scheduled",
            extra={
                "payload": {
                    "task_id": task.id,
                    "kind": kind,
                    "attempts": task.attempts,
                    "max_attempts": task.max_attempts,
                    "delay_sec": decision.delay_sec,
                    "run_at": run_at.isoformat(),
                    "error": error[:300],
                }
            },
        )
        return TaskOutcome(
            task.id, "retry", task.attempts, error=error, delay_sec=decision.delay_sec
        )
