from __future__ import annotations

import threading
import time

from competition_admission.common.errors import ErrCode
from competition_admission.queue.dead_letters import DeadLetterStore
from competition_admission.queue.tasks import ConfirmationTask, ReminderTask
from competition_admission.queue.worker_pool import WorkerPool
from competition_admission.storage.models import Task


def _confirmation(rid: str = "r-1") -> ConfirmationTask:
    return ConfirmationTask(registration_id=rid, user_id="u-1", competition_id="c-1")


class _FlakyHandler:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls: list[tuple[str, int]] = []

    def __call__(self, payload, task) -> None:
        self.calls.append((payload.kind, task.attempts))
        if len(self.calls) <= self.failures:
            raise RuntimeError(f"smtp unavailable #{len(self.calls)}")


def test_two_failures_then_success_backs_off_2s_then_4s(queue, db, clock) -> None:
    handler = _FlakyHandler(failures=2)
    pool = WorkerPool(queue, handler)
    task_id = queue.enqueue(_confirmation(), max_attempts=3, backoff_base_sec=2.0)

    first = pool.run_once()
    assert first.result == "retry"
    assert first.delay_sec == 2.0
    assert (queue.get(task_id).run_at - clock()).total_seconds() == 2.0

    # До истечения backoff задача не выдаётся
    assert pool.run_once() is None
    clock.advance(seconds=2)

    second = pool.run_once()
    assert second.result == "retry"
    assert second.delay_sec == 4.0

    clock.advance(seconds=3)
    assert pool.run_once() is None
    clock.advance(seconds=1)

    third = pool.run_once()
    assert third.result == "success"
    assert third.attempts == 3

    assert queue.get(task_id) is None
    assert DeadLetterStore(db).count() == 0
    assert [a for _, a in handler.calls] == [1, 2, 3]


def test_three_failures_produce_single_dead_letter(queue, db, clock) -> None:
    handler = _FlakyHandler(failures=10)
    pool = WorkerPool(queue, handler)
    task_id = queue.enqueue(_confirmation(), max_attempts=3, backoff_base_sec=2.0)

    results = []
    for _ in range(3):
        outcome = pool.run_once()
        results.append(outcome.result)
        clock.advance(seconds=60)

    assert results == ["retry", "retry", "dead_letter"]
    entries = DeadLetterStore(db).list_for_task(task_id)
    assert len(entries) == 1
    assert entries[0].attempts == 3
    assert "smtp unavailable #3" in entries[0].last_error

    # Никаких повторных доставок после DLQ
    clock.advance(hours=1)
    assert pool.drain() == []
    assert len(handler.calls) == 3


def test_handler_timeout_is_a_failure(queue, clock) -> None:
    release = threading.Event()

    def _hanging(payload, task) -> None:
        release.wait(5)

    pool = WorkerPool(queue, _hanging, task_timeout_sec=0.1)
    task_id = queue.enqueue(_confirmation())
    try:
        outcome = pool.run_once()
    finally:
        release.set()

    assert outcome.result == "retry"
    assert outcome.error.startswith(ErrCode.TASK_TIMEOUT)
    assert queue.get(task_id).last_error.startswith(ErrCode.TASK_TIMEOUT)


def test_invalid_payload_goes_straight_to_dlq(queue, db, clock) -> None:
    task_id = queue.enqueue(_confirmation())
    with db.session() as s:
        s.get(Task, task_id).payload = {"kind": "confirmation", "user_id": "u-1"}

    calls: list[object] = []
    pool = WorkerPool(queue, lambda payload, task: calls.append(payload))
    outcome = pool.run_once()

    assert outcome.result == "dead_letter"
    assert outcome.error.startswith("invalid_payload")
    assert calls == []
    assert DeadLetterStore(db).list_for_task(task_id)[0].attempts == 1


def test_handler_receives_typed_variant(queue) -> None:
    seen: list[type] = []
    pool = WorkerPool(queue, lambda payload, task: seen.append(type(payload)))
    queue.enqueue(_confirmation())
    queue.enqueue(ReminderTask(registration_id="r-1", user_id="u-1", competition_id="c-1"))

    outcomes = pool.drain()
    assert [o.result for o in outcomes] == ["success", "success"]
    assert sorted(t.__name__ for t in seen) == ["ConfirmationTask", "ReminderTask"]


def test_started_pool_processes_tasks_concurrently(queue, db) -> None:
    done = threading.Event()
    processed: list[str] = []
    guard = threading.Lock()

    def _handler(payload, task) -> None:
        with guard:
            processed.append(payload.registration_id)
            if len(processed) == 5:
                done.set()

    for i in range(5):
        queue.enqueue(_confirmation(f"r-{i}"))

    pool = WorkerPool(queue, _handler, concurrency=3, poll_interval_sec=0.05)
    pool.start()
    try:
        assert done.wait(10)
        deadline = time.monotonic() + 5
        while queue.depth() and time.monotonic() < deadline:
            time.sleep(0.05)
    finally:
        pool.stop(timeout_sec=5)

    assert sorted(processed) == [f"r-{i}" for i in range(5)]
    assert queue.depth() == 0
    assert pool.running is False


def test_late_result_after_lease_takeover_is_stale(queue, clock) -> None:
    task_id = queue.enqueue(_confirmation())
    pool = WorkerPool(queue, lambda payload, task: None, lease_sec=60, task_timeout_sec=1)
    task = queue.claim_next(worker_id="w-slow", lease_sec=pool.lease_sec)

    # Аренда истекла, задачу забрал другой воркер
    clock.advance(seconds=pool.lease_sec + 1)
    queue.requeue_expired()
    queue.claim_next(worker_id="w-fast", lease_sec=pool.lease_sec)

    outcome = pool.execute(task)
    assert outcome.result == "stale"
    current = queue.get(task_id)
    assert current is not None
    assert current.locked_by == "w-fast"


def test_handler_runs_in_daemon_thread(queue) -> None:
    seen: list[bool] = []
    pool = WorkerPool(queue, lambda payload, task: seen.append(threading.current_thread().daemon))
    queue.enqueue(_confirmation())

    assert pool.run_once().result == "success"
    assert seen == [True]
