from __future__ import annotations

from datetime import timedelta

import pytest

from competition_admission.domain.enums import TaskKind
from competition_admission.jobs.reminder_job import LOCK_NAME, ReminderScheduler
from competition_admission.queue.dead_letters import DeadLetterStore
from competition_admission.queue.locks import RunLock
from competition_admission.queue.worker_pool import WorkerPool
from competition_admission.storage.models import Task


@pytest.fixture()
def lock() -> RunLock:
    return RunLock(mode="inline")


def _scheduler(db, queue, lock, clock, **kwargs) -> ReminderScheduler:
    kwargs.setdefault("lookahead_hours", 23)
    kwargs.setdefault("window_hours", 2)
    return ReminderScheduler(db, queue, lock, clock=clock, **kwargs)


def _reminder_tasks(db) -> list[Task]:
    with db.session() as s:
        return list(s.query(Task).filter(Task.kind == TaskKind.reminder))


def test_enqueues_reminder_per_registration_in_window(
    db, queue, lock, clock, seed_competition, seed_registration
) -> None:
    soon = seed_competition(starts_in=timedelta(hours=24))
    seed_registration(soon, "user-a")
    seed_registration(soon, "user-b")

    later = seed_competition(starts_in=timedelta(hours=30))
    seed_registration(later, "user-c")
    seed_competition(starts_in=None)

    result = _scheduler(db, queue, lock, clock).run()

    assert result.competitions == 1
    assert result.registrations == 2
    assert result.enqueued == 2
    tasks = _reminder_tasks(db)
    assert sorted(t.payload["user_id"] for t in tasks) == ["user-a", "user-b"]
    assert {t.dedup_key for t in tasks} == {
        f"reminder:{soon}:user-a:20260302",
        f"reminder:{soon}:user-b:20260302",
    }


def test_window_is_half_open(db, queue, lock, clock, seed_competition, seed_registration):
    at_end = seed_competition(starts_in=timedelta(hours=25))
    seed_registration(at_end, "user-a")
    at_start = seed_competition(starts_in=timedelta(hours=23))
    seed_registration(at_start, "user-b")

    result = _scheduler(db, queue, lock, clock).run()
    assert result.competitions == 1
    assert [t.payload["user_id"] for t in _reminder_tasks(db)] == ["user-b"]


def test_deleted_competitions_are_ignored(db, queue, lock, clock, seed_competition, seed_registration):
    cid = seed_competition(starts_in=timedelta(hours=24), deleted=True)
    seed_registration(cid, "user-a")

    assert _scheduler(db, queue, lock, clock).run().competitions == 0


def test_second_run_in_same_window_deduplicates(
    db, queue, lock, clock, seed_competition, seed_registration
) -> None:
    cid = seed_competition(starts_in=timedelta(hours=24))
    seed_registration(cid, "user-a")
    seed_registration(cid, "user-b")
    scheduler = _scheduler(db, queue, lock, clock)

    scheduler.run()
    clock.advance(minutes=30)
    again = scheduler.run()

    assert again.enqueued == 0
    assert again.deduplicated == 2
    assert len(_reminder_tasks(db)) == 2


def test_run_skipped_while_lock_held(db, queue, lock, clock, seed_competition, seed_registration):
    cid = seed_competition(starts_in=timedelta(hours=24))
    seed_registration(cid, "user-a")

    token = lock.acquire(LOCK_NAME, 60)
    try:
        result = _scheduler(db, queue, lock, clock).run()
    finally:
        lock.release(LOCK_NAME, token)

    assert result.skipped is True
    assert _reminder_tasks(db) == []
    assert _scheduler(db, queue, lock, clock).run().enqueued == 1


def test_daily_runs_remind_every_competition_once(
    db, queue, lock, clock, seed_competition, seed_registration
) -> None:
    starts = [25, 30, 47, 48, 60]
    for hours in starts:
        seed_registration(seed_competition(starts_in=timedelta(hours=hours)), f"user-{hours}")
    scheduler = _scheduler(db, queue, lock, clock, lookahead_hours=24, window_hours=24)

    first = scheduler.run()
    clock.advance(hours=24)
    second = scheduler.run()
    clock.advance(hours=24)
    third = scheduler.run()

    assert (first.enqueued, second.enqueued, third.enqueued) == (3, 2, 0)
    users = sorted(t.payload["user_id"] for t in _reminder_tasks(db))
    assert users == sorted(f"user-{h}" for h in starts)


def test_dead_lettered_reminder_is_not_enqueued_again(
    db, queue, lock, clock, seed_competition, seed_registration
) -> None:
    cid = seed_competition(starts_in=timedelta(hours=24))
    seed_registration(cid, "user-a")
    scheduler = _scheduler(db, queue, lock, clock)
    assert scheduler.run().enqueued == 1

    def _failing(payload, task) -> None:
        raise RuntimeError("smtp down")

    pool = WorkerPool(queue, _failing)
    results = []
    for _ in range(3):
        results.append(pool.run_once().result)
        clock.advance(seconds=10)
    assert results == ["retry", "retry", "dead_letter"]
    assert DeadLetterStore(db).count() == 1
    assert _reminder_tasks(db) == []

    again = scheduler.run()
    assert again.enqueued == 0
    assert again.deduplicated == 1
    assert _reminder_tasks(db) == []
