from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from competition_admission.common.errors import AppError, CapacityExceededError
from competition_admission.services.admission import AdmissionController
from competition_admission.storage.models import Registration


def _admit_concurrently(admission, calls: list[tuple[str, str, str | None]]) -> list[object]:
    barrier = threading.Barrier(len(calls))

    def _one(args):
        barrier.wait()
        try:
            return admission.admit(*args)
        except AppError as e:
            return e

    with ThreadPoolExecutor(max_workers=len(calls)) as ex:
        return list(ex.map(_one, calls))


def _count(db, competition_id: str) -> int:
    with db.session() as s:
        return s.query(Registration).filter(Registration.competition_id == competition_id).count()


@pytest.mark.parametrize(("capacity", "users"), [(1, 2), (3, 8), (5, 5)])
def test_concurrent_admissions_never_exceed_capacity(
    db, queue, clock, seed_competition, capacity, users
) -> None:
    cid = seed_competition(capacity=capacity)
    admission = AdmissionController(db, queue, clock=clock)

    results = _admit_concurrently(admission, [(cid, f"user-{i}", None) for i in range(users)])

    admitted = [r for r in results if not isinstance(r, AppError)]
    rejected = [r for r in results if isinstance(r, AppError)]
    assert len(admitted) == min(users, capacity)
    assert all(isinstance(r, CapacityExceededError) for r in rejected)
    assert _count(db, cid) == min(users, capacity)


def test_concurrent_retries_with_same_key_create_one_row(db, queue, clock, seed_competition):
    cid = seed_competition(capacity=10)
    admission = AdmissionController(db, queue, clock=clock)

    results = _admit_concurrently(admission, [(cid, "user-a", "k1")] * 4)

    assert all(not isinstance(r, AppError) for r in results)
    assert len({r.id for r in results}) == 1
    assert _count(db, cid) == 1
    assert queue.depth() == 1
