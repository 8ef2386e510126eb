from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from competition_admission.common.ids import new_uuid
from competition_admission.queue.work_queue import WorkQueue
from competition_admission.storage.db import Database
from competition_admission.storage.models import Competition, Registration


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture()
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'admission.db'}")
    database.create_all()
    try:
        yield database
    finally:
        database.dispose()


@pytest.fixture()
def queue(db, clock) -> WorkQueue:
    return WorkQueue(db, default_max_attempts=3, default_backoff_base_sec=2.0, clock=clock)


@pytest.fixture()
def seed_competition(db, clock) -> Callable[..., str]:
    def _seed(
        *,
        capacity: int = 10,
        deadline_in: timedelta = timedelta(days=1),
        starts_in: timedelta | None = timedelta(days=7),
        organizer_id: str = "org-1",
        title: str = "Городской марафон",
        deleted: bool = False,
    ) -> str:
        competition_id = new_uuid()
        with db.session() as s:
            s.add(
                Competition(
                    id=competition_id,
                    title=title,
                    organizer_id=organizer_id,
                    capacity=capacity,
                    reg_deadline=clock() + deadline_in,
                    start_date=clock() + starts_in if starts_in is not None else None,
                    created_at=clock(),
                    deleted_at=clock() if deleted else None,
                )
            )
        return competition_id

    return _seed


@pytest.fixture()
def seed_registration(db, clock) -> Callable[..., str]:
    """Регистрация напрямую в БД, минуя контроллер (без задачи подтверждения)."""

    def _seed(competition_id: str, user_id: str, *, registered_ago: timedelta | None = None) -> str:
        registration_id = new_uuid()
        with db.session() as s:
            s.add(
                Registration(
                    id=registration_id,
                    competition_id=competition_id,
                    user_id=user_id,
                    registered_at=clock() - (registered_ago or timedelta(0)),
                )
            )
        return registration_id

    return _seed
