from __future__ import annotations

from datetime import timedelta

from competition_admission.common.security import CallerIdentity
from competition_admission.delivery.handlers import NotificationHandlers
from competition_admission.delivery.mailbox import MailboxNotifier
from competition_admission.domain.enums import Role, TaskKind
from competition_admission.jobs.reminder_job import ReminderScheduler
from competition_admission.queue.locks import RunLock
from competition_admission.queue.worker_pool import WorkerPool
from competition_admission.services.admission import AdmissionController
from competition_admission.services.registration_service import RegistrationService
from competition_admission.storage.repositories import NotificationRepository


def test_registration_confirmation_and_reminder_end_to_end(
    db, queue, clock, seed_competition
) -> None:
    cid = seed_competition(title="Осенний триатлон", starts_in=timedelta(hours=24))
    service = RegistrationService(db, AdmissionController(db, queue, clock=clock))
    pool = WorkerPool(queue, NotificationHandlers(db, MailboxNotifier(db, clock=clock)))
    scheduler = ReminderScheduler(
        db, queue, RunLock(mode="inline"), lookahead_hours=23, window_hours=2, clock=clock
    )

    for user in ("user-a", "user-b"):
        service.register(CallerIdentity(user_id=user, role=Role.participant), cid)

    assert [o.result for o in pool.drain()] == ["success", "success"]

    assert scheduler.run().enqueued == 2
    assert [o.result for o in pool.drain()] == ["success", "success"]

    # Перезапуск планировщика в том же окне не шлёт напоминание повторно
    clock.advance(minutes=10)
    rerun = scheduler.run()
    assert rerun.enqueued == 0
    assert rerun.deduplicated == 2
    assert pool.drain() == []

    with db.session() as s:
        inbox = NotificationRepository(s).list_for_user("user-a")
        assert sorted(n.kind for n in inbox) == [TaskKind.confirmation, TaskKind.reminder]
    assert queue.depth() == 0
