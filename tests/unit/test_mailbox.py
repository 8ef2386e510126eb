from __future__ import annotations

from sqlalchemy.exc import OperationalError

from competition_admission.delivery.base import NotificationMessage
from competition_admission.delivery.mailbox import MailboxNotifier
from competition_admission.domain.enums import TaskKind
from competition_admission.storage.repositories import NotificationRepository


def _message(dedup_key: str = "confirmation:r-1") -> NotificationMessage:
    return NotificationMessage(
        dedup_key=dedup_key,
        kind=TaskKind.confirmation,
        user_id="u-1",
        registration_id="r-1",
        competition_id="c-1",
        subject="Регистрация подтверждена",
        body="...",
        task_id="t-1",
    )


def test_send_is_idempotent_on_dedup_key(db, clock) -> None:
    notifier = MailboxNotifier(db, clock=clock)

    first = notifier.send(_message())
    second = notifier.send(_message())

    assert first.ok and first.meta is None
    assert second.ok and second.meta == {"duplicate": True}
    assert second.message_id == first.message_id

    with db.session() as s:
        items = NotificationRepository(s).list_for_user("u-1")
        assert len(items) == 1
        assert items[0].created_at == clock()


def test_distinct_keys_create_distinct_notifications(db, clock) -> None:
    notifier = MailboxNotifier(db, clock=clock)
    notifier.send(_message("confirmation:r-1"))
    notifier.send(_message("reminder:c-1:u-1:20260302"))

    with db.session() as s:
        assert len(NotificationRepository(s).list_for_user("u-1")) == 2


def test_storage_fault_is_reported_as_failed_delivery(db, clock, monkeypatch) -> None:
    def _db_down(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("db down"))

    monkeypatch.setattr(NotificationRepository, "add", _db_down)
    result = MailboxNotifier(db, clock=clock).send(_message())

    assert result.ok is False
    assert result.provider == "mailbox"
    assert result.error.startswith("OperationalError")
    assert result.message_id is None
