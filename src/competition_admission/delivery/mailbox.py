"""
Доставка в почтовый ящик пользователя (таблица notifications).

Важно:
- идемпотентно по dedup_key: повтор задачи (at-least-once) не создаёт
  второе уведомление
- в лог пишем только метаданные, без текста письма
- сбой хранилища возвращается как неуспешный DeliveryResult: задачу
  повторит очередь
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from competition_admission.common.logging import get_project_logger
from competition_admission.common.time import Clock, utc_now
from competition_admission.storage.db import Database
from competition_admission.storage.models import Notification
from competition_admission.storage.repositories import NotificationRepository

from .base import DeliveryResult, NotificationMessage
from .results import duplicate_result, fail_result, ok_result

log = get_project_logger()

PROVIDER = "mailbox"


class MailboxNotifier:
    def __init__(self, db: Database, *, clock: Clock = utc_now) -> None:
        self.db = db
        self._clock = clock

    def send(self, message: NotificationMessage) -> DeliveryResult:
        try:
            with self.db.session() as s:
                repo = NotificationRepository(s)
                existing = repo.get_by_dedup_key(message.dedup_key)
                if existing is not None:
                    log.info(
                        "notification_duplicate_skipped",
                        extra={
                            "payload": {
                                "dedup_key": message.dedup_key,
                                "notification_id": existing.id,
                            }
                        },
                    )
                    return duplicate_result(PROVIDER, message_id=str(existing.id))

                row = repo.add(
                    Notification(
                        dedup_key=message.dedup_key,
                        kind=message.kind,
                        user_id=message.user_id,
                        registration_id=message.registration_id,
                        competition_id=message.competition_id,
                        subject=message.subject,
                        body=message.body,
                        task_id=message.task_id,
                        created_at=self._clock(),
                    )
                )
                s.flush()
                notification_id = str(row.id)
        except IntegrityError:
            # Параллельное выполнение той же задачи успело первым
            return duplicate_result(PROVIDER)
        except SQLAlchemyError as e:
            error = f"{type(e).__name__}: {str(e)[:300]}"
            log.warning(
                "notification_store_failed",
                extra={"payload": {"dedup_key": message.dedup_key, "err": error}},
            )
            return fail_result(PROVIDER, error)

        log.info(
            "notification_delivered",
            extra={
                "payload": {
                    "provider": PROVIDER,
                    "notification_id": notification_id,
                    "kind": message.kind.value,
                    "user_id": message.user_id,
                    "registration_id": message.registration_id,
                }
            },
        )
        return ok_result(PROVIDER, message_id=notification_id)
