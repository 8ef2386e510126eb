"""
Обработчики задач уведомлений.

Алгоритм:
- читаем регистрацию и соревнование (нет регистрации → ошибка → retry/DLQ)
- рендерим шаблон Jinja2
- отправляем через Notifier (по умолчанию — почтовый ящик в БД)

Обработчики допускают повторное выполнение: видимый эффект
ключуется dedup_key задачи.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from competition_admission.common.errors import ErrCode, NotFoundError, ProviderError
from competition_admission.common.logging import get_project_logger
from competition_admission.domain.records import TaskRecord
from competition_admission.queue.tasks import ConfirmationTask, ReminderTask, default_dedup_key
from competition_admission.storage.db import Database
from competition_admission.storage.repositories import (
    CompetitionRepository,
    RegistrationRepository,
)

from .base import NotificationMessage, Notifier

log = get_project_logger()

_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


def _jinja() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=False,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )


@dataclass(frozen=True)
class _Context:
    registration_id: str
    registered_at: datetime
    title: str
    start_date: datetime | None
    competition_deleted: bool


class NotificationHandlers:
    def __init__(self, db: Database, notifier: Notifier) -> None:
        self.db = db
        self.notifier = notifier
        self._env = _jinja()

    def __call__(self, payload: ConfirmationTask | ReminderTask, task: TaskRecord) -> None:
        match payload:
            case ConfirmationTask():
                self.handle_confirmation(payload, task)
            case ReminderTask():
                self.handle_reminder(payload, task)

    # -------------------------------------------------------------------------
    # Подтверждение регистрации
    # -------------------------------------------------------------------------
    def handle_confirmation(self, payload: ConfirmationTask, task: TaskRecord) -> None:
        ctx = self._load(payload)
        subject = f"Регистрация подтверждена: {ctx.title}"
        body = self._env.get_template("confirmation.txt.j2").render(
            title=ctx.title,
            registration_id=ctx.registration_id,
            registered_at=ctx.registered_at,
            start_date=ctx.start_date,
        )
        self._send(payload, task, subject=subject, body=body)

    # -------------------------------------------------------------------------
    # Напоминание о старте
    # -------------------------------------------------------------------------
    def handle_reminder(self, payload: ReminderTask, task: TaskRecord) -> None:
        ctx = self._load(payload)
        if ctx.competition_deleted or ctx.start_date is None:
            log.info(
                "reminder_skipped",
                extra={
                    "payload": {
                        "task_id": task.id,
                        "competition_id": payload.competition_id,
                        "reason": "deleted" if ctx.competition_deleted else "no_start_date",
                    }
                },
            )
            return

        subject = f"Скоро старт: {ctx.title}"
        body = self._env.get_template("reminder.txt.j2").render(
            title=ctx.title,
            registration_id=ctx.registration_id,
            start_date=ctx.start_date,
        )
        self._send(payload, task, subject=subject, body=body)

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------
    def _load(self, payload: ConfirmationTask | ReminderTask) -> _Context:
        with self.db.session() as s:
            reg = RegistrationRepository(s).get(payload.registration_id)
            if reg is None:
                raise NotFoundError(
                    "Регистрация не найдена",
                    details={"registration_id": payload.registration_id},
                )
            comp = CompetitionRepository(s).get(payload.competition_id)
            if comp is None:
                raise NotFoundError(
                    "Соревнование не найдено",
                    details={"competition_id": payload.competition_id},
                )
            return _Context(
                registration_id=reg.id,
                registered_at=reg.registered_at,
                title=comp.title or comp.id,
                start_date=comp.start_date,
                competition_deleted=comp.deleted_at is not None,
            )

    def _send(
        self,
        payload: ConfirmationTask | ReminderTask,
        task: TaskRecord,
        *,
        subject: str,
        body: str,
    ) -> None:
        message = NotificationMessage(
            dedup_key=task.dedup_key or default_dedup_key(payload),
            kind=payload.task_kind,
            user_id=payload.user_id,
            registration_id=payload.registration_id,
            competition_id=payload.competition_id,
            subject=subject,
            body=body,
            task_id=task.id,
        )
        result = self.notifier.send(message)
        if not result.ok:
            raise ProviderError(
                ErrCode.DELIVERY_PROVIDER_ERROR,
                "Доставка уведомления не удалась",
                details={"provider": result.provider, "error": result.error},
            )
