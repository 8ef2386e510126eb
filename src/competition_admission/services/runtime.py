"""
Сборка зависимостей процесса.

Назначение:
- процессы (apps/*, scripts/*) собирают Database / WorkQueue / RunLock здесь
  и передают их в сервисы явно
- никаких глобальных синглтонов хранилища и очереди
"""

from __future__ import annotations

from dataclasses import dataclass

from competition_admission.common.config import Settings
from competition_admission.queue.locks import RunLock
from competition_admission.queue.redis import build_redis_client
from competition_admission.queue.work_queue import WorkQueue
from competition_admission.storage.db import Database

from .admission import AdmissionController
from .registration_service import RegistrationService


@dataclass
class Runtime:
    settings: Settings
    db: Database
    queue: WorkQueue

    def build_lock(self) -> RunLock:
        mode = self.settings.queue_mode.strip().lower()
        if mode == "inline":
            return RunLock(mode="inline")
        return RunLock(mode="redis", client=build_redis_client(self.settings.redis_url))

    def build_registration_service(self) -> RegistrationService:
        admission = AdmissionController(
            self.db,
            self.queue,
            confirmation_max_attempts=self.settings.task_max_attempts,
            confirmation_backoff_base_sec=self.settings.task_backoff_base_sec,
        )
        return RegistrationService(self.db, admission)

    def close(self) -> None:
        self.db.dispose()


def build_runtime(settings: Settings) -> Runtime:
    db = Database(settings.postgres_dsn, echo=settings.db_echo)
    if db.dialect == "sqlite":
        # Локальный запуск без alembic
        db.create_all()
    queue = WorkQueue(
        db,
        default_max_attempts=settings.task_max_attempts,
        default_backoff_base_sec=settings.task_backoff_base_sec,
    )
    return Runtime(settings=settings, db=db, queue=queue)
