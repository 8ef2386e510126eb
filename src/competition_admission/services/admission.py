"""
Допуск участника к соревнованию.

Алгоритм admit():
1) есть idempotency_key → точечное чтение по ключу; нашли — отдаём ту же
   регистрацию (даже если мест уже нет или срок истёк)
2) иначе одна транзакция:
   - чтение соревнования с блокировкой строки
   - повторная проверка ключа (параллельный запрос с тем же ключом)
   - соревнования нет / удалено → NotFound
   - now > reg_deadline → DeadlineExceeded
   - уже зарегистрирован → AlreadyRegistered
   - count >= capacity → CapacityExceeded
   - вставка регистрации (вместе с ключом), commit
3) после commit — постановка задачи подтверждения (best effort)

Уникальные ограничения БД — страховка от гонок:
- конфликт по idempotency_key → победившая регистрация читается и отдаётся
- конфликт по (user_id, competition_id) → AlreadyRegistered
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from competition_admission.common.errors import (
    AlreadyRegisteredError,
    AppError,
    CapacityExceededError,
    DeadlineExceededError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from competition_admission.common.ids import confirmation_dedup_key, new_uuid
from competition_admission.common.logging import get_project_logger
from competition_admission.common.metrics import (
    ADMISSIONS_TOTAL,
    CONFIRMATION_ENQUEUE_FAILURES_TOTAL,
)
from competition_admission.common.time import Clock, utc_now
from competition_admission.domain.records import RegistrationRecord
from competition_admission.queue.tasks import ConfirmationTask
from competition_admission.queue.work_queue import WorkQueue
from competition_admission.storage.db import Database
from competition_admission.storage.models import Registration
from competition_admission.storage.repositories import (
    CompetitionRepository,
    RegistrationRepository,
)

log = get_project_logger()


def _unavailable(e: SQLAlchemyError) -> UnavailableError:
    return UnavailableError(details={"err": f"{type(e).__name__}: {str(e)[:300]}"})


class AdmissionController:
    def __init__(
        self,
        db: Database,
        queue: WorkQueue,
        *,
        clock: Clock = utc_now,
        confirmation_max_attempts: int = 3,
        confirmation_backoff_base_sec: float = 2.0,
    ) -> None:
        self.db = db
        self.queue = queue
        self._clock = clock
        self.confirmation_max_attempts = confirmation_max_attempts
        self.confirmation_backoff_base_sec = confirmation_backoff_base_sec

    def admit(
        self, competition_id: str, user_id: str, idempotency_key: str | None = None
    ) -> RegistrationRecord:
        if not competition_id or not user_id:
            raise ValidationError(
                "competition_id и user_id обязательны",
                details={"competition_id": competition_id, "user_id": user_id},
            )
        key = idempotency_key or None

        try:
            record, created = self._admit(competition_id, user_id, key)
        except AppError as e:
            ADMISSIONS_TOTAL.labels(result=e.code).inc()
            log.info(
                "admission_rejected",
                extra={
                    "payload": {
                        "competition_id": competition_id,
                        "user_id": user_id,
                        "code": e.code,
                    }
                },
            )
            raise

        if not created:
            ADMISSIONS_TOTAL.labels(result="replayed").inc()
            log.info(
                "admission_replayed",
                extra={"payload": {"registration_id": record.id, "competition_id": competition_id}},
            )
            return record

        ADMISSIONS_TOTAL.labels(result="admitted").inc()
        log.info(
            "admission_committed",
            extra={
                "payload": {
                    "registration_id": record.id,
                    "competition_id": competition_id,
                    "user_id": user_id,
                }
            },
        )
        self._enqueue_confirmation(record)
        return record

    # -------------------------------------------------------------------------
    # Транзакционный путь
    # -------------------------------------------------------------------------
    def _admit(
        self, competition_id: str, user_id: str, key: str | None
    ) -> tuple[RegistrationRecord, bool]:
        if key is not None:
            existing = self._find_by_key(key)
            if existing is not None:
                return existing, False

        try:
            return self._insert(competition_id, user_id, key)
        except IntegrityError:
            return self._resolve_conflict(competition_id, user_id, key)
        except SQLAlchemyError as e:
            raise _unavailable(e) from e

    def _find_by_key(self, key: str) -> RegistrationRecord | None:
        try:
            with self.db.session() as s:
                row = RegistrationRepository(s).get_by_idempotency_key(key)
                return RegistrationRecord.from_model(row) if row is not None else None
        except SQLAlchemyError as e:
            raise _unavailable(e) from e

    def _insert(
        self, competition_id: str, user_id: str, key: str | None
    ) -> tuple[RegistrationRecord, bool]:
        now = self._clock()
        with self.db.session() as s:
            comp = CompetitionRepository(s).get_for_update(competition_id)
            regs = RegistrationRepository(s)
            if key is not None:
                # Тот же ключ мог закоммитить параллельный запрос, пока мы ждали блокировку
                winner = regs.get_by_idempotency_key(key)
                if winner is not None:
                    return RegistrationRecord.from_model(winner), False

            if comp is None or comp.deleted_at is not None:
                raise NotFoundError(
                    "Соревнование не найдено", details={"competition_id": competition_id}
                )
            if now > comp.reg_deadline:
                raise DeadlineExceededError(
                    details={
                        "competition_id": competition_id,
                        "reg_deadline": comp.reg_deadline.isoformat(),
                    }
                )

            if regs.get_for_user(user_id=user_id, competition_id=competition_id) is not None:
                raise AlreadyRegisteredError(
                    details={"competition_id": competition_id, "user_id": user_id}
                )
            count = regs.count_for_competition(competition_id)
            if count >= comp.capacity:
                raise CapacityExceededError(
                    details={"competition_id": competition_id, "capacity": comp.capacity}
                )

            row = regs.add(
                Registration(
                    id=new_uuid(),
                    competition_id=competition_id,
                    user_id=user_id,
                    idempotency_key=key,
                    registered_at=now,
                )
            )
            s.flush()
            return RegistrationRecord.from_model(row), True

    def _resolve_conflict(
        self, competition_id: str, user_id: str, key: str | None
    ) -> tuple[RegistrationRecord, bool]:
        """
        Параллельная транзакция вставила строку раньше нас.
        """
        try:
            with self.db.session() as s:
                regs = RegistrationRepository(s)
                if key is not None:
                    winner = regs.get_by_idempotency_key(key)
                    if winner is not None:
                        return RegistrationRecord.from_model(winner), False
                if regs.get_for_user(user_id=user_id, competition_id=competition_id) is not None:
                    raise AlreadyRegisteredError(
                        details={"competition_id": competition_id, "user_id": user_id}
                    )
        except SQLAlchemyError as e:
            raise _unavailable(e) from e
        raise UnavailableError(
            "Конфликт записи регистрации, повторите запрос",
            details={"competition_id": competition_id, "user_id": user_id},
        )

    # -------------------------------------------------------------------------
    # Подтверждение
    # -------------------------------------------------------------------------
    def _enqueue_confirmation(self, record: RegistrationRecord) -> None:
        # Регистрация уже зафиксирована: сбой постановки её не отменяет,
        # пропуски добирает ConfirmationReconciler
        try:
            self.queue.enqueue(
                ConfirmationTask(
                    registration_id=record.id,
                    user_id=record.user_id,
                    competition_id=record.competition_id,
                ),
                max_attempts=self.confirmation_max_attempts,
                backoff_base_sec=self.confirmation_backoff_base_sec,
                dedup_key=confirmation_dedup_key(record.id),
            )
        except Exception as e:
            CONFIRMATION_ENQUEUE_FAILURES_TOTAL.inc()
            log.error(
                "confirmation_enqueue_failed",
                extra={
                    "payload": {
                        "registration_id": record.id,
                        "err": f"{type(e).__name__}: {str(e)[:300]}",
                    }
                },
            )
