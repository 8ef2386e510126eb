"""
Сервис регистраций для вызывающей стороны.

Назначение:
- явная проверка роли перед вызовом ядра допуска
- выборки «мои регистрации» и «участники соревнования» (только организатор)
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from competition_admission.common.errors import ForbiddenError, NotFoundError, UnavailableError
from competition_admission.common.security import CallerIdentity, require_role
from competition_admission.domain.enums import Role
from competition_admission.domain.records import RegistrationRecord
from competition_admission.storage.db import Database
from competition_admission.storage.repositories import (
    CompetitionRepository,
    RegistrationRepository,
)

from .admission import AdmissionController


class RegistrationService:
    def __init__(self, db: Database, admission: AdmissionController) -> None:
        self.db = db
        self.admission = admission

    def register(
        self,
        caller: CallerIdentity,
        competition_id: str,
        idempotency_key: str | None = None,
    ) -> RegistrationRecord:
        require_role(caller, Role.participant)
        return self.admission.admit(competition_id, caller.user_id, idempotency_key)

    def my_registrations(self, caller: CallerIdentity) -> list[RegistrationRecord]:
        """Регистрации вызывающего, новые первыми."""
        try:
            with self.db.session() as s:
                rows = RegistrationRepository(s).list_for_user(caller.user_id)
                return [RegistrationRecord.from_model(r) for r in rows]
        except SQLAlchemyError as e:
            raise UnavailableError(details={"err": str(e)[:300]}) from e

    def list_participants(
        self, caller: CallerIdentity, competition_id: str
    ) -> list[RegistrationRecord]:
        require_role(caller, Role.organizer)
        try:
            with self.db.session() as s:
                comp = CompetitionRepository(s).get(competition_id)
                if comp is None or comp.deleted_at is not None:
                    raise NotFoundError(
                        "Соревнование не найдено", details={"competition_id": competition_id}
                    )
                if comp.organizer_id != caller.user_id:
                    raise ForbiddenError(
                        "Список участников доступен только организатору",
                        details={"competition_id": competition_id, "user_id": caller.user_id},
                    )
                rows = RegistrationRepository(s).list_for_competition(competition_id)
                return [RegistrationRecord.from_model(r) for r in rows]
        except SQLAlchemyError as e:
            raise UnavailableError(details={"err": str(e)[:300]}) from e
