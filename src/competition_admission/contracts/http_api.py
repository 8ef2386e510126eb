"""
Контракты ответов для внешнего транспортного слоя (Pydantic-модели).

Назначение:
- стабильная форма регистрации и ошибки для клиентов
- соответствие типизированных ошибок допуска HTTP-статусам

Сам HTTP-сервер живёт вне этого пакета.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from competition_admission.common.errors import AppError, ErrCode
from competition_admission.domain.records import RegistrationRecord

from .versions import HTTP_API_VERSION

_STATUS_BY_CODE: dict[str, int] = {
    ErrCode.VALIDATION: 400,
    ErrCode.DEADLINE_EXCEEDED: 400,
    ErrCode.FORBIDDEN: 403,
    ErrCode.NOT_FOUND: 404,
    ErrCode.CAPACITY_EXCEEDED: 409,
    ErrCode.ALREADY_REGISTERED: 409,
    ErrCode.CONFLICT: 409,
    ErrCode.UNAVAILABLE: 503,
}


# =============================================================================
# ОТВЕТЫ
# =============================================================================
class RegistrationResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    id: str
    user_id: str
    competition_id: str
    registered_at: datetime

    @classmethod
    def from_record(cls, record: RegistrationRecord) -> RegistrationResponse:
        return cls(
            id=record.id,
            user_id=record.user_id,
            competition_id=record.competition_id,
            registered_at=record.registered_at,
        )


class ErrorResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    code: str
    message: str
    details: dict[str, Any] | None = None


# =============================================================================
# ОШИБКИ
# =============================================================================
def http_status_for(err: BaseException) -> int:
    if isinstance(err, AppError):
        return _STATUS_BY_CODE.get(err.code, 500)
    return 500


def error_response(err: BaseException) -> tuple[int, ErrorResponse]:
    if isinstance(err, AppError):
        body = ErrorResponse(code=err.code, message=err.message, details=err.details)
    else:
        body = ErrorResponse(code=ErrCode.UNKNOWN, message="Внутренняя ошибка")
    return http_status_for(err), body
