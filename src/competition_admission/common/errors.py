"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для вызывающей стороны / очередей / DLQ
- единый стиль исключений по проекту

Ошибки допуска (NotFound / DeadlineExceeded / CapacityExceeded /
AlreadyRegistered) — терминальные факты о запросе, внутри не ретраятся.
UnavailableError — транзиентная инфраструктурная ошибка, повтор вызова безопасен.
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    UNKNOWN = "unknown"
    VALIDATION = "validation"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"

    # Допуск к соревнованию
    DEADLINE_EXCEEDED = "deadline_exceeded"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    ALREADY_REGISTERED = "already_registered"

    # Доставка
    DELIVERY_PROVIDER_ERROR = "delivery_provider_error"
    TASK_TIMEOUT = "task_timeout"

    # Инфра/хранилища
    UNAVAILABLE = "unavailable"


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без секретов/PII)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    def __init__(self, message: str = "Ошибка валидации", details: dict | None = None) -> None:
        super().__init__(ErrCode.VALIDATION, message, details)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Недостаточно прав", details: dict | None = None) -> None:
        super().__init__(ErrCode.FORBIDDEN, message, details)


class NotFoundError(AppError):
    def __init__(self, message: str = "Не найдено", details: dict | None = None) -> None:
        super().__init__(ErrCode.NOT_FOUND, message, details)


class DeadlineExceededError(AppError):
    def __init__(
        self, message: str = "Срок регистрации истёк", details: dict | None = None
    ) -> None:
        super().__init__(ErrCode.DEADLINE_EXCEEDED, message, details)


class CapacityExceededError(AppError):
    def __init__(self, message: str = "Мест больше нет", details: dict | None = None) -> None:
        super().__init__(ErrCode.CAPACITY_EXCEEDED, message, details)


class AlreadyRegisteredError(AppError):
    def __init__(
        self, message: str = "Участник уже зарегистрирован", details: dict | None = None
    ) -> None:
        super().__init__(ErrCode.ALREADY_REGISTERED, message, details)


class UnavailableError(AppError):
    def __init__(
        self, message: str = "Хранилище недоступно", details: dict | None = None
    ) -> None:
        super().__init__(ErrCode.UNAVAILABLE, message, details)


class ProviderError(AppError):
    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(code, message, details)


class TaskTimeoutError(AppError):
    def __init__(self, timeout_sec: float) -> None:
        super().__init__(
            ErrCode.TASK_TIMEOUT,
            f"Обработчик не уложился в {timeout_sec:g} с",
            {"timeout_sec": timeout_sec},
        )
