"""
Базовые интерфейсы доставки уведомлений.

Назначение:
- единый контракт для разных каналов (почтовый ящик в БД / email / webhook)
- обработчики задач не знают, куда именно уходит уведомление
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from competition_admission.domain.enums import TaskKind


@dataclass(frozen=True)
class NotificationMessage:
    """
    Уведомление участнику.
    dedup_key — идентичность задачи: повторная доставка того же ключа
    не должна давать второй видимый эффект.
    """

    dedup_key: str
    kind: TaskKind
    user_id: str
    registration_id: str
    competition_id: str
    subject: str
    body: str
    task_id: str | None = None


@dataclass
class DeliveryResult:
    """
    Результат доставки.
    """

    ok: bool
    provider: str
    message_id: str | None = None
    error: str | None = None
    meta: dict[str, Any] | None = None


class Notifier(Protocol):
    """
    Контракт канала доставки.
    """

    def send(self, message: NotificationMessage) -> DeliveryResult: ...
