"""
Доменные перечисления (enum).

Используются во всей системе:
- роли вызывающей стороны (приходят от модуля авторизации)
- виды задач очереди
- состояние задачи в очереди
"""

from __future__ import annotations

import enum


class Role(str, enum.Enum):
    """
    Роль пользователя. Выдаётся внешним модулем авторизации.
    """

    participant = "participant"
    organizer = "organizer"


class TaskKind(str, enum.Enum):
    """
    Вид задачи уведомления.
    """

    confirmation = "confirmation"
    reminder = "reminder"


class TaskStatus(str, enum.Enum):
    """
    Состояние задачи в очереди.
    Успешные и ушедшие в DLQ задачи из очереди удаляются.
    """

    queued = "queued"
    running = "running"
