"""
Утилиты времени.

Назначение:
- единый источник "сейчас" (UTC, aware datetime)
- сервисы принимают clock как параметр, чтобы тесты могли подменять время
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """
    Текущее время в UTC (datetime).
    """
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """
    Naive datetime трактуем как UTC, aware — приводим к UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
