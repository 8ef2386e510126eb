"""
Логирование проекта.

- логирование в stdout (Docker-friendly)
- json по умолчанию, text для локальной отладки (LOG_FORMAT)
- структурные поля передаются через extra={"payload": {...}}
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, TextIO

from competition_admission.common.config import get_settings
from competition_admission.common.time import utc_now


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": utc_now().isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "thread": record.threadName,
        }
        extra_payload = getattr(record, "payload", None)
        if isinstance(extra_payload, dict):
            payload["payload"] = extra_payload
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _build_formatter() -> logging.Formatter:
    s = get_settings()
    if (s.log_format or "").lower() == "text":
        return logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    return JsonFormatter()


def setup_logging(stream: TextIO | None = None) -> None:
    s = get_settings()
    root = logging.getLogger()
    level = getattr(logging, (s.log_level or "INFO").upper(), logging.INFO)
    root.setLevel(level)

    # Не плодим хэндлеры при повторном вызове
    if root.handlers:
        return

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter())
    root.addHandler(handler)

    # SQL в логи только по явному DB_ECHO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_project_logger(name: str = "competition-admission") -> logging.Logger:
    return logging.getLogger(name)


def get_queue_logger() -> logging.Logger:
    """
    Отдельный логгер для очереди/воркеров (удобно фильтровать/маршрутизировать).
    """
    return logging.getLogger("competition-admission.queue")
