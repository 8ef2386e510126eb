"""
Генерация идентификаторов.

Назначение:
- id записей (регистрации, задачи)
- worker_id для аренды задач
- детерминированные ключи задач для дедупликации
"""

from __future__ import annotations

import os
import secrets
import socket
import uuid
from datetime import datetime


def new_uuid() -> str:
    """UUIDv4 строкой."""
    return str(uuid.uuid4())


def new_worker_id(prefix: str = "worker") -> str:
    """
    Идентификатор воркера: <prefix>:<host>:<pid>:<rand>
    """
    return f"{prefix}:{socket.gethostname()}:{os.getpid()}:{secrets.token_hex(3)}"


def confirmation_dedup_key(registration_id: str) -> str:
    return f"confirmation:{registration_id}"


def reminder_dedup_key(*, competition_id: str, user_id: str, start_date: datetime) -> str:
    """
    Ключ напоминания: одно напоминание на (соревнование, участник, день старта).
    """
    return f"reminder:{competition_id}:{user_id}:{start_date:%Y%m%d}"
