"""
Проверка прав вызывающей стороны.

Аутентификация — внешний модуль: он отдаёт нам непрозрачный user_id и роль.
Здесь только явная проверка роли перед вызовом операций ядра.
"""

from __future__ import annotations

from dataclasses import dataclass

from competition_admission.domain.enums import Role

from .errors import ForbiddenError


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    role: Role


def require_role(caller: CallerIdentity, *allowed: Role) -> None:
    if caller.role in allowed:
        return
    raise ForbiddenError(
        "Роль не допускает операцию",
        details={
            "user_id": caller.user_id,
            "role": caller.role.value,
            "required": [r.value for r in allowed],
        },
    )
