"""
Контракты задач очереди.

Правила:
- payload JSON-совместимый: {kind, registration_id, user_id, competition_id}
- набор видов закрыт (confirmation | reminder), разбор через discriminator
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from competition_admission.common.ids import confirmation_dedup_key
from competition_admission.domain.enums import TaskKind


class _TaskBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    registration_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    competition_id: str = Field(..., min_length=1)

    @property
    def task_kind(self) -> TaskKind:
        return TaskKind(self.kind)  # type: ignore[attr-defined]

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ConfirmationTask(_TaskBase):
    kind: Literal["confirmation"] = "confirmation"


class ReminderTask(_TaskBase):
    kind: Literal["reminder"] = "reminder"


TaskPayload = Annotated[ConfirmationTask | ReminderTask, Field(discriminator="kind")]

_TASK_ADAPTER: TypeAdapter[TaskPayload] = TypeAdapter(TaskPayload)


def parse_task(payload: dict[str, Any]) -> ConfirmationTask | ReminderTask:
    """
    Разбор wire-payload в вариант задачи.
    Бросает pydantic.ValidationError на неизвестный kind / битые поля.
    """
    return _TASK_ADAPTER.validate_python(payload)


def default_dedup_key(task: ConfirmationTask | ReminderTask) -> str:
    match task:
        case ConfirmationTask():
            return confirmation_dedup_key(task.registration_id)
        case ReminderTask():
            # Без дня старта: планировщик передаёт свой ключ явно
            return f"reminder:{task.competition_id}:{task.user_id}"
