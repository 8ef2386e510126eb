from __future__ import annotations

import pytest
from pydantic import ValidationError

from competition_admission.domain.enums import TaskKind
from competition_admission.queue.tasks import (
    ConfirmationTask,
    ReminderTask,
    default_dedup_key,
    parse_task,
)


def test_parse_task_dispatches_on_kind() -> None:
    wire = {"kind": "reminder", "registration_id": "r-1", "user_id": "u-1", "competition_id": "c-1"}
    task = parse_task(wire)
    assert isinstance(task, ReminderTask)
    assert task.task_kind == TaskKind.reminder
    assert task.to_wire() == wire


def test_parse_task_rejects_unknown_kind() -> None:
    with pytest.raises(ValidationError):
        parse_task(
            {"kind": "sms", "registration_id": "r-1", "user_id": "u-1", "competition_id": "c-1"}
        )


def test_parse_task_rejects_extra_and_empty_fields() -> None:
    with pytest.raises(ValidationError):
        parse_task(
            {
                "kind": "confirmation",
                "registration_id": "r-1",
                "user_id": "u-1",
                "competition_id": "c-1",
                "email": "x@example.com",
            }
        )
    with pytest.raises(ValidationError):
        parse_task(
            {"kind": "confirmation", "registration_id": "", "user_id": "u-1", "competition_id": "c"}
        )


def test_default_dedup_key_per_kind() -> None:
    conf = ConfirmationTask(registration_id="r-1", user_id="u-1", competition_id="c-1")
    rem = ReminderTask(registration_id="r-1", user_id="u-1", competition_id="c-1")
    assert default_dedup_key(conf) == "confirmation:r-1"
    assert default_dedup_key(rem) == "reminder:c-1:u-1"
