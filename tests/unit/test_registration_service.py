from __future__ import annotations

from datetime import timedelta

import pytest

from competition_admission.common.errors import ForbiddenError, NotFoundError
from competition_admission.common.security import CallerIdentity
from competition_admission.domain.enums import Role
from competition_admission.services.admission import AdmissionController
from competition_admission.services.registration_service import RegistrationService


@pytest.fixture()
def service(db, queue, clock) -> RegistrationService:
    return RegistrationService(db, AdmissionController(db, queue, clock=clock))


def _participant(user_id: str) -> CallerIdentity:
    return CallerIdentity(user_id=user_id, role=Role.participant)


def test_register_requires_participant_role(service, seed_competition) -> None:
    cid = seed_competition()
    with pytest.raises(ForbiddenError):
        service.register(CallerIdentity(user_id="org-1", role=Role.organizer), cid)

    reg = service.register(_participant("user-a"), cid, idempotency_key="k1")
    assert reg.user_id == "user-a"


def test_my_registrations_newest_first(service, seed_competition, clock) -> None:
    first = seed_competition()
    second = seed_competition()
    service.register(_participant("user-a"), first)
    clock.advance(minutes=1)
    service.register(_participant("user-a"), second)
    service.register(_participant("user-b"), second)

    mine = service.my_registrations(_participant("user-a"))
    assert [r.competition_id for r in mine] == [second, first]


def test_list_participants_only_for_owning_organizer(service, seed_competition) -> None:
    cid = seed_competition(organizer_id="org-1")
    service.register(_participant("user-a"), cid)
    service.register(_participant("user-b"), cid)

    owner = CallerIdentity(user_id="org-1", role=Role.organizer)
    assert {r.user_id for r in service.list_participants(owner, cid)} == {"user-a", "user-b"}

    with pytest.raises(ForbiddenError):
        service.list_participants(CallerIdentity(user_id="org-2", role=Role.organizer), cid)
    with pytest.raises(ForbiddenError):
        service.list_participants(_participant("user-a"), cid)


def test_list_participants_of_deleted_competition(service, seed_competition) -> None:
    cid = seed_competition(organizer_id="org-1", deleted=True, deadline_in=timedelta(days=1))
    with pytest.raises(NotFoundError):
        service.list_participants(CallerIdentity(user_id="org-1", role=Role.organizer), cid)
