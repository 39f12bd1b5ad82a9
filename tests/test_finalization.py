from datetime import datetime

from sqlalchemy import select

from jobportal.core.steps import THREE_STEP_FLOW
from jobportal.models.event import ApplicationEvent
from jobportal.schemas.applicant import ApplicantDetails
from jobportal.services.application_steps import ApplicationStepCoordinator
from jobportal.services.finalization import FinalizationService
from jobportal.services.reference_codes import ReferenceCodeGenerator, fallback_reference_code

NOW = datetime(2025, 6, 1, 8, 30)
JOB_ID = "3f2b8c1e-4d5a-4b6c-8e7f-9a0b1c2d3e4f"


class ExplodingStore:
    async def get_applicant(self, applicant_id):
        raise RuntimeError("connection reset")


class SequenceDown:
    async def next_reference_number(self, year):
        raise RuntimeError("sequence unavailable")


async def _applicant_with_application(store, *, code="TEMP-1700000000000", status="Pending"):
    applicant_id = await store.insert_applicant({"email": "final@example.com", "reference_code": code})
    application = await store.insert_application(
        {"applicant_id": applicant_id, "job_id": None, "current_step": 2, "status": status}
    )
    return applicant_id, application.application_id


def _service(store):
    return FinalizationService(store, ReferenceCodeGenerator(store, clock=lambda: NOW), flow=THREE_STEP_FLOW, clock=lambda: NOW)


async def test_placeholder_code_is_made_permanent(store):
    applicant_id, application_id = await _applicant_with_application(store)

    result = await _service(store).finalize(applicant_id, None)

    assert result.reference_code == "REF-2025-00001"
    assert result.persisted
    applicant = await store.get_applicant(applicant_id)
    assert applicant.reference_code == "REF-2025-00001"
    application = await store.get_application(application_id)
    assert application.status == "submitted"
    assert application.current_step == 3
    assert application.submitted_at == NOW


async def test_finalize_twice_keeps_the_same_code(store, session_factory):
    applicant_id, application_id = await _applicant_with_application(store)
    service = _service(store)

    first = await service.finalize(applicant_id, None)
    second = await service.finalize(applicant_id, None)

    assert first.reference_code == second.reference_code
    async with session_factory() as session:
        events = (await session.execute(select(ApplicationEvent))).scalars().all()
    assert [e.action_type for e in events] == ["application_submitted"]


async def test_permanent_code_is_kept(store):
    applicant_id, _ = await _applicant_with_application(store, code="REF-2024-00042")
    result = await _service(store).finalize(applicant_id, None)
    assert result.reference_code == "REF-2024-00042"


async def test_reviewed_status_is_not_reset(store):
    applicant_id, application_id = await _applicant_with_application(store, code="REF-2024-00042", status="screening")
    await _service(store).finalize(applicant_id, None)
    application = await store.get_application(application_id)
    assert application.status == "screening"


async def test_missing_application_is_not_an_error(store):
    applicant_id = await store.insert_applicant({"email": "solo@example.com", "reference_code": "TEMP-1"})

    result = await _service(store).finalize(applicant_id, None)

    assert result.reference_code.startswith("REF-")
    assert result.application_id is None


async def test_store_failure_still_returns_a_code():
    service = FinalizationService(ExplodingStore(), ReferenceCodeGenerator(ExplodingStore()), flow=THREE_STEP_FLOW, clock=lambda: NOW)

    result = await service.finalize(1, None)

    assert result.reference_code == fallback_reference_code(NOW)
    assert not result.persisted


async def test_unknown_applicant_gets_a_fallback_code(store):
    result = await _service(store).finalize(None, None)
    assert result.reference_code == fallback_reference_code(NOW)
    assert not result.persisted


async def _advance_identity(store, job_reference):
    applicant_id = await store.insert_applicant({"email": "wizard@example.com", "reference_code": "TEMP-2"})
    details = ApplicantDetails(first_name="Maria", last_name="Santos", email="wizard@example.com")
    await ApplicationStepCoordinator(store, flow=THREE_STEP_FLOW).advance(applicant_id, job_reference, 1, details)
    return applicant_id


async def test_malformed_job_reference_finalizes_the_general_application(store):
    applicant_id = await _advance_identity(store, "not-a-valid-id")

    result = await _service(store).finalize(applicant_id, "not-a-valid-id")

    application = await store.get_application(result.application_id)
    assert application.job_id is None
    assert application.status == "submitted"


async def test_upper_case_job_reference_finalizes_the_job_application(store, job):
    applicant_id = await _advance_identity(store, JOB_ID.upper())

    result = await _service(store).finalize(applicant_id, JOB_ID.upper())

    application = await store.get_application(result.application_id)
    assert application.job_id == JOB_ID
    assert application.status == "submitted"


async def test_code_held_by_another_applicant_is_never_shown(store):
    taken = fallback_reference_code(NOW)
    await store.insert_applicant({"email": "first@example.com", "reference_code": taken})
    applicant_id, application_id = await _applicant_with_application(store, code="TEMP-1700000000123")
    service = FinalizationService(store, ReferenceCodeGenerator(SequenceDown(), clock=lambda: NOW), flow=THREE_STEP_FLOW, clock=lambda: NOW)

    first = await service.finalize(applicant_id, None)
    second = await service.finalize(applicant_id, None)

    assert first.reference_code != taken
    assert first.reference_code == "TEMP-1700000000123"
    assert second.reference_code == first.reference_code
    applicant = await store.get_applicant(applicant_id)
    assert applicant.reference_code == "TEMP-1700000000123"
    application = await store.get_application(application_id)
    assert application.status == "submitted"
