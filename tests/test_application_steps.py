import pytest
from sqlalchemy import select

from jobportal.core.errors import ConfigurationError, NotFoundError, ValidationError
from jobportal.core.steps import FOUR_STEP_FLOW, THREE_STEP_FLOW
from jobportal.models.application import Application
from jobportal.schemas.applicant import ApplicantDetails
from jobportal.services.application_steps import ApplicationStepCoordinator, parse_job_id
from jobportal.services.documents import DocumentStager, DocumentUploadManager

PDF = b"%PDF-1.4 test"
JOB_ID = "3f2b8c1e-4d5a-4b6c-8e7f-9a0b1c2d3e4f"


@pytest.fixture()
async def applicant_id(store):
    return await store.insert_applicant({"email": "steps@example.com", "reference_code": "TEMP-1"})


@pytest.fixture()
def coordinator(store, storage):
    return ApplicationStepCoordinator(store, DocumentUploadManager(store, storage), flow=THREE_STEP_FLOW)


async def _applications(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(Application).order_by(Application.application_id))).scalars().all()


def _identity(**overrides) -> ApplicantDetails:
    values = {"first_name": "Juan", "last_name": "Dela Cruz", "email": "steps@example.com"}
    values.update(overrides)
    return ApplicantDetails(**values)


def test_parse_job_id():
    assert parse_job_id(None) is None
    assert parse_job_id("  ") is None
    assert parse_job_id(JOB_ID.upper()) == JOB_ID
    with pytest.raises(ConfigurationError):
        parse_job_id("not-a-valid-id")


async def test_step_one_creates_application(coordinator, store, job, applicant_id):
    result = await coordinator.advance(applicant_id, JOB_ID, 1, _identity(phone="0917"))

    assert result.current_step == 1
    assert result.status == "Pending"
    assert result.job_id == JOB_ID
    applicant = await store.get_applicant(applicant_id)
    assert applicant.first_name == "Juan"
    assert applicant.phone == "0917"


async def test_resubmitting_step_one_reuses_application(coordinator, session_factory, job, applicant_id):
    first = await coordinator.advance(applicant_id, JOB_ID, 1, _identity())
    second = await coordinator.advance(applicant_id, JOB_ID, 1, _identity(first_name="Juanito"))

    assert first.application_id == second.application_id
    assert len(await _applications(session_factory)) == 1


async def test_back_navigation_lowers_stored_step(coordinator, session_factory, job, applicant_id):
    await coordinator.advance(applicant_id, JOB_ID, 1, _identity())
    await coordinator.advance(applicant_id, JOB_ID, 3)
    result = await coordinator.advance(applicant_id, JOB_ID, 1, _identity())

    assert result.current_step == 1
    [application] = await _applications(session_factory)
    assert application.current_step == 1


async def test_malformed_job_id_degrades_to_general_application(coordinator, session_factory, applicant_id):
    result = await coordinator.advance(applicant_id, "not-a-valid-id", 1, _identity())

    assert result.job_id is None
    [application] = await _applications(session_factory)
    assert application.job_id is None
    assert application.job_key == "general"


async def test_unknown_job_id_degrades_to_general_application(coordinator, applicant_id):
    result = await coordinator.advance(applicant_id, "11111111-2222-4333-8444-555555555555", 1, _identity())
    assert result.job_id is None


async def test_required_identity_fields_are_enforced(coordinator, session_factory, applicant_id):
    with pytest.raises(ValidationError, match="First Name"):
        await coordinator.advance(applicant_id, None, 1, ApplicantDetails(last_name="Cruz"))
    assert await _applications(session_factory) == []


async def test_draft_accepts_blank_fields(coordinator, store, applicant_id):
    result = await coordinator.save_draft(applicant_id, None, 1, ApplicantDetails(first_name="", city="Pasig"))

    assert result.current_step == 1
    applicant = await store.get_applicant(applicant_id)
    assert applicant.first_name is None
    assert applicant.city == "Pasig"


async def test_documents_step_commits_staged_files(coordinator, job, applicant_id):
    await coordinator.advance(applicant_id, JOB_ID, 1, _identity())
    stager = DocumentStager()
    stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)
    stager.stage("NBI CLEARANCE", filename="nbi.pdf", content_type="application/pdf", data=PDF)

    result = await coordinator.advance(applicant_id, JOB_ID, 2, staged=stager.staged)

    assert result.current_step == 2
    assert [d.status for d in result.documents] == ["committed", "committed"]
    nbi = result.documents[1].result
    assert nbi.application_id == result.application_id


async def test_advance_never_resets_a_submitted_status(coordinator, store, applicant_id):
    result = await coordinator.advance(applicant_id, None, 1, _identity())
    await store.update_application(result.application_id, {"status": "submitted"})

    again = await coordinator.advance(applicant_id, None, 1, _identity())

    assert again.status == "submitted"
    application = await store.get_application(result.application_id)
    assert application.status == "submitted"


async def test_four_step_flow_keeps_qualifications_separate(store, storage, applicant_id):
    coordinator = ApplicationStepCoordinator(store, DocumentUploadManager(store, storage), flow=FOUR_STEP_FLOW)
    await coordinator.advance(applicant_id, None, 1, _identity(licenses=["ignored"]))
    await coordinator.advance(applicant_id, None, 2, ApplicantDetails(licenses=["lesp"], height_cm=170))

    applicant = await store.get_applicant(applicant_id)
    assert applicant.licenses == ["lesp"]
    assert applicant.height_cm == 170


async def test_unknown_applicant_must_complete_step_one(coordinator):
    with pytest.raises(NotFoundError):
        await coordinator.advance(999, None, 2)


async def test_concurrent_create_converges(coordinator, store, session_factory, applicant_id):
    created = await store.insert_application(
        {"applicant_id": applicant_id, "job_id": None, "current_step": 1, "status": "Pending"}
    )
    original_find = store.find_application
    calls = {"count": 0}

    async def blind_find(applicant, job):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return await original_find(applicant, job)

    store.find_application = blind_find
    result = await coordinator.advance(applicant_id, None, 1, _identity())

    assert result.application_id == created.application_id
    assert len(await _applications(session_factory)) == 1
