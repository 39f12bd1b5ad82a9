import pytest
from sqlalchemy import select

from jobportal.core.errors import NotFoundError, ValidationError
from jobportal.models.document import Document
from jobportal.models.operation_retry import OperationRetry
from jobportal.services.documents import (
    CommittedDocument,
    DocumentOwner,
    DocumentStager,
    DocumentUploadManager,
    OrphanedDocument,
)
from jobportal.services.storage import verify_signed_path

PDF = b"%PDF-1.4 test"


@pytest.fixture()
async def applicant_id(store):
    return await store.insert_applicant({"email": "docs@example.com", "reference_code": "REF-2025-00001"})


@pytest.fixture()
def uploads(store, storage):
    return DocumentUploadManager(store, storage, upload_timeout_seconds=0.2)


async def _documents(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(Document))).scalars().all()


def test_staging_validates_without_network():
    stager = DocumentStager()
    staged = stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)
    assert staged.local_id.startswith("temp_")
    assert staged.size == len(PDF)

    with pytest.raises(ValidationError):
        stager.stage("resume", filename="cv.exe", content_type="application/x-msdownload", data=PDF)
    assert len(stager) == 1


def test_single_slot_replaces_staged_entry():
    stager = DocumentStager()
    stager.stage("resume", filename="old.pdf", content_type="application/pdf", data=PDF)
    stager.stage("resume", filename="new.pdf", content_type="application/pdf", data=PDF)
    stager.stage("document", filename="a.pdf", content_type="application/pdf", data=PDF)
    stager.stage("document", filename="b.pdf", content_type="application/pdf", data=PDF)

    names = [item.filename for item in stager.staged]
    assert names == ["new.pdf", "a.pdf", "b.pdf"]


def test_unstage_and_clear():
    stager = DocumentStager()
    staged = stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)
    assert stager.unstage(staged.local_id)
    assert not stager.unstage(staged.local_id)
    stager.stage("document", filename="a.pdf", content_type="application/pdf", data=PDF)
    stager.clear()
    assert stager.staged == []


async def test_commit_uploads_blob_and_writes_record(uploads, storage, applicant_id):
    stager = DocumentStager()
    stager.stage("resume", filename="My CV.pdf", content_type="application/pdf", data=PDF)
    owner = DocumentOwner(applicant_id=applicant_id, identity_key="user-1")

    [outcome] = await uploads.commit(owner, stager.staged)

    assert outcome.ok
    assert outcome.status == "committed"
    committed = outcome.result
    assert isinstance(committed, CommittedDocument)
    assert committed.filename == "My CV.pdf"
    assert committed.file_path.startswith("resumes/user-1/")
    assert committed.file_path.endswith("_My_CV.pdf")
    assert storage.blobs[committed.file_path][0] == PDF


async def test_second_resume_replaces_first(uploads, storage, session_factory, applicant_id):
    owner = DocumentOwner(applicant_id=applicant_id)
    for name in ("first.pdf", "second.pdf"):
        stager = DocumentStager()
        stager.stage("resume", filename=name, content_type="application/pdf", data=PDF)
        await uploads.commit(owner, stager.staged)

    documents = await _documents(session_factory)
    assert [d.file_name for d in documents] == ["second.pdf"]
    assert list(storage.blobs) == [documents[0].file_path]


async def test_generic_documents_accumulate(uploads, session_factory, applicant_id):
    owner = DocumentOwner(applicant_id=applicant_id)
    stager = DocumentStager()
    stager.stage("document", filename="a.pdf", content_type="application/pdf", data=PDF)
    stager.stage("document", filename="b.pdf", content_type="application/pdf", data=PDF)
    await uploads.commit(owner, stager.staged)

    assert len(await _documents(session_factory)) == 2


async def test_job_requirement_documents_are_application_scoped(uploads, session_factory, applicant_id):
    owner = DocumentOwner(applicant_id=applicant_id, application_id=5)
    stager = DocumentStager()
    stager.stage("NBI CLEARANCE", filename="nbi.pdf", content_type="application/pdf", data=PDF)
    stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)
    await uploads.commit(owner, stager.staged)

    scopes = {d.file_type: d.application_id for d in await _documents(session_factory)}
    assert scopes == {"NBI CLEARANCE": 5, "resume": None}


async def test_failed_upload_does_not_abort_siblings(uploads, storage, session_factory, applicant_id):
    storage.fail_uploads.add("broken.pdf")
    stager = DocumentStager()
    stager.stage("document", filename="broken.pdf", content_type="application/pdf", data=PDF)
    stager.stage("document", filename="fine.pdf", content_type="application/pdf", data=PDF)

    outcomes = await uploads.commit(DocumentOwner(applicant_id=applicant_id), stager.staged)

    assert [o.status for o in outcomes] == ["failed", "committed"]
    assert "broken.pdf" in outcomes[0].error
    assert [d.file_name for d in await _documents(session_factory)] == ["fine.pdf"]


async def test_upload_timeout_is_reported_per_file(uploads, storage, applicant_id):
    storage.hang_uploads = True
    stager = DocumentStager()
    stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)

    [outcome] = await uploads.commit(DocumentOwner(applicant_id=applicant_id), stager.staged)

    assert outcome.status == "failed"
    assert outcome.error.startswith("Upload timeout")


async def test_record_failure_leaves_queued_orphan(uploads, store, storage, session_factory, applicant_id):
    async def failing_insert(values):
        raise RuntimeError("insert failed")

    store.insert_document = failing_insert
    stager = DocumentStager()
    stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)

    [outcome] = await uploads.commit(DocumentOwner(applicant_id=applicant_id), stager.staged)

    assert outcome.status == "orphaned"
    assert isinstance(outcome.result, OrphanedDocument)
    assert outcome.result.file_path in storage.blobs
    async with session_factory() as session:
        queued = (await session.execute(select(OperationRetry))).scalars().all()
    assert [q.idempotency_key for q in queued] == [f"storage_remove:{outcome.result.file_path}"]
    assert queued[0].reason == "orphaned_upload"


async def test_remove_staged_document_is_a_noop(uploads):
    staged = DocumentStager().stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)
    assert await uploads.remove(staged) is False


async def test_remove_committed_document(uploads, storage, session_factory, applicant_id):
    stager = DocumentStager()
    stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)
    [outcome] = await uploads.commit(DocumentOwner(applicant_id=applicant_id), stager.staged)

    assert await uploads.remove_by_id(outcome.result.document_id, applicant_id=applicant_id)
    assert storage.blobs == {}
    assert await _documents(session_factory) == []


async def test_blob_remove_failure_is_queued(uploads, storage, session_factory, applicant_id):
    stager = DocumentStager()
    stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)
    [outcome] = await uploads.commit(DocumentOwner(applicant_id=applicant_id), stager.staged)
    storage.fail_removes = True

    assert await uploads.remove(outcome.result)
    async with session_factory() as session:
        queued = (await session.execute(select(OperationRetry))).scalars().all()
    assert len(queued) == 1


async def test_other_applicants_cannot_touch_a_document(uploads, applicant_id):
    stager = DocumentStager()
    stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)
    [outcome] = await uploads.commit(DocumentOwner(applicant_id=applicant_id), stager.staged)

    with pytest.raises(NotFoundError):
        await uploads.remove_by_id(outcome.result.document_id, applicant_id=applicant_id + 1)
    with pytest.raises(NotFoundError):
        await uploads.signed_url(outcome.result.document_id, applicant_id=applicant_id + 1)


async def test_signed_url_is_time_limited(uploads, applicant_id):
    stager = DocumentStager()
    stager.stage("resume", filename="cv.pdf", content_type="application/pdf", data=PDF)
    [outcome] = await uploads.commit(DocumentOwner(applicant_id=applicant_id), stager.staged)

    url = await uploads.signed_url(outcome.result.document_id, applicant_id=applicant_id, ttl_seconds=60)

    assert url.startswith("/files/")
    query = dict(part.split("=", 1) for part in url.split("?", 1)[1].split("&"))
    path = outcome.result.file_path
    assert verify_signed_path(path, int(query["expires"]), query["signature"])
    assert not verify_signed_path(path, int(query["expires"]), "0" * 64)
    assert not verify_signed_path(path, int(query["expires"]), query["signature"], now=int(query["expires"]) + 1)
