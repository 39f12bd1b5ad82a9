import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from jobportal.api import deps
from jobportal.core.config import settings
from jobportal.core.errors import ConfigurationError, TransientStoreError, ValidationError
from jobportal.core.steps import DOCUMENTS
from jobportal.db.repositories import IntakeStore
from jobportal.schemas.application import FinalizeIn, FinalizeOut, JobOut, StepOut, StepSubmission
from jobportal.schemas.document import DocumentOut, DocumentOutcomeOut, SignedUrlOut
from jobportal.schemas.identity import Identity
from jobportal.services.applicant_resolver import ApplicantResolver
from jobportal.services.application_steps import AdvanceResult, ApplicationStepCoordinator, parse_job_id
from jobportal.services.documents import DocumentStager, DocumentUploadManager
from jobportal.services.finalization import FinalizationService

logger = logging.getLogger("jp.api.apply")

router = APIRouter(prefix="/apply", tags=["apply"])

STEP_ONE_REQUIRED = "Please complete Step 1 (Personal Information) first"


def _email_for(identity: Identity, fallback: Optional[str]) -> Optional[str]:
    return identity.email or fallback


async def _existing_applicant_id(resolver: ApplicantResolver, identity: Identity, email: Optional[str]) -> int:
    applicant_id = await resolver.find(identity.user_id, _email_for(identity, email))
    if applicant_id is None:
        raise ValidationError(STEP_ONE_REQUIRED)
    return applicant_id


def _step_out(result: AdvanceResult, coordinator: ApplicationStepCoordinator) -> StepOut:
    flow = coordinator.flow
    next_step = result.current_step + 1 if result.current_step < flow.terminal_step else None
    return StepOut(
        application_id=result.application_id,
        applicant_id=result.applicant_id,
        job_id=result.job_id,
        current_step=result.current_step,
        next_step=next_step,
        step_count=flow.step_count,
        status=result.status,
        documents=[DocumentOutcomeOut.from_outcome(item) for item in result.documents],
    )


@router.get("/jobs", response_model=list[JobOut])
async def list_open_jobs(store: IntakeStore = Depends(deps.get_store)):
    jobs = await store.list_jobs(active_only=True)
    return [JobOut.model_validate(job) for job in jobs]


@router.get("/jobs/{job_id}", response_model=JobOut)
async def get_open_job(job_id: str, store: IntakeStore = Depends(deps.get_store)):
    try:
        parsed = parse_job_id(job_id)
    except ConfigurationError:
        parsed = None
    job = await store.get_job(parsed) if parsed else None
    if not job or not job.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobOut.model_validate(job)


@router.post("/steps/{step}", response_model=StepOut)
async def submit_step(
    step: int,
    payload: StepSubmission,
    identity: Identity = Depends(deps.get_identity),
    resolver: ApplicantResolver = Depends(deps.get_resolver),
    coordinator: ApplicationStepCoordinator = Depends(deps.get_coordinator),
):
    if step < 1 or step > coordinator.flow.step_count:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown step")

    email = _email_for(identity, payload.email)
    if coordinator.flow.captures_identity(step):
        applicant_id = await resolver.resolve(identity.user_id, email)
    else:
        applicant_id = await _existing_applicant_id(resolver, identity, payload.email)

    result = await coordinator.advance(applicant_id, payload.job_id, step, payload, identity_key=identity.user_id)
    return _step_out(result, coordinator)


@router.post("/draft", response_model=StepOut)
async def save_draft(
    payload: StepSubmission,
    step: int = Query(default=1, ge=1),
    identity: Identity = Depends(deps.get_identity),
    resolver: ApplicantResolver = Depends(deps.get_resolver),
    coordinator: ApplicationStepCoordinator = Depends(deps.get_coordinator),
):
    email = _email_for(identity, payload.email)
    applicant_id = await resolver.resolve(identity.user_id, email)
    result = await coordinator.save_draft(applicant_id, payload.job_id, step, payload)
    return _step_out(result, coordinator)


@router.post("/documents", response_model=StepOut)
async def upload_documents(
    files: List[UploadFile] = File(...),
    document_types: List[str] = Form(default=[]),
    job_id: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    identity: Identity = Depends(deps.get_identity),
    resolver: ApplicantResolver = Depends(deps.get_resolver),
    coordinator: ApplicationStepCoordinator = Depends(deps.get_coordinator),
):
    applicant_id = await _existing_applicant_id(resolver, identity, email)

    # All files are checked before any upload starts.
    stager = DocumentStager()
    for index, upload in enumerate(files):
        document_type = document_types[index] if index < len(document_types) else None
        data = await upload.read()
        stager.stage(document_type, filename=upload.filename, content_type=upload.content_type, data=data)

    documents_step = coordinator.flow.step_of(DOCUMENTS)
    result = await coordinator.advance(
        applicant_id,
        job_id,
        documents_step,
        staged=stager.staged,
        identity_key=identity.user_id,
    )
    if result.failed_documents:
        logger.warning(
            "document_batch_partial_failure",
            extra={"applicant_id": applicant_id, "failed": len(result.failed_documents), "total": len(result.documents)},
        )
    return _step_out(result, coordinator)


@router.get("/documents", response_model=list[DocumentOut])
async def list_my_documents(
    email: Optional[str] = Query(default=None),
    document_type: Optional[str] = Query(default=None),
    identity: Identity = Depends(deps.get_identity),
    resolver: ApplicantResolver = Depends(deps.get_resolver),
    uploads: DocumentUploadManager = Depends(deps.get_upload_manager),
):
    applicant_id = await _existing_applicant_id(resolver, identity, email)
    documents = await uploads.list_documents(applicant_id, document_type=document_type)
    return [DocumentOut.from_committed(doc) for doc in documents]


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_document(
    document_id: int,
    email: Optional[str] = Query(default=None),
    identity: Identity = Depends(deps.get_identity),
    resolver: ApplicantResolver = Depends(deps.get_resolver),
    uploads: DocumentUploadManager = Depends(deps.get_upload_manager),
):
    applicant_id = await _existing_applicant_id(resolver, identity, email)
    await uploads.remove_by_id(document_id, applicant_id=applicant_id)


@router.get("/documents/{document_id}/url", response_model=SignedUrlOut)
async def document_url(
    document_id: int,
    email: Optional[str] = Query(default=None),
    identity: Identity = Depends(deps.get_identity),
    resolver: ApplicantResolver = Depends(deps.get_resolver),
    uploads: DocumentUploadManager = Depends(deps.get_upload_manager),
):
    applicant_id = await _existing_applicant_id(resolver, identity, email)
    ttl = int(settings.signed_url_ttl_seconds)
    url = await uploads.signed_url(document_id, applicant_id=applicant_id, ttl_seconds=ttl)
    return SignedUrlOut(url=url, expires_in=ttl)


@router.post("/finalize", response_model=FinalizeOut)
async def finalize_application(
    payload: FinalizeIn,
    identity: Identity = Depends(deps.get_identity),
    resolver: ApplicantResolver = Depends(deps.get_resolver),
    finalization: FinalizationService = Depends(deps.get_finalization),
):
    # The applicant always leaves with a confirmation code, even when the store is down.
    applicant_id: Optional[int]
    try:
        applicant_id = await resolver.find(identity.user_id, _email_for(identity, payload.email))
    except TransientStoreError as exc:
        logger.warning("finalize_lookup_failed", extra={"error": exc.message})
        applicant_id = None
    result = await finalization.finalize(applicant_id, payload.job_id)
    return FinalizeOut(
        reference_code=result.reference_code,
        persisted=result.persisted,
        application_id=result.application_id,
    )
