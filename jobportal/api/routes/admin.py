import asyncio
from collections import defaultdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from jobportal.api import deps
from jobportal.core.auth import require_roles
from jobportal.core.roles import Role
from jobportal.core.steps import normalize_status
from jobportal.db.repositories import IntakeStore
from jobportal.schemas.application import ApplicationReviewOut, StatusUpdateIn, StatusUpdateOut
from jobportal.schemas.identity import Identity
from jobportal.services.compliance import ApplicantProfile, compliance_score, documents_in_scope
from jobportal.services.event_bus import notification_bus
from jobportal.services.review import apply_status_transition

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/applications", response_model=list[ApplicationReviewOut])
async def list_applications(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    job_id: Optional[str] = Query(default=None),
    store: IntakeStore = Depends(deps.get_store),
    _user: Identity = Depends(require_roles([Role.REVIEWER])),
):
    status = normalize_status(status_filter) if status_filter else None
    rows = await store.list_applications_for_review(status=status, job_id=job_id)

    applicant_ids = {application.applicant_id for application, _, _ in rows}
    documents_by_applicant = defaultdict(list)
    for document in await store.list_documents(applicant_ids):
        documents_by_applicant[document.applicant_id].append(document)

    out = []
    for application, applicant, job in rows:
        documents = documents_in_scope(documents_by_applicant[application.applicant_id], application.application_id)
        score = compliance_score(
            [doc.file_type for doc in documents],
            (applicant.licenses or []) if applicant else [],
            (job.required_documents or []) if job else [],
            (job.required_credentials or []) if job else [],
            profile=ApplicantProfile.from_applicant(applicant) if applicant else None,
        )
        out.append(
            ApplicationReviewOut(
                application_id=application.application_id,
                applicant_id=application.applicant_id,
                job_id=application.job_id,
                job_title=job.title if job else None,
                applicant_name=applicant.full_name if applicant else None,
                email=applicant.email if applicant else None,
                reference_code=applicant.reference_code if applicant else None,
                status=application.status,
                current_step=application.current_step,
                submitted_at=application.submitted_at,
                compliance_score=score,
            )
        )
    return out


@router.post("/applications/{application_id}/status", response_model=StatusUpdateOut)
async def update_application_status(
    application_id: int,
    payload: StatusUpdateIn,
    store: IntakeStore = Depends(deps.get_store),
    user: Identity = Depends(require_roles([Role.ADMIN])),
):
    result = await apply_status_transition(
        store,
        application_id=application_id,
        to_status=payload.status,
        user=user,
        note=payload.note,
    )
    return StatusUpdateOut(
        application_id=result.application_id,
        from_status=result.from_status,
        to_status=result.to_status,
        changed=result.changed,
    )


@router.get("/events/stream")
async def stream_events(
    request: Request,
    action: Optional[list[str]] = Query(default=None),
    _user: Identity = Depends(require_roles([Role.REVIEWER])),
):
    queue = await notification_bus.subscribe(action)

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    notification = await asyncio.wait_for(queue.get(), timeout=15)
                    yield f"event: {notification.action_type}\ndata: {notification.to_json()}\n\n"
                except asyncio.TimeoutError:
                    yield "event: ping\ndata: {}\n\n"
        finally:
            await notification_bus.unsubscribe(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
