from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Sequence
import uuid

from jobportal.core.config import settings
from jobportal.core.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from jobportal.core.steps import DOCUMENTS, PENDING, StepFlow, flow_for_step_count, normalize_status
from jobportal.db.repositories import IntakeStore
from jobportal.models.applicant import Applicant
from jobportal.models.application import Application, job_key_for
from jobportal.schemas.applicant import REQUIRED_IDENTITY_FIELDS, ApplicantDetails
from jobportal.services.documents import CommitOutcome, DocumentOwner, DocumentUploadManager, StagedDocument

logger = logging.getLogger("jp.steps")


def parse_job_id(raw: Any) -> str | None:
    """Canonical UUID string, None when absent. Raises ConfigurationError on anything else."""
    if raw is None:
        return None
    if isinstance(raw, uuid.UUID):
        return str(raw)
    text = str(raw).strip()
    if not text or text.lower() in {"null", "none", "undefined", "general"}:
        return None
    try:
        return str(uuid.UUID(text))
    except ValueError:
        raise ConfigurationError(f"Malformed job id: {text!r}")


async def resolve_job_reference(store: IntakeStore, raw: Any) -> str | None:
    """Malformed or unknown job references degrade to a general application."""
    try:
        job_id = parse_job_id(raw)
        if job_id is not None and await store.get_job(job_id) is None:
            raise ConfigurationError(f"Unknown job id: {job_id}")
    except ConfigurationError as exc:
        logger.warning("application_job_degraded", extra={"job_id": str(raw), "error": exc.message})
        return None
    return job_id


@dataclass(frozen=True)
class AdvanceResult:
    application_id: int
    applicant_id: int
    job_id: str | None
    current_step: int
    status: str
    documents: list[CommitOutcome] = field(default_factory=list)

    @property
    def failed_documents(self) -> list[CommitOutcome]:
        return [item for item in self.documents if not item.ok]


class ApplicationStepCoordinator:
    """
    Moves one (applicant, job) Application through the wizard. Every call is a full upsert,
    so a session can resume from any device at any step; the stored step is last-write-wins.
    """

    def __init__(
        self,
        store: IntakeStore,
        uploads: DocumentUploadManager | None = None,
        *,
        flow: StepFlow | None = None,
    ) -> None:
        self._store = store
        self._uploads = uploads
        self._flow = flow or flow_for_step_count(settings.application_step_count)

    @property
    def flow(self) -> StepFlow:
        return self._flow

    async def advance(
        self,
        applicant_id: int,
        job_id: Any,
        step: int,
        payload: ApplicantDetails | None = None,
        staged: Sequence[StagedDocument] | None = None,
        *,
        identity_key: str | None = None,
    ) -> AdvanceResult:
        return await self._save(
            applicant_id,
            job_id,
            step,
            payload,
            staged=staged or (),
            identity_key=identity_key,
            validate=True,
        )

    async def save_draft(
        self,
        applicant_id: int,
        job_id: Any,
        step: int,
        payload: ApplicantDetails | None = None,
    ) -> AdvanceResult:
        return await self._save(applicant_id, job_id, step, payload, staged=(), identity_key=None, validate=False)

    async def resolve_job_id(self, raw: Any) -> str | None:
        return await resolve_job_reference(self._store, raw)

    async def _save(
        self,
        applicant_id: int,
        raw_job_id: Any,
        step: int,
        payload: ApplicantDetails | None,
        *,
        staged: Sequence[StagedDocument],
        identity_key: str | None,
        validate: bool,
    ) -> AdvanceResult:
        step_number = self._flow.clamp(step)
        details = payload or ApplicantDetails()

        applicant = await self._store.get_applicant(applicant_id)
        if applicant is None:
            raise NotFoundError("Please complete Step 1 (Personal Information) first")

        if validate and self._flow.captures_identity(step_number):
            missing = _missing_identity(details, applicant)
            if missing:
                raise ValidationError(f"Please fill in all required fields ({', '.join(missing)})")

        job_id = await self.resolve_job_id(raw_job_id)
        application = await self._find_or_create(applicant_id, job_id)

        values: dict[str, Any] = {}
        if self._flow.captures_identity(step_number):
            values.update(details.identity_values())
        if self._flow.captures_qualifications(step_number):
            values.update(details.qualification_values())
        if values:
            await self._store.update_applicant(applicant_id, values)

        outcomes: list[CommitOutcome] = []
        if validate and staged and self._flow.kind_of(step_number) == DOCUMENTS:
            if self._uploads is None:
                raise ValidationError("Document uploads are not available.")
            owner = DocumentOwner(
                applicant_id=applicant_id,
                application_id=application.application_id,
                identity_key=identity_key or applicant.user_id,
            )
            outcomes = await self._uploads.commit(owner, staged)

        application_values: dict[str, Any] = {"current_step": step_number}
        status = application.status or PENDING
        if normalize_status(application.status) is None:
            application_values["status"] = PENDING
            status = PENDING
        await self._store.update_application(application.application_id, application_values)

        logger.info(
            "application_step_saved",
            extra={
                "applicant_id": applicant_id,
                "application_id": application.application_id,
                "job_id": job_id,
                "step": step_number,
                "draft": not validate,
            },
        )
        return AdvanceResult(
            application_id=application.application_id,
            applicant_id=applicant_id,
            job_id=job_id,
            current_step=step_number,
            status=status,
            documents=outcomes,
        )

    async def _find_or_create(self, applicant_id: int, job_id: str | None) -> Application:
        existing = await self._store.find_application(applicant_id, job_id)
        if existing is not None:
            return existing
        try:
            application = await self._store.insert_application(
                {
                    "applicant_id": applicant_id,
                    "job_id": job_id,
                    "job_key": job_key_for(job_id),
                    "current_step": 1,
                    "status": PENDING,
                }
            )
        except ConflictError:
            # Another tab created it first.
            existing = await self._store.find_application(applicant_id, job_id)
            if existing is None:
                raise
            return existing
        logger.info(
            "application_created",
            extra={"applicant_id": applicant_id, "application_id": application.application_id, "job_id": job_id},
        )
        return application


def _missing_identity(details: ApplicantDetails, applicant: Applicant) -> list[str]:
    missing = []
    for name, label in REQUIRED_IDENTITY_FIELDS.items():
        if name in details.model_fields_set:
            value = getattr(details, name)
        else:
            value = getattr(applicant, name)
        if not value:
            missing.append(label)
    return missing
