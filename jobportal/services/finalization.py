from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Callable

from jobportal.core.config import settings
from jobportal.core.errors import ConflictError
from jobportal.core.steps import SUBMITTED, StepFlow, flow_for_step_count, is_submitted_or_later
from jobportal.db.repositories import IntakeStore
from jobportal.services.application_steps import resolve_job_reference
from jobportal.services.reference_codes import ReferenceCodeGenerator, fallback_reference_code, is_temporary

logger = logging.getLogger("jp.finalize")

# Generation attempts when a new code is already held by another applicant.
CODE_ATTEMPTS = 3


@dataclass(frozen=True)
class FinalizeResult:
    reference_code: str
    # False when part of the submission could not be written; the code is still shown.
    persisted: bool
    application_id: int | None = None


class FinalizationService:
    def __init__(
        self,
        store: IntakeStore,
        codes: ReferenceCodeGenerator,
        *,
        flow: StepFlow | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._store = store
        self._codes = codes
        self._flow = flow or flow_for_step_count(settings.application_step_count)
        self._clock = clock

    async def finalize(self, applicant_id: int | None, job_id: Any) -> FinalizeResult:
        """
        Assigns the permanent reference code and marks the application submitted.
        Never raises: any failure still yields a code the applicant can quote.
        """
        try:
            return await self._finalize(applicant_id, job_id)
        except Exception as exc:  # noqa: BLE001
            code = fallback_reference_code(self._clock())
            logger.error(
                "application_finalize_failed",
                extra={"applicant_id": applicant_id, "job_id": job_id, "error": str(exc), "reference_code": code},
            )
            return FinalizeResult(reference_code=code, persisted=False)

    async def _finalize(self, applicant_id: int | None, raw_job_id: Any) -> FinalizeResult:
        applicant = await self._store.get_applicant(applicant_id) if applicant_id is not None else None
        if applicant is None:
            code = fallback_reference_code(self._clock())
            logger.warning("application_finalize_missing_applicant", extra={"applicant_id": applicant_id})
            return FinalizeResult(reference_code=code, persisted=False)

        job_id = await resolve_job_reference(self._store, raw_job_id)
        code, persisted = applicant.reference_code, True
        if is_temporary(code):
            code, persisted = await self._assign_permanent_code(applicant_id, code)

        application = await self._store.find_application(applicant_id, job_id)
        if application is None:
            logger.warning("application_finalize_missing_application", extra={"applicant_id": applicant_id, "job_id": job_id})
            return FinalizeResult(reference_code=code, persisted=persisted)

        now = self._clock()
        values: dict[str, Any] = {"current_step": self._flow.terminal_step}
        first_submission = not is_submitted_or_later(application.status)
        if first_submission:
            values["status"] = SUBMITTED
        if application.submitted_at is None:
            values["submitted_at"] = now
        await self._store.update_application(application.application_id, values)

        if first_submission:
            await self._notify(applicant_id, application.application_id, application.status, code)

        logger.info(
            "application_submitted",
            extra={
                "applicant_id": applicant_id,
                "application_id": application.application_id,
                "reference_code": code,
                "first_submission": first_submission,
            },
        )
        return FinalizeResult(reference_code=code, persisted=persisted, application_id=application.application_id)

    async def _assign_permanent_code(self, applicant_id: int, placeholder: str | None) -> tuple[str, bool]:
        for attempt in range(1, CODE_ATTEMPTS + 1):
            code = await self._codes.generate()
            try:
                await self._store.update_applicant(applicant_id, {"reference_code": code})
            except ConflictError:
                logger.warning(
                    "reference_code_taken",
                    extra={"applicant_id": applicant_id, "reference_code": code, "attempt": attempt},
                )
                continue
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "reference_code_persist_failed",
                    extra={"applicant_id": applicant_id, "reference_code": code, "error": str(exc)},
                )
                return code, False
            return code, True

        # Every candidate belongs to someone else; the stored placeholder is still unique to this applicant.
        if placeholder:
            return placeholder, False
        return fallback_reference_code(self._clock()), False

    async def _notify(self, applicant_id: int, application_id: int, from_status: str | None, code: str) -> None:
        try:
            await self._store.add_event(
                applicant_id=applicant_id,
                application_id=application_id,
                action_type="application_submitted",
                from_status=from_status,
                to_status=SUBMITTED,
                meta_json={"reference_code": code},
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("application_submitted_event_failed", extra={"application_id": application_id, "error": str(exc)})
