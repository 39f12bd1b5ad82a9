from __future__ import annotations

from dataclasses import dataclass
import logging

from jobportal.core.errors import NotFoundError, ValidationError
from jobportal.core.steps import allowed_next_statuses, can_transition, normalize_status
from jobportal.db.repositories import IntakeStore
from jobportal.schemas.identity import Identity

logger = logging.getLogger("jp.review")


@dataclass(frozen=True)
class StatusTransitionResult:
    application_id: int
    applicant_id: int
    from_status: str | None
    to_status: str
    changed: bool


async def apply_status_transition(
    store: IntakeStore,
    *,
    application_id: int,
    to_status: str,
    user: Identity | None = None,
    note: str | None = None,
) -> StatusTransitionResult:
    application = await store.get_application(application_id)
    if application is None:
        raise NotFoundError("Application not found")

    target = normalize_status(to_status)
    current = normalize_status(application.status)
    if target is None:
        raise ValidationError("A target status is required.")

    if current == target:
        return StatusTransitionResult(
            application_id=application_id,
            applicant_id=application.applicant_id,
            from_status=application.status,
            to_status=target,
            changed=False,
        )

    if not can_transition(current, target):
        allowed = ", ".join(sorted(allowed_next_statuses(current))) or "none"
        raise ValidationError(f"Cannot move application from '{application.status}' to '{target}'. Allowed: {allowed}.")

    await store.update_application(application_id, {"status": target})
    await store.add_event(
        applicant_id=application.applicant_id,
        application_id=application_id,
        action_type="status_changed",
        from_status=application.status,
        to_status=target,
        performed_by=(user.email or user.user_id) if user else None,
        meta_json={"note": note} if note else None,
    )
    logger.info(
        "application_status_changed",
        extra={"application_id": application_id, "from_status": application.status, "to_status": target},
    )
    return StatusTransitionResult(
        application_id=application_id,
        applicant_id=application.applicant_id,
        from_status=application.status,
        to_status=target,
        changed=True,
    )
