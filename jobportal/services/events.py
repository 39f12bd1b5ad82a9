from __future__ import annotations

import json
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from jobportal.models.event import ApplicationEvent
from jobportal.services.event_bus import ApplicationNotification, notification_bus


async def log_event(
    session: AsyncSession,
    *,
    applicant_id: int,
    action_type: str,
    application_id: int | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    performed_by: str | None = None,
    meta_json: Dict[str, Any] | None = None,
) -> ApplicationEvent:
    meta_text: Optional[str] = None
    if meta_json is not None:
        meta_text = json.dumps(meta_json, ensure_ascii=False, separators=(",", ":"), default=str)

    event = ApplicationEvent(
        applicant_id=applicant_id,
        application_id=application_id,
        action_type=action_type,
        from_status=from_status,
        to_status=to_status,
        performed_by=performed_by,
        meta_json=meta_text,
    )
    session.add(event)
    await session.flush()
    await notification_bus.publish(ApplicationNotification.from_event(event))
    return event
