from __future__ import annotations

from datetime import datetime, timedelta
import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobportal.models.operation_retry import OperationRetry
from jobportal.services.events import log_event
from jobportal.services.storage import BlobStorage

logger = logging.getLogger("jp.cleanup")

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_FAILED = "failed"
STATUS_SUCCEEDED = "succeeded"
STATUS_DEAD = "dead"

DEFAULT_MAX_ATTEMPTS = 5
BASE_RETRY_SECONDS = 5 * 60
MAX_RETRY_SECONDS = 6 * 60 * 60

# Removes an orphaned or superseded blob.
OP_STORAGE_REMOVE = "storage_remove"


def retry_delay_seconds(attempt_number: int) -> int:
    # attempt_number starts at 1 (first failed execution).
    attempt = max(int(attempt_number), 1)
    delay = BASE_RETRY_SECONDS * (2 ** (attempt - 1))
    return min(delay, MAX_RETRY_SECONDS)


def _json_dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _json_loads(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Operation payload must be an object")
    return data


async def enqueue_operation(
    session: AsyncSession,
    *,
    operation_type: str,
    payload: dict[str, Any],
    applicant_id: int | None = None,
    reason: str | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    idempotency_key: str | None = None,
) -> OperationRetry:
    if not operation_type or not operation_type.strip():
        raise ValueError("operation_type is required")

    operation_type = operation_type.strip().lower()
    if max_attempts < 1:
        max_attempts = DEFAULT_MAX_ATTEMPTS

    if idempotency_key:
        existing = (
            await session.execute(select(OperationRetry).where(OperationRetry.idempotency_key == idempotency_key))
        ).scalars().first()
        if existing:
            return existing

    now = datetime.utcnow()
    operation = OperationRetry(
        operation_type=operation_type,
        status=STATUS_PENDING,
        applicant_id=applicant_id,
        reason=reason,
        payload_json=_json_dumps(payload),
        idempotency_key=idempotency_key,
        attempts=0,
        max_attempts=max_attempts,
        next_retry_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(operation)
    await session.flush()
    logger.info(
        "operation_enqueued",
        extra={"operation_retry_id": operation.operation_retry_id, "operation_type": operation_type, "reason": reason},
    )
    return operation


async def _execute_storage_remove(storage: BlobStorage, payload: dict[str, Any]) -> None:
    path = str(payload.get("path") or "").strip()
    if not path:
        raise ValueError("storage_remove: missing path")
    await storage.remove([path])


async def execute_operation(operation: OperationRetry, *, storage: BlobStorage) -> None:
    payload = _json_loads(operation.payload_json)
    op_type = (operation.operation_type or "").strip().lower()

    if op_type == OP_STORAGE_REMOVE:
        await _execute_storage_remove(storage, payload)
        return

    raise ValueError(f"Unsupported operation_type: {op_type}")


async def process_due_operations(session: AsyncSession, *, storage: BlobStorage, limit: int = 50) -> dict[str, int]:
    now = datetime.utcnow()
    rows = (
        await session.execute(
            select(OperationRetry)
            .where(
                OperationRetry.status.in_([STATUS_PENDING, STATUS_FAILED]),
                OperationRetry.next_retry_at <= now,
                OperationRetry.attempts < OperationRetry.max_attempts,
            )
            .order_by(OperationRetry.next_retry_at.asc(), OperationRetry.operation_retry_id.asc())
            .limit(limit)
        )
    ).scalars().all()

    summary = {"picked": 0, "succeeded": 0, "failed": 0, "dead": 0}
    summary["picked"] = len(rows)

    for operation in rows:
        operation.status = STATUS_PROCESSING
        operation.updated_at = datetime.utcnow()
        await session.flush()

        try:
            await execute_operation(operation, storage=storage)
            operation.attempts += 1
            operation.status = STATUS_SUCCEEDED
            operation.last_error = None
            operation.completed_at = datetime.utcnow()
            operation.updated_at = operation.completed_at
            summary["succeeded"] += 1
        except Exception as exc:  # noqa: BLE001
            operation.attempts += 1
            operation.last_error = str(exc)[:2000]
            operation.updated_at = datetime.utcnow()
            if operation.attempts >= operation.max_attempts:
                operation.status = STATUS_DEAD
                operation.completed_at = operation.updated_at
                summary["dead"] += 1
            else:
                operation.status = STATUS_FAILED
                delay_seconds = retry_delay_seconds(operation.attempts)
                operation.next_retry_at = operation.updated_at + timedelta(seconds=delay_seconds)
                summary["failed"] += 1

            if operation.applicant_id is not None:
                await log_event(
                    session,
                    applicant_id=operation.applicant_id,
                    action_type="cleanup_failed",
                    meta_json={
                        "operation_retry_id": operation.operation_retry_id,
                        "operation_type": operation.operation_type,
                        "reason": operation.reason,
                        "attempts": operation.attempts,
                        "max_attempts": operation.max_attempts,
                        "status": operation.status,
                        "error": operation.last_error,
                        "next_retry_at": operation.next_retry_at.isoformat() if operation.next_retry_at else None,
                    },
                )

        await session.commit()

    if summary["picked"]:
        logger.info("operation_queue_processed", extra=summary)
    return summary
