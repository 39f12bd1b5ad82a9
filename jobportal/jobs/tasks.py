from __future__ import annotations

from jobportal.db.session import SessionLocal
from jobportal.services.operation_queue import process_due_operations
from jobportal.services.storage import BlobStorage, build_storage


async def run_storage_cleanup(storage: BlobStorage | None = None) -> dict[str, int]:
    async with SessionLocal() as session:
        return await process_due_operations(session, storage=storage or build_storage(), limit=50)
