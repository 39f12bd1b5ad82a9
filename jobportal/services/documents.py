from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
import logging
import secrets
from typing import Callable, Iterable, Union

import anyio

from jobportal.core.config import settings
from jobportal.core.errors import NotFoundError
from jobportal.core.uploads import SlotPolicy, normalize_document_type, slot_policy, validate_file
from jobportal.db.repositories import IntakeStore
from jobportal.models.document import Document
from jobportal.services.storage import BlobStorage

logger = logging.getLogger("jp.documents")

TEMP_ID_PREFIX = "temp_"
# Upper bound when clearing accumulated duplicates out of a single slot.
MAX_SLOT_DUPLICATES = 20


@dataclass(frozen=True)
class DocumentOwner:
    applicant_id: int
    # None keeps the document applicant-scoped (reusable across applications).
    application_id: int | None = None
    identity_key: str | None = None

    @property
    def storage_key(self) -> str:
        return self.identity_key or f"applicant-{self.applicant_id}"

    def scoped_for(self, policy: SlotPolicy) -> "DocumentOwner":
        if policy.applicant_scoped and self.application_id is not None:
            return replace(self, application_id=None)
        return self


@dataclass(frozen=True)
class StagedDocument:
    local_id: str
    document_type: str
    filename: str
    safe_name: str
    content_type: str
    data: bytes = field(repr=False)
    staged_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class CommittedDocument:
    document_id: int
    applicant_id: int
    application_id: int | None
    document_type: str
    file_path: str
    filename: str
    content_type: str | None
    size: int
    created_at: datetime | None

    @classmethod
    def from_record(cls, record: Document) -> "CommittedDocument":
        return cls(
            document_id=record.document_id,
            applicant_id=record.applicant_id,
            application_id=record.application_id,
            document_type=record.file_type,
            file_path=record.file_path,
            filename=record.file_name,
            content_type=record.content_type,
            size=record.file_size or 0,
            created_at=record.created_at,
        )


@dataclass(frozen=True)
class OrphanedDocument:
    """Blob written but its record insert failed. Queued for best-effort removal."""

    staged: StagedDocument
    file_path: str
    error: str


DocumentState = Union[StagedDocument, CommittedDocument, OrphanedDocument]


@dataclass(frozen=True)
class CommitOutcome:
    staged: StagedDocument
    result: CommittedDocument | OrphanedDocument | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return isinstance(self.result, CommittedDocument)

    @property
    def status(self) -> str:
        if isinstance(self.result, CommittedDocument):
            return "committed"
        if isinstance(self.result, OrphanedDocument):
            return "orphaned"
        return "failed"


class DocumentStager:
    """
    Session-local buffer of selected files. Nothing here touches the network; abandoning
    the stager (navigating away) simply drops the files.
    """

    def __init__(self) -> None:
        self._staged: dict[str, StagedDocument] = {}

    def stage(self, document_type: str | None, *, filename: str | None, content_type: str | None, data: bytes) -> StagedDocument:
        policy = slot_policy(document_type)
        safe_name, normalized_type = validate_file(
            policy,
            filename=filename,
            content_type=content_type,
            size=len(data or b""),
        )
        if policy.single:
            for local_id in [k for k, v in self._staged.items() if v.document_type == policy.document_type]:
                del self._staged[local_id]

        staged = StagedDocument(
            local_id=f"{TEMP_ID_PREFIX}{secrets.token_hex(6)}",
            document_type=policy.document_type,
            filename=(filename or "").strip(),
            safe_name=safe_name,
            content_type=normalized_type,
            data=data,
        )
        self._staged[staged.local_id] = staged
        return staged

    def unstage(self, local_id: str) -> bool:
        return self._staged.pop(local_id, None) is not None

    def clear(self) -> None:
        self._staged.clear()

    @property
    def staged(self) -> list[StagedDocument]:
        return list(self._staged.values())

    def __len__(self) -> int:
        return len(self._staged)


class DocumentUploadManager:
    def __init__(
        self,
        store: IntakeStore,
        storage: BlobStorage,
        *,
        upload_timeout_seconds: float | None = None,
        signed_url_ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._store = store
        self._storage = storage
        self._upload_timeout = upload_timeout_seconds or settings.upload_timeout_seconds
        self._signed_url_ttl = signed_url_ttl_seconds or settings.signed_url_ttl_seconds
        self._clock = clock

    def blob_path(self, owner: DocumentOwner, staged: StagedDocument) -> str:
        policy = slot_policy(staged.document_type)
        stamp = int(self._clock().timestamp() * 1000)
        return f"{policy.bucket}/{owner.storage_key}/{stamp}{secrets.token_hex(4)}_{staged.safe_name}"

    async def commit(self, owner: DocumentOwner, staged: Iterable[StagedDocument]) -> list[CommitOutcome]:
        """Uploads each staged file and writes its record. One outcome per file; failures stay per-file."""
        outcomes = []
        for item in staged:
            outcomes.append(await self._commit_one(owner, item))
        return outcomes

    async def _commit_one(self, owner: DocumentOwner, staged: StagedDocument) -> CommitOutcome:
        policy = slot_policy(staged.document_type)
        owner = owner.scoped_for(policy)
        path = self.blob_path(owner, staged)
        try:
            with anyio.fail_after(self._upload_timeout):
                handle = await self._storage.upload(path, staged.data, content_type=staged.content_type)
        except TimeoutError:
            logger.warning(
                "document_upload_timeout",
                extra={"applicant_id": owner.applicant_id, "document_type": staged.document_type},
            )
            return CommitOutcome(staged=staged, error=f"Upload timeout after {self._upload_timeout:g} seconds")
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "document_upload_failed",
                extra={"applicant_id": owner.applicant_id, "document_type": staged.document_type, "error": str(exc)},
            )
            return CommitOutcome(staged=staged, error=f"Failed to upload {staged.filename}: {exc}")

        if policy.single:
            await self._clear_slot(owner, policy.document_type)

        try:
            record = await self._store.insert_document(
                {
                    "applicant_id": owner.applicant_id,
                    "application_id": owner.application_id,
                    "file_path": handle,
                    "file_name": staged.filename or staged.safe_name,
                    "file_type": staged.document_type,
                    "file_size": staged.size,
                    "content_type": staged.content_type,
                }
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "document_record_insert_failed",
                extra={"applicant_id": owner.applicant_id, "file_path": handle, "error": str(exc)},
            )
            await self._queue_cleanup([handle], applicant_id=owner.applicant_id, reason="orphaned_upload")
            orphan = OrphanedDocument(staged=staged, file_path=handle, error=str(exc))
            return CommitOutcome(staged=staged, result=orphan, error="The file was uploaded but could not be saved.")

        logger.info(
            "document_committed",
            extra={
                "applicant_id": owner.applicant_id,
                "application_id": owner.application_id,
                "document_id": record.document_id,
                "document_type": record.file_type,
            },
        )
        return CommitOutcome(staged=staged, result=CommittedDocument.from_record(record))

    async def _clear_slot(self, owner: DocumentOwner, document_type: str) -> None:
        for _ in range(MAX_SLOT_DUPLICATES):
            existing = await self._store.find_document(owner.applicant_id, owner.application_id, document_type)
            if existing is None:
                return
            await self._store.delete_document(existing.document_id)
            await self._remove_blob(existing.file_path, applicant_id=owner.applicant_id, reason="replaced")

    async def _remove_blob(self, path: str, *, applicant_id: int | None, reason: str) -> None:
        try:
            await self._storage.remove([path])
        except Exception as exc:  # noqa: BLE001
            logger.warning("document_blob_remove_failed", extra={"file_path": path, "error": str(exc)})
            await self._queue_cleanup([path], applicant_id=applicant_id, reason=reason)

    async def _queue_cleanup(self, paths: list[str], *, applicant_id: int | None, reason: str) -> None:
        try:
            await self._store.enqueue_storage_cleanup(paths, applicant_id=applicant_id, reason=reason)
        except Exception:  # noqa: BLE001
            # Orphans are bounded by storage lifecycle policies.
            logger.exception("document_cleanup_enqueue_failed", extra={"paths": paths})

    async def remove(self, document: DocumentState) -> bool:
        """Deletes blob and record. Removing a staged (uncommitted) document is a local no-op."""
        if isinstance(document, StagedDocument):
            return False
        if isinstance(document, OrphanedDocument):
            await self._remove_blob(document.file_path, applicant_id=None, reason="orphaned_upload")
            return True
        deleted = await self._store.delete_document(document.document_id)
        await self._remove_blob(document.file_path, applicant_id=document.applicant_id, reason="removed")
        logger.info("document_removed", extra={"document_id": document.document_id, "applicant_id": document.applicant_id})
        return deleted

    async def get_owned(self, document_id: int, *, applicant_id: int | None) -> CommittedDocument:
        record = await self._store.get_document(document_id)
        if record is None or (applicant_id is not None and record.applicant_id != applicant_id):
            raise NotFoundError("Document not found")
        return CommittedDocument.from_record(record)

    async def remove_by_id(self, document_id: int, *, applicant_id: int | None) -> bool:
        return await self.remove(await self.get_owned(document_id, applicant_id=applicant_id))

    async def signed_url(self, document_id: int, *, applicant_id: int | None = None, ttl_seconds: int | None = None) -> str:
        document = await self.get_owned(document_id, applicant_id=applicant_id)
        return self._storage.signed_url(document.file_path, ttl_seconds or self._signed_url_ttl)

    async def list_documents(self, applicant_id: int, *, document_type: str | None = None) -> list[CommittedDocument]:
        records = await self._store.list_documents([applicant_id])
        wanted = normalize_document_type(document_type) if document_type else None
        return [
            CommittedDocument.from_record(r)
            for r in records
            if wanted is None or r.file_type == wanted
        ]
