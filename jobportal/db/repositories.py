from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
import logging
from typing import Any, Iterable, Protocol, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobportal.core.errors import ConflictError, TransientStoreError
from jobportal.models.applicant import Applicant
from jobportal.models.application import Application, job_key_for
from jobportal.models.document import Document
from jobportal.models.job import Job
from jobportal.models.reference_sequence import ReferenceSequence
from jobportal.services.events import log_event
from jobportal.services.operation_queue import OP_STORAGE_REMOVE, enqueue_operation
from jobportal.services.read_guard import ReadPolicy, guarded_read

logger = logging.getLogger("jp.store")

ReviewRow = tuple[Application, Applicant | None, Job | None]


class IntakeStore(Protocol):
    """Record CRUD the pipeline needs from the relational store. Per-row atomic only."""

    async def find_applicant_id_by_user(self, user_id: str) -> int | None: ...

    async def find_applicant_id_by_email(self, email: str) -> int | None: ...

    async def get_applicant(self, applicant_id: int) -> Applicant | None: ...

    async def insert_applicant(self, values: dict[str, Any]) -> int: ...

    async def update_applicant(self, applicant_id: int, values: dict[str, Any]) -> bool: ...

    async def next_reference_number(self, year: int) -> int: ...

    async def get_job(self, job_id: str) -> Job | None: ...

    async def list_jobs(self, *, active_only: bool = True) -> Sequence[Job]: ...

    async def find_application(self, applicant_id: int, job_id: str | None) -> Application | None: ...

    async def get_application(self, application_id: int) -> Application | None: ...

    async def insert_application(self, values: dict[str, Any]) -> Application: ...

    async def update_application(self, application_id: int, values: dict[str, Any]) -> bool: ...

    async def find_document(
        self, applicant_id: int, application_id: int | None, file_type: str
    ) -> Document | None: ...

    async def get_document(self, document_id: int) -> Document | None: ...

    async def list_documents(self, applicant_ids: Iterable[int]) -> Sequence[Document]: ...

    async def insert_document(self, values: dict[str, Any]) -> Document: ...

    async def delete_document(self, document_id: int) -> bool: ...

    async def list_applications_for_review(
        self, *, status: str | None = None, job_id: str | None = None
    ) -> Sequence[ReviewRow]: ...

    async def add_event(self, **kwargs: Any) -> None: ...

    async def enqueue_storage_cleanup(
        self, paths: Iterable[str], *, applicant_id: int | None, reason: str
    ) -> None: ...


@asynccontextmanager
async def _translate_errors(label: str):
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(f"{label}: duplicate key", constraint=str(exc.orig)[:200]) from exc
    except OperationalError as exc:
        raise TransientStoreError() from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TransientStoreError() from exc
        raise


class SqlIntakeStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, read_policy: ReadPolicy | None = None) -> None:
        self._session_factory = session_factory
        self._engine = session_factory.kw["bind"]
        self._read_policy = read_policy

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def _scalar_orm(self, stmt, label: str):
        async with _translate_errors(label), self._session_factory() as session:
            return (await session.execute(stmt)).scalars().first()

    async def _scalar_direct(self, stmt, label: str):
        # Bypasses the ORM session: one pooled connection, Core statement.
        async with _translate_errors(label), self._engine.connect() as conn:
            return (await conn.execute(stmt)).scalar()

    async def _read(self, stmt, label: str, *, fallback_stmt=None):
        fallback = None
        if fallback_stmt is not None:
            async def fallback():
                return await self._scalar_direct(fallback_stmt, label)

        async def primary():
            return await self._scalar_orm(stmt, label)

        return await guarded_read(primary, fallback=fallback, policy=self._read_policy, label=label)

    # Applicants

    async def find_applicant_id_by_user(self, user_id: str) -> int | None:
        table = Applicant.__table__
        return await self._read(
            select(Applicant.applicant_id).where(Applicant.user_id == user_id),
            "applicant_by_user",
            fallback_stmt=select(table.c.applicant_id).where(table.c.user_id == user_id),
        )

    async def find_applicant_id_by_email(self, email: str) -> int | None:
        table = Applicant.__table__
        return await self._read(
            select(Applicant.applicant_id).where(Applicant.email == email),
            "applicant_by_email",
            fallback_stmt=select(table.c.applicant_id).where(table.c.email == email),
        )

    async def get_applicant(self, applicant_id: int) -> Applicant | None:
        return await self._read(select(Applicant).where(Applicant.applicant_id == applicant_id), "applicant_get")

    async def insert_applicant(self, values: dict[str, Any]) -> int:
        async with _translate_errors("applicant_insert"), self._session_factory() as session:
            applicant = Applicant(**values)
            session.add(applicant)
            await session.commit()
            return applicant.applicant_id

    async def update_applicant(self, applicant_id: int, values: dict[str, Any]) -> bool:
        if not values:
            return True
        async with _translate_errors("applicant_update"), self._session_factory() as session:
            result = await session.execute(
                update(Applicant)
                .where(Applicant.applicant_id == applicant_id)
                .values(**values, updated_at=datetime.utcnow())
            )
            await session.commit()
            return bool(result.rowcount)

    async def next_reference_number(self, year: int) -> int:
        for _ in range(2):
            try:
                async with _translate_errors("reference_sequence"), self._session_factory() as session:
                    sequence = (
                        await session.execute(
                            select(ReferenceSequence).where(ReferenceSequence.year == year).with_for_update()
                        )
                    ).scalars().one_or_none()
                    if not sequence:
                        sequence = ReferenceSequence(year=year, last_number=1)
                        session.add(sequence)
                        number = 1
                    else:
                        sequence.last_number += 1
                        number = sequence.last_number
                    await session.commit()
                    return number
            except ConflictError:
                # Another session created this year's row first.
                continue
        raise ConflictError("reference_sequence: could not allocate a number")

    # Jobs

    async def get_job(self, job_id: str) -> Job | None:
        return await self._read(select(Job).where(Job.job_id == job_id), "job_get")

    async def list_jobs(self, *, active_only: bool = True) -> Sequence[Job]:
        stmt = select(Job).order_by(Job.created_at.desc(), Job.title.asc())
        if active_only:
            stmt = stmt.where(Job.is_active.is_(True))

        async def primary():
            async with _translate_errors("job_list"), self._session_factory() as session:
                return (await session.execute(stmt)).scalars().all()

        return await guarded_read(primary, policy=self._read_policy, label="job_list")

    # Applications

    async def find_application(self, applicant_id: int, job_id: str | None) -> Application | None:
        return await self._read(
            select(Application).where(
                Application.applicant_id == applicant_id,
                Application.job_key == job_key_for(job_id),
            ),
            "application_find",
        )

    async def get_application(self, application_id: int) -> Application | None:
        return await self._read(
            select(Application).where(Application.application_id == application_id),
            "application_get",
        )

    async def insert_application(self, values: dict[str, Any]) -> Application:
        async with _translate_errors("application_insert"), self._session_factory() as session:
            application = Application(**values)
            if not application.job_key:
                application.job_key = job_key_for(application.job_id)
            session.add(application)
            await session.commit()
            return application

    async def update_application(self, application_id: int, values: dict[str, Any]) -> bool:
        if not values:
            return True
        async with _translate_errors("application_update"), self._session_factory() as session:
            result = await session.execute(
                update(Application)
                .where(Application.application_id == application_id)
                .values(**values, updated_at=datetime.utcnow())
            )
            await session.commit()
            return bool(result.rowcount)

    async def list_applications_for_review(
        self, *, status: str | None = None, job_id: str | None = None
    ) -> Sequence[ReviewRow]:
        stmt = (
            select(Application, Applicant, Job)
            .outerjoin(Applicant, Applicant.applicant_id == Application.applicant_id)
            .outerjoin(Job, Job.job_id == Application.job_id)
            .order_by(Application.created_at.desc(), Application.application_id.desc())
        )
        if status:
            stmt = stmt.where(Application.status == status)
        if job_id:
            stmt = stmt.where(Application.job_id == job_id)

        async def primary():
            async with _translate_errors("application_review_list"), self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
                return [(row[0], row[1], row[2]) for row in rows]

        return await guarded_read(primary, policy=self._read_policy, label="application_review_list")

    # Documents

    async def find_document(self, applicant_id: int, application_id: int | None, file_type: str) -> Document | None:
        scope = (
            Document.application_id.is_(None) if application_id is None else Document.application_id == application_id
        )
        return await self._read(
            select(Document)
            .where(Document.applicant_id == applicant_id, Document.file_type == file_type, scope)
            .order_by(Document.created_at.desc(), Document.document_id.desc()),
            "document_find",
        )

    async def get_document(self, document_id: int) -> Document | None:
        return await self._read(select(Document).where(Document.document_id == document_id), "document_get")

    async def list_documents(self, applicant_ids: Iterable[int]) -> Sequence[Document]:
        ids = sorted(set(applicant_ids))
        if not ids:
            return []
        stmt = (
            select(Document)
            .where(Document.applicant_id.in_(ids))
            .order_by(Document.created_at.desc(), Document.document_id.desc())
        )

        async def primary():
            async with _translate_errors("document_list"), self._session_factory() as session:
                return (await session.execute(stmt)).scalars().all()

        return await guarded_read(primary, policy=self._read_policy, label="document_list")

    async def insert_document(self, values: dict[str, Any]) -> Document:
        async with _translate_errors("document_insert"), self._session_factory() as session:
            document = Document(**values)
            session.add(document)
            await session.commit()
            return document

    async def delete_document(self, document_id: int) -> bool:
        async with _translate_errors("document_delete"), self._session_factory() as session:
            result = await session.execute(delete(Document).where(Document.document_id == document_id))
            await session.commit()
            return bool(result.rowcount)

    # Audit + cleanup

    async def add_event(self, **kwargs: Any) -> None:
        async with _translate_errors("event_insert"), self._session_factory() as session:
            await log_event(session, **kwargs)
            await session.commit()

    async def enqueue_storage_cleanup(self, paths: Iterable[str], *, applicant_id: int | None, reason: str) -> None:
        async with _translate_errors("cleanup_enqueue"), self._session_factory() as session:
            for path in paths:
                await enqueue_operation(
                    session,
                    operation_type=OP_STORAGE_REMOVE,
                    payload={"path": path},
                    applicant_id=applicant_id,
                    reason=reason,
                    idempotency_key=f"{OP_STORAGE_REMOVE}:{path}",
                )
            await session.commit()
