import os

os.environ.setdefault("JP_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JP_AUTH_MODE", "dev")
os.environ.setdefault("JP_LINK_SIGNING_KEY", "test-signing-key")
os.environ.setdefault("JP_ADMIN_API_KEY", "")

from typing import Iterable

import anyio
import pytest

from jobportal.db.repositories import SqlIntakeStore
from jobportal.db.session import build_engine, build_session_factory, create_schema
from jobportal.models import Job
from jobportal.services.read_guard import ReadPolicy
from jobportal.services.storage import sign_path

FAST_READS = ReadPolicy(timeout_seconds=0.5, retries=2, backoff_seconds=0.0)

JOB_ID = "3f2b8c1e-4d5a-4b6c-8e7f-9a0b1c2d3e4f"


class FakeBlobStorage:
    """In-memory blob store. Paths listed in fail_uploads/fail_removes raise on use."""

    def __init__(self) -> None:
        self.blobs: dict[str, tuple[bytes, str]] = {}
        self.fail_uploads: set[str] = set()
        self.fail_removes = False
        self.hang_uploads = False

    async def upload(self, path: str, data: bytes, *, content_type: str) -> str:
        if self.hang_uploads:
            await anyio.sleep(60)
        if any(path.endswith(name) for name in self.fail_uploads):
            raise RuntimeError("storage unavailable")
        self.blobs[path] = (data, content_type)
        return path

    async def remove(self, paths: Iterable[str]) -> None:
        if self.fail_removes:
            raise RuntimeError("remove failed")
        for path in paths:
            self.blobs.pop(path, None)

    async def download(self, path: str) -> tuple[bytes, str]:
        if path not in self.blobs:
            raise FileNotFoundError(path)
        return self.blobs[path]

    def signed_url(self, path: str, ttl_seconds: int) -> str:
        return sign_path(path, ttl_seconds)


@pytest.fixture()
async def async_engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(async_engine):
    return build_session_factory(async_engine)


@pytest.fixture()
def store(session_factory):
    return SqlIntakeStore(session_factory, read_policy=FAST_READS)


@pytest.fixture()
def storage():
    return FakeBlobStorage()


@pytest.fixture()
async def job(session_factory):
    async with session_factory() as session:
        row = Job(
            job_id=JOB_ID,
            title="Security Guard",
            location="Quezon City",
            is_active=True,
            required_documents=[
                {"document_type": "NBI CLEARANCE", "percentage": 60},
                {"document_type": "BIO-DATA", "percentage": 40},
            ],
            required_credentials=["nbi_clearance"],
        )
        session.add(row)
        await session.commit()
        return row
