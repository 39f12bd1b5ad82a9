from functools import lru_cache

from fastapi import Depends

from jobportal.core.auth import get_current_identity
from jobportal.db.repositories import IntakeStore, SqlIntakeStore
from jobportal.db.session import SessionLocal
from jobportal.schemas.identity import Identity
from jobportal.services.applicant_resolver import ApplicantResolver
from jobportal.services.application_steps import ApplicationStepCoordinator
from jobportal.services.documents import DocumentUploadManager
from jobportal.services.finalization import FinalizationService
from jobportal.services.reference_codes import ReferenceCodeGenerator
from jobportal.services.storage import BlobStorage, build_storage


@lru_cache
def _default_store() -> SqlIntakeStore:
    return SqlIntakeStore(SessionLocal)


@lru_cache
def _default_storage() -> BlobStorage:
    return build_storage()


def get_store() -> IntakeStore:
    return _default_store()


def get_storage() -> BlobStorage:
    return _default_storage()


async def get_identity(identity: Identity = Depends(get_current_identity)) -> Identity:
    return identity


def get_reference_codes(store: IntakeStore = Depends(get_store)) -> ReferenceCodeGenerator:
    return ReferenceCodeGenerator(store)


def get_resolver(
    store: IntakeStore = Depends(get_store),
    codes: ReferenceCodeGenerator = Depends(get_reference_codes),
) -> ApplicantResolver:
    return ApplicantResolver(store, codes)


def get_upload_manager(
    store: IntakeStore = Depends(get_store),
    storage: BlobStorage = Depends(get_storage),
) -> DocumentUploadManager:
    return DocumentUploadManager(store, storage)


def get_coordinator(
    store: IntakeStore = Depends(get_store),
    uploads: DocumentUploadManager = Depends(get_upload_manager),
) -> ApplicationStepCoordinator:
    return ApplicationStepCoordinator(store, uploads)


def get_finalization(
    store: IntakeStore = Depends(get_store),
    codes: ReferenceCodeGenerator = Depends(get_reference_codes),
) -> FinalizationService:
    return FinalizationService(store, codes)
