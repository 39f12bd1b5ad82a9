from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from jobportal.services.documents import CommitOutcome, CommittedDocument


class DocumentOut(BaseModel):
    document_id: int
    application_id: Optional[int] = None
    document_type: str
    file_name: str
    file_size: int
    content_type: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_committed(cls, document: CommittedDocument) -> "DocumentOut":
        return cls(
            document_id=document.document_id,
            application_id=document.application_id,
            document_type=document.document_type,
            file_name=document.filename,
            file_size=document.size,
            content_type=document.content_type,
            created_at=document.created_at,
        )


class DocumentOutcomeOut(BaseModel):
    file_name: str
    document_type: str
    status: str
    error: Optional[str] = None
    document: Optional[DocumentOut] = None

    @classmethod
    def from_outcome(cls, outcome: CommitOutcome) -> "DocumentOutcomeOut":
        document = None
        if isinstance(outcome.result, CommittedDocument):
            document = DocumentOut.from_committed(outcome.result)
        return cls(
            file_name=outcome.staged.filename,
            document_type=outcome.staged.document_type,
            status=outcome.status,
            error=outcome.error,
            document=document,
        )


class SignedUrlOut(BaseModel):
    url: str
    expires_in: int
