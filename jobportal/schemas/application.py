from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from jobportal.schemas.applicant import ApplicantDetails
from jobportal.schemas.document import DocumentOutcomeOut


class StepSubmission(ApplicantDetails):
    """Form data for one wizard step, plus the job being applied for (absent for general applications)."""

    job_id: Optional[str] = None


class FinalizeIn(BaseModel):
    job_id: Optional[str] = None
    email: Optional[str] = None


class StepOut(BaseModel):
    application_id: int
    applicant_id: int
    job_id: Optional[str] = None
    current_step: int
    next_step: Optional[int] = None
    step_count: int
    status: str
    documents: List[DocumentOutcomeOut] = []


class FinalizeOut(BaseModel):
    reference_code: str
    persisted: bool
    application_id: Optional[int] = None


class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    is_active: bool = True
    required_documents: List[dict] = []
    required_credentials: List[str] = []


class ApplicationReviewOut(BaseModel):
    application_id: int
    applicant_id: int
    job_id: Optional[str] = None
    job_title: Optional[str] = None
    applicant_name: Optional[str] = None
    email: Optional[str] = None
    reference_code: Optional[str] = None
    status: str
    current_step: int
    submitted_at: Optional[datetime] = None
    compliance_score: int


class StatusUpdateIn(BaseModel):
    status: str
    note: Optional[str] = None


class StatusUpdateOut(BaseModel):
    application_id: int
    from_status: Optional[str] = None
    to_status: str
    changed: bool
