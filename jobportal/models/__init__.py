from jobportal.db.base import Base
from jobportal.models.applicant import Applicant
from jobportal.models.application import Application
from jobportal.models.document import Document
from jobportal.models.event import ApplicationEvent
from jobportal.models.job import Job
from jobportal.models.operation_retry import OperationRetry
from jobportal.models.reference_sequence import ReferenceSequence

__all__ = [
    "Applicant",
    "Application",
    "ApplicationEvent",
    "Base",
    "Document",
    "Job",
    "OperationRetry",
    "ReferenceSequence",
]
