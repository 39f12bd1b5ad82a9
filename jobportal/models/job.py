from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from jobportal.db.base import Base


class Job(Base):
    """
    Job postings are managed by the admin console; the intake pipeline only reads them.
    required_documents: [{"document_type": "NBI CLEARANCE", "percentage": 60}, ...]
    required_credentials: ["nbi_clearance", ...]
    """

    __tablename__ = "jp_job"

    job_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(150), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    required_documents: Mapped[list[dict]] = mapped_column(JSON, default=list)
    required_credentials: Mapped[list[str]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
