from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from jobportal.db.base import Base

GENERAL_JOB_KEY = "general"


class Application(Base):
    __tablename__ = "jp_application"
    __table_args__ = (UniqueConstraint("applicant_id", "job_key", name="uq_jp_application_applicant_job"),)

    application_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(Integer, index=True)
    job_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    # job_id, or "general" for jobless applications, so the pair stays unique in SQL.
    job_key: Mapped[str] = mapped_column(String(36), nullable=False)

    current_step: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(30), default="Pending", index=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


def job_key_for(job_id: str | None) -> str:
    return job_id or GENERAL_JOB_KEY
