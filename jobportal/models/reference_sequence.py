from sqlalchemy import Integer
from sqlalchemy.orm import Mapped, mapped_column

from jobportal.db.base import Base


class ReferenceSequence(Base):
    __tablename__ = "jp_reference_sequence"

    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False)
