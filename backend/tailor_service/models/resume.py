from sqlalchemy import String, Text, Integer, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from tailor_service.models.base import Base, UUIDMixin, CreatedAtMixin


class TailoredResume(Base, UUIDMixin, CreatedAtMixin):
    """
    One tailoring result. Rows are only ever inserted.

    Versions of the same resume form a chain: ``parent_resume_id`` points at
    the record this one was derived from and ``root_resume_id`` at the first
    record of the chain (a root points at itself).
    """
    __tablename__ = "tailored_resumes"

    original_content: Mapped[str] = mapped_column(Text, nullable=False)
    tailored_content: Mapped[str] = mapped_column(Text, nullable=False)
    job_description: Mapped[str] = mapped_column(Text, nullable=False)

    # {before, after, beforeMetrics, afterMetrics, keywordGap}
    match_score: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    improvement_metrics: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    job_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    parent_resume_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    root_resume_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    version_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("ix_tailored_resumes_root_version", "root_resume_id", "version_number"),
    )

    def __repr__(self):
        return f"<TailoredResume(id={self.id}, version={self.version_number})>"
