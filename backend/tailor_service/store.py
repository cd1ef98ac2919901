"""
Durable store for tailoring results.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Callable

from sqlalchemy import select, or_
from sqlalchemy.orm import Session

from tailor_service.models.resume import TailoredResume

logger = logging.getLogger(__name__)

UNKNOWN_COMPANY = "Unknown Company"


@dataclass
class TailoredResumeDraft:
    """Everything the pipeline knows about a finished run."""
    original_content: str
    tailored_content: str
    job_description: str
    match_score: Dict[str, Any] = field(default_factory=dict)
    improvement_metrics: Optional[Dict[str, Any]] = None
    job_title: Optional[str] = None
    company_name: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    parent_resume_id: Optional[str] = None


class ResumeStore:
    """Insert-only access to ``TailoredResume`` rows."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def save_tailored_resume(self, draft: TailoredResumeDraft) -> str:
        """
        Insert a result and return its id.

        When ``parent_resume_id`` names an existing record, the new row
        inherits its original content and job description, takes the next
        version number and joins the parent's chain. An unknown parent is
        ignored and the row starts a new chain.
        """
        db = self.session_factory()
        try:
            record = TailoredResume(
                original_content=draft.original_content,
                tailored_content=draft.tailored_content,
                job_description=draft.job_description,
                match_score=draft.match_score,
                improvement_metrics=draft.improvement_metrics,
                job_title=(draft.job_title or "").strip() or None,
                company_name=_clean_company(draft.company_name),
                session_id=draft.session_id,
                user_id=draft.user_id,
                version_number=1,
            )

            parent = db.get(TailoredResume, draft.parent_resume_id) if draft.parent_resume_id else None
            if parent is not None:
                record.parent_resume_id = parent.id
                record.root_resume_id = parent.root_resume_id or parent.id
                record.version_number = (parent.version_number or 1) + 1
                record.original_content = parent.original_content or draft.original_content
                record.job_description = parent.job_description or draft.job_description
            elif draft.parent_resume_id:
                logger.warning(f"Parent resume {draft.parent_resume_id} not found; starting a new chain")

            db.add(record)
            db.flush()

            if record.root_resume_id is None:
                record.root_resume_id = record.id

            db.commit()
            logger.info(f"Stored tailored resume {record.id} (version {record.version_number})")
            return record.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, resume_id: str) -> Optional[TailoredResume]:
        db = self.session_factory()
        try:
            return db.get(TailoredResume, resume_id)
        finally:
            db.close()

    def list_versions(self, resume_id: str) -> Optional[Dict[str, Any]]:
        """
        All versions in the chain containing ``resume_id``, oldest first.

        Returns:
            ``{"rootResumeId", "versions": [{id, version_number, matchScore,
            created_at}]}`` or None if the record does not exist
        """
        db = self.session_factory()
        try:
            row = db.get(TailoredResume, resume_id)
            if row is None:
                return None

            root_id = row.root_resume_id or row.id
            stmt = (
                select(TailoredResume)
                .where(or_(TailoredResume.id == root_id, TailoredResume.root_resume_id == root_id))
                .order_by(TailoredResume.version_number.asc())
            )
            versions: List[Dict[str, Any]] = []
            for version in db.execute(stmt).scalars():
                score = version.match_score or {}
                versions.append({
                    "id": version.id,
                    "version_number": version.version_number or 1,
                    "matchScore": score.get("after", score.get("before", 0)),
                    "created_at": version.created_at.isoformat() if version.created_at else None,
                })
            return {"rootResumeId": root_id, "versions": versions}
        finally:
            db.close()


def _clean_company(name: Optional[str]) -> Optional[str]:
    name = (name or "").strip()
    if not name or name == UNKNOWN_COMPANY:
        return None
    return name


_store: Optional[ResumeStore] = None


def get_resume_store() -> ResumeStore:
    global _store
    if _store is None:
        from tailor_service.database import SessionLocal
        _store = ResumeStore(SessionLocal)
    return _store
