from pydantic import BaseModel, Field
from typing import Optional, List


class TailorStreamRequest(BaseModel):
    """Body of the streaming tailor endpoint. Empty resume/JD is rejected by the handler with 400."""
    resume: str = ""
    jobDescription: str = ""
    sessionId: Optional[str] = None
    modelKey: Optional[str] = None
    userId: Optional[str] = None
    jobTitle: Optional[str] = None
    parentResumeId: Optional[str] = None


class QuotaExceededResponse(BaseModel):
    error: str = "Service temporarily busy"
    retryAfter: int
    quotaExceeded: bool = True


class ResumeVersion(BaseModel):
    id: str
    version_number: int
    matchScore: float = 0
    created_at: Optional[str] = None


class ResumeVersionsResponse(BaseModel):
    rootResumeId: str
    versions: List[ResumeVersion] = Field(default_factory=list)
