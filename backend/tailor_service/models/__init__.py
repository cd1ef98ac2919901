"""Database models for the resume tailoring service."""

from .base import Base
from .resume import TailoredResume

__all__ = ["Base", "TailoredResume"]
