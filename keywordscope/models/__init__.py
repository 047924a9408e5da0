"""SQLAlchemy database models."""

from keywordscope.models.base import Base
from keywordscope.models.research import ResearchRecordRow

__all__ = [
    "Base",
    "ResearchRecordRow",
]
