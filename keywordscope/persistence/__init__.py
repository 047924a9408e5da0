"""Persistence layer for research records."""

from keywordscope.persistence.research_store import (
    InMemoryResearchStore,
    ResearchDocument,
    ResearchStore,
)

__all__ = [
    "InMemoryResearchStore",
    "ResearchDocument",
    "ResearchStore",
]
