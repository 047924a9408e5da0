"""Research record table."""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from keywordscope.models.base import Base, JSONDocument, StringCUID

RESEARCH_FIELDS = (
    "seed_query",
    "region",
    "language",
    "candidates",
    "volumes",
    "clusters",
    "created_at",
    "updated_at",
)


class ResearchRecordRow(Base):
    """One keyword research document; each stage writes its own JSON slice."""

    __tablename__ = "keyword_research"

    id: Mapped[str] = mapped_column(StringCUID(), primary_key=True)
    seed_query: Mapped[str] = mapped_column(String(255), nullable=False)
    region: Mapped[str] = mapped_column(String(32), nullable=False)
    language: Mapped[str] = mapped_column(String(32), nullable=False)

    candidates: Mapped[list[dict[str, Any]]] = mapped_column(JSONDocument, default=list, nullable=False)
    volumes: Mapped[list[dict[str, Any]]] = mapped_column(JSONDocument, default=list, nullable=False)
    clusters: Mapped[dict[str, list[str]] | None] = mapped_column(JSONDocument, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def to_document(self) -> dict[str, Any]:
        document = {name: getattr(self, name) for name in RESEARCH_FIELDS}
        document["id"] = self.id
        return document

    def __repr__(self) -> str:
        return f"<ResearchRecordRow {self.id} {self.seed_query!r}>"
