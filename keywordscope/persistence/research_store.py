"""Document store contract for research records."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

ResearchDocument = dict[str, Any]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@runtime_checkable
class ResearchStore(Protocol):
    """Keyed document store; ``put`` merges fields into the stored document."""

    async def get(self, research_id: str) -> ResearchDocument | None:
        """Return the stored document or None."""

    async def exists(self, research_id: str) -> bool:
        """Whether a document is stored under the id."""

    async def put(self, research_id: str, fields: ResearchDocument) -> None:
        """Insert or merge the given fields."""

    async def list_recent(self, limit: int) -> list[ResearchDocument]:
        """Return up to ``limit`` documents, most recently updated first."""

    async def delete(self, research_id: str) -> bool:
        """Delete a document; False when nothing was stored."""


class InMemoryResearchStore:
    """Process-local store used by tests and the ``memory`` backend."""

    def __init__(self) -> None:
        self._documents: dict[str, ResearchDocument] = {}
        self._lock = asyncio.Lock()

    async def get(self, research_id: str) -> ResearchDocument | None:
        document = self._documents.get(research_id)
        return copy.deepcopy(document) if document is not None else None

    async def exists(self, research_id: str) -> bool:
        return research_id in self._documents

    async def put(self, research_id: str, fields: ResearchDocument) -> None:
        async with self._lock:
            document = self._documents.setdefault(research_id, {"id": research_id})
            document.update(copy.deepcopy(fields))

    async def list_recent(self, limit: int) -> list[ResearchDocument]:
        ordered = sorted(
            self._documents.values(),
            key=lambda doc: doc.get("updated_at") or _EPOCH,
            reverse=True,
        )
        return [copy.deepcopy(doc) for doc in ordered[:limit]]

    async def delete(self, research_id: str) -> bool:
        async with self._lock:
            return self._documents.pop(research_id, None) is not None
