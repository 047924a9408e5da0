"""Research record lifecycle: create, stage commits, and invalidation signals."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta, timezone

from keywordscope.core.exceptions import (
    InvariantViolationError,
    ResearchConflictError,
    ResearchNotFoundError,
)
from keywordscope.core.ids import generate_cuid
from keywordscope.persistence.research_store import ResearchDocument, ResearchStore
from keywordscope.schemas.research import (
    CandidateKeyword,
    ClusterMap,
    ResearchRecord,
    VolumeItem,
)
from keywordscope.services.cache_invalidation import (
    RESEARCH_LIST_TAG,
    InvalidationBus,
    research_tag,
)

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_candidates(
    candidates: Iterable[CandidateKeyword | str],
) -> list[CandidateKeyword]:
    """Trim, drop blanks, and dedupe by text keeping the first occurrence."""
    seen: set[str] = set()
    normalized: list[CandidateKeyword] = []
    for candidate in candidates:
        if isinstance(candidate, str):
            text, source = candidate.strip(), "manual"
        else:
            text, source = candidate.text.strip(), candidate.source
        if not text or text in seen:
            continue
        seen.add(text)
        normalized.append(CandidateKeyword(text=text, source=source))
    return normalized


class ResearchLifecycleManager:
    """Owns every write to research records.

    Each commit replaces one stage's slice of the document, bumps
    ``updated_at`` and then signals the record tag and the list tag.
    """

    def __init__(
        self,
        store: ResearchStore,
        bus: InvalidationBus,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.bus = bus
        self._clock = clock

    async def create(self, seed_query: str, region: str, language: str) -> ResearchRecord:
        research_id = generate_cuid()
        if await self.store.exists(research_id):
            raise ResearchConflictError(research_id)

        now = self._clock()
        fields: ResearchDocument = {
            "seed_query": seed_query.strip(),
            "region": region,
            "language": language,
            "candidates": [],
            "volumes": [],
            "clusters": None,
            "created_at": now,
            "updated_at": now,
        }
        await self.store.put(research_id, fields)
        logger.info(
            "Research created",
            extra={"research_id": research_id, "seed_query": fields["seed_query"], "region": region},
        )
        self._signal(research_id)
        return ResearchRecord.model_validate({"id": research_id, **fields})

    async def get(self, research_id: str) -> ResearchRecord:
        document = await self._load(research_id)
        return ResearchRecord.model_validate(document)

    async def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> list[ResearchRecord]:
        documents = await self.store.list_recent(max(limit, 0))
        return [ResearchRecord.model_validate(document) for document in documents]

    async def delete(self, research_id: str) -> None:
        deleted = await self.store.delete(research_id)
        if not deleted:
            raise ResearchNotFoundError(research_id)
        logger.info("Research deleted", extra={"research_id": research_id})
        self._signal(research_id)

    async def commit_suggestions(
        self,
        research_id: str,
        candidates: Sequence[CandidateKeyword | str],
    ) -> ResearchRecord:
        document = await self._load(research_id)
        normalized = normalize_candidates(candidates)
        allowed = {candidate.text for candidate in normalized}

        existing_volumes = [VolumeItem.model_validate(item) for item in document.get("volumes") or []]
        kept_volumes = [item for item in existing_volumes if item.text in allowed]
        if len(kept_volumes) != len(existing_volumes):
            logger.info(
                "Pruned volumes no longer backed by candidates",
                extra={
                    "research_id": research_id,
                    "pruned": len(existing_volumes) - len(kept_volumes),
                },
            )

        fields: ResearchDocument = {
            "candidates": [candidate.model_dump(mode="json") for candidate in normalized],
            "volumes": [item.model_dump(mode="json") for item in kept_volumes],
        }
        return await self._commit(research_id, document, fields, stage="suggestions")

    async def commit_volumes(
        self,
        research_id: str,
        volumes: Sequence[VolumeItem],
    ) -> ResearchRecord:
        document = await self._load(research_id)
        allowed = {item["text"] for item in document.get("candidates") or []}
        orphans = [item.text for item in volumes if item.text not in allowed]
        if orphans:
            logger.error(
                "Volume commit rejected: texts missing from candidates",
                extra={"research_id": research_id, "orphans": orphans[:20], "orphan_count": len(orphans)},
            )
            raise InvariantViolationError(
                "Volume items must reference existing candidates",
                {"research_id": research_id, "orphans": orphans},
            )

        fields: ResearchDocument = {
            "volumes": [item.model_dump(mode="json") for item in volumes],
        }
        return await self._commit(research_id, document, fields, stage="volumes")

    async def commit_clusters(
        self,
        research_id: str,
        clusters: ClusterMap | None,
    ) -> ResearchRecord:
        document = await self._load(research_id)
        fields: ResearchDocument = {
            "clusters": {topic: list(keywords) for topic, keywords in clusters.items()}
            if clusters is not None
            else None,
        }
        return await self._commit(research_id, document, fields, stage="clusters")

    async def _load(self, research_id: str) -> ResearchDocument:
        document = await self.store.get(research_id)
        if document is None:
            raise ResearchNotFoundError(research_id)
        return document

    def _next_updated_at(self, previous: datetime | None) -> datetime:
        now = self._clock()
        if previous is not None and now <= previous:
            return previous + timedelta(microseconds=1)
        return now

    async def _commit(
        self,
        research_id: str,
        document: ResearchDocument,
        fields: ResearchDocument,
        *,
        stage: str,
    ) -> ResearchRecord:
        fields["updated_at"] = self._next_updated_at(document.get("updated_at"))
        await self.store.put(research_id, fields)
        logger.info(
            "Research stage committed",
            extra={"research_id": research_id, "stage": stage},
        )
        self._signal(research_id)
        return ResearchRecord.model_validate({**document, **fields, "id": research_id})

    def _signal(self, research_id: str) -> None:
        for tag in (research_tag(research_id), RESEARCH_LIST_TAG):
            try:
                self.bus.signal(tag)
            except Exception as exc:
                logger.warning(
                    "Cache invalidation signal failed",
                    extra={"research_id": research_id, "tag": tag, "error": str(exc)},
                )
