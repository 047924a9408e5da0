"""SQLAlchemy-backed research store."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keywordscope.config import settings
from keywordscope.core.database import get_session_context
from keywordscope.core.db_retry import retry_on_disconnect
from keywordscope.models.research import RESEARCH_FIELDS, ResearchRecordRow
from keywordscope.persistence.research_store import ResearchDocument

logger = logging.getLogger(__name__)


class SqlResearchStore:
    """Stores each research record as one row with JSON columns."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        *,
        retry_attempts: int | None = None,
    ) -> None:
        self._session_maker = session_maker
        self._retry_attempts = retry_attempts or settings.store_retry_attempts

    async def get(self, research_id: str) -> ResearchDocument | None:
        async def operation() -> ResearchDocument | None:
            async with get_session_context(self._session_maker) as session:
                row = await session.get(ResearchRecordRow, research_id)
                return row.to_document() if row is not None else None

        return await retry_on_disconnect(
            operation,
            operation_name="research_store.get",
            research_id=research_id,
            attempts=self._retry_attempts,
        )

    async def exists(self, research_id: str) -> bool:
        return await self.get(research_id) is not None

    async def put(self, research_id: str, fields: ResearchDocument) -> None:
        unknown = set(fields) - set(RESEARCH_FIELDS)
        if unknown:
            raise ValueError(f"Unknown research fields: {sorted(unknown)}")

        async def operation() -> None:
            async with get_session_context(self._session_maker) as session:
                row = await session.get(ResearchRecordRow, research_id)
                if row is None:
                    session.add(ResearchRecordRow(id=research_id, **fields))
                    return
                for name, value in fields.items():
                    setattr(row, name, value)

        await retry_on_disconnect(
            operation,
            operation_name="research_store.put",
            research_id=research_id,
            attempts=self._retry_attempts,
        )
        logger.debug(
            "Research document written",
            extra={"research_id": research_id, "fields": sorted(fields)},
        )

    async def list_recent(self, limit: int) -> list[ResearchDocument]:
        async def operation() -> list[ResearchDocument]:
            async with get_session_context(self._session_maker) as session:
                result = await session.execute(
                    select(ResearchRecordRow)
                    .order_by(ResearchRecordRow.updated_at.desc())
                    .limit(limit)
                )
                return [row.to_document() for row in result.scalars().all()]

        return await retry_on_disconnect(
            operation,
            operation_name="research_store.list_recent",
            attempts=self._retry_attempts,
        )

    async def delete(self, research_id: str) -> bool:
        async def operation() -> bool:
            async with get_session_context(self._session_maker) as session:
                row = await session.get(ResearchRecordRow, research_id)
                if row is None:
                    return False
                await session.delete(row)
                return True

        return await retry_on_disconnect(
            operation,
            operation_name="research_store.delete",
            research_id=research_id,
            attempts=self._retry_attempts,
        )
