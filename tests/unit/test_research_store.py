"""Unit tests for research document stores."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError

from keywordscope.models.research import ResearchRecordRow
from keywordscope.persistence.research_store import InMemoryResearchStore, ResearchStore
from keywordscope.persistence.sql_store import SqlResearchStore

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _fields(seed: str = "bread", updated_at: datetime = NOW) -> dict[str, Any]:
    return {
        "seed_query": seed,
        "region": "US",
        "language": "en",
        "candidates": [{"text": "bread recipe", "source": "base"}],
        "volumes": [],
        "clusters": None,
        "created_at": NOW,
        "updated_at": updated_at,
    }


@pytest.mark.asyncio
async def test_in_memory_store_merges_fields_and_copies() -> None:
    store = InMemoryResearchStore()
    assert isinstance(store, ResearchStore)

    await store.put("r1", _fields())
    await store.put("r1", {"clusters": {"Recipes": ["bread recipe"]}})

    document = await store.get("r1")
    assert document is not None
    assert document["id"] == "r1"
    assert document["seed_query"] == "bread"
    assert document["clusters"] == {"Recipes": ["bread recipe"]}

    document["candidates"].append({"text": "mutated", "source": "manual"})
    assert len((await store.get("r1"))["candidates"]) == 1
    assert await store.exists("r1")
    assert await store.get("r2") is None


@pytest.mark.asyncio
async def test_in_memory_store_lists_and_deletes() -> None:
    store = InMemoryResearchStore()
    await store.put("old", _fields("old", datetime(2026, 1, 1, tzinfo=timezone.utc)))
    await store.put("new", _fields("new", datetime(2026, 2, 1, tzinfo=timezone.utc)))

    assert [doc["id"] for doc in await store.list_recent(10)] == ["new", "old"]
    assert [doc["id"] for doc in await store.list_recent(1)] == ["new"]
    assert await store.delete("old") is True
    assert await store.delete("old") is False
    assert not await store.exists("old")


class _FakeResult:
    def __init__(self, rows: list[ResearchRecordRow]) -> None:
        self._rows = rows

    def scalars(self) -> "_FakeResult":
        return self

    def all(self) -> list[ResearchRecordRow]:
        return self._rows


class _FakeSession:
    def __init__(self, rows: dict[str, ResearchRecordRow]) -> None:
        self.rows = rows
        self.commits = 0
        self.rollbacks = 0
        self.get_error: Exception | None = None

    async def get(self, model: Any, key: str) -> ResearchRecordRow | None:
        if self.get_error is not None:
            error, self.get_error = self.get_error, None
            raise error
        return self.rows.get(key)

    def add(self, row: ResearchRecordRow) -> None:
        self.rows[row.id] = row

    async def delete(self, row: ResearchRecordRow) -> None:
        self.rows.pop(row.id, None)

    async def execute(self, statement: Any) -> _FakeResult:
        ordered = sorted(self.rows.values(), key=lambda row: row.updated_at, reverse=True)
        return _FakeResult(ordered)

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    def in_transaction(self) -> bool:
        return True


class _FakeSessionContextManager:
    def __init__(self, session: _FakeSession) -> None:
        self._session = session

    async def __aenter__(self) -> _FakeSession:
        return self._session

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        return None


class _FakeSessionMaker:
    def __init__(self, session: _FakeSession) -> None:
        self._session = session

    def __call__(self) -> _FakeSessionContextManager:
        return _FakeSessionContextManager(self._session)


@pytest.mark.asyncio
async def test_sql_store_inserts_then_updates_rows() -> None:
    session = _FakeSession({})
    store = SqlResearchStore(_FakeSessionMaker(session))  # type: ignore[arg-type]

    await store.put("r1", _fields())
    await store.put("r1", {"volumes": [{"text": "bread recipe", "search_volume": 10}]})

    row = session.rows["r1"]
    assert row.seed_query == "bread"
    assert row.volumes == [{"text": "bread recipe", "search_volume": 10}]
    assert session.commits == 2

    document = await store.get("r1")
    assert document is not None
    assert document["id"] == "r1"
    assert document["candidates"] == [{"text": "bread recipe", "source": "base"}]
    assert await store.exists("r1")
    assert [doc["id"] for doc in await store.list_recent(5)] == ["r1"]


@pytest.mark.asyncio
async def test_sql_store_rejects_unknown_fields() -> None:
    store = SqlResearchStore(_FakeSessionMaker(_FakeSession({})))  # type: ignore[arg-type]

    with pytest.raises(ValueError, match="Unknown research fields"):
        await store.put("r1", {"owner": "someone"})


@pytest.mark.asyncio
async def test_sql_store_delete() -> None:
    session = _FakeSession({})
    store = SqlResearchStore(_FakeSessionMaker(session))  # type: ignore[arg-type]
    await store.put("r1", _fields())

    assert await store.delete("r1") is True
    assert await store.delete("r1") is False
    assert await store.get("r1") is None


@pytest.mark.asyncio
async def test_sql_store_retries_dropped_connections(monkeypatch: pytest.MonkeyPatch) -> None:
    async def no_sleep(delay: float) -> None:
        return None

    monkeypatch.setattr("keywordscope.core.db_retry.asyncio.sleep", no_sleep)
    session = _FakeSession({})
    store = SqlResearchStore(_FakeSessionMaker(session))  # type: ignore[arg-type]
    await store.put("r1", _fields())

    session.get_error = OperationalError("SELECT", {}, Exception("connection is closed"))
    document = await store.get("r1")

    assert document is not None
    assert session.rollbacks == 1
