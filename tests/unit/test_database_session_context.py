"""Unit tests for database session context finalization behavior."""

from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy.exc import InterfaceError

from keywordscope.core.database import get_session_context


class _FakeSession:
    def __init__(self) -> None:
        self._in_transaction = True
        self.commit_calls = 0
        self.rollback_calls = 0
        self.rollback_error: Exception | None = None

    def in_transaction(self) -> bool:
        return self._in_transaction

    async def commit(self) -> None:
        self.commit_calls += 1
        self._in_transaction = False

    async def rollback(self) -> None:
        self.rollback_calls += 1
        if self.rollback_error is not None:
            raise self.rollback_error
        self._in_transaction = False


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
async def test_session_context_commits_on_clean_exit() -> None:
    session = _FakeSession()

    async with get_session_context(_FakeSessionMaker(session)) as yielded:  # type: ignore[arg-type]
        assert yielded is session

    assert session.commit_calls == 1
    assert session.rollback_calls == 0


@pytest.mark.asyncio
async def test_session_context_rolls_back_and_reraises() -> None:
    session = _FakeSession()
    session.rollback_error = RuntimeError("connection gone")

    with pytest.raises(ValueError):
        async with get_session_context(_FakeSessionMaker(session)):  # type: ignore[arg-type]
            raise ValueError("bad write")

    assert session.commit_calls == 0
    assert session.rollback_calls == 1


@pytest.mark.asyncio
async def test_session_context_ignores_interface_error_after_transaction_closed() -> None:
    session = _FakeSession()

    async with get_session_context(_FakeSessionMaker(session)):  # type: ignore[arg-type]
        session._in_transaction = False
        raise InterfaceError("COMMIT", {}, Exception("connection is closed"))

    assert session.rollback_calls == 0


@pytest.mark.asyncio
async def test_session_context_uses_default_maker(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _FakeSession()
    monkeypatch.setattr("keywordscope.core.database.async_session_maker", _FakeSessionMaker(session))

    async with get_session_context():
        pass

    assert session.commit_calls == 1
