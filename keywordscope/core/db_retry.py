"""Retry helpers for dropped database connections."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

_ResultT = TypeVar("_ResultT")

_CONNECTION_ERROR_MARKERS = (
    "connection is closed",
    "server closed the connection unexpectedly",
    "connection was closed",
)


def is_transient_connection_error(exc: BaseException) -> bool:
    """Return True when an exception likely came from a dropped DB connection."""
    if isinstance(exc, (InterfaceError, OperationalError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True

    lowered = str(exc).lower()
    return any(marker in lowered for marker in _CONNECTION_ERROR_MARKERS)


async def retry_on_disconnect(
    operation: Callable[[], Awaitable[_ResultT]],
    *,
    operation_name: str,
    research_id: str | None = None,
    attempts: int = 3,
    base_delay_seconds: float = 0.2,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> _ResultT:
    """Run a store operation, retrying only when the connection dropped."""
    sleep = sleep or asyncio.sleep
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_transient_connection_error(exc) or attempt >= attempts:
                raise
            logger.warning(
                "Database connection dropped, retrying store operation",
                extra={
                    "operation": operation_name,
                    "research_id": research_id,
                    "attempt": attempt,
                    "max_attempts": attempts,
                },
            )
            await sleep(base_delay_seconds * attempt)
            attempt += 1
