"""Cache invalidation signals for research records.

Readers cache research documents by tag. After every committed write the
lifecycle manager signals two tags: the record tag and the list tag. Signals
are fire-and-forget; publishing happens on a background task so a slow or
unreachable Redis never holds up a commit.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Protocol, runtime_checkable

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

RESEARCH_LIST_TAG = "research:list"


def research_tag(research_id: str) -> str:
    """Cache tag scoped to one research record."""
    return f"research:{research_id}"


@runtime_checkable
class InvalidationBus(Protocol):
    """Receives cache tags to invalidate."""

    def signal(self, tag: str) -> None:
        """Schedule invalidation of ``tag``; must not block on delivery."""


class NullInvalidationBus:
    """Bus used when invalidation is disabled; only logs."""

    def signal(self, tag: str) -> None:
        logger.debug("Cache invalidation skipped", extra={"tag": tag})


class RedisInvalidationBus:
    """Publishes invalidation tags on a Redis pub/sub channel."""

    def __init__(self, client: Redis, channel: str) -> None:
        self._client = client
        self.channel = channel
        self._pending: set[asyncio.Task[None]] = set()

    def signal(self, tag: str) -> None:
        task = asyncio.get_running_loop().create_task(
            self._publish(tag),
            name=f"cache-invalidation:{tag}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, tag: str) -> None:
        payload = json.dumps({"tag": tag}, separators=(",", ":"))
        try:
            receivers = await self._client.publish(self.channel, payload)
        except Exception as exc:
            logger.warning(
                "Cache invalidation publish failed",
                extra={"tag": tag, "channel": self.channel, "error": str(exc)},
            )
            return
        logger.debug(
            "Cache invalidation published",
            extra={"tag": tag, "channel": self.channel, "receivers": receivers},
        )

    async def drain(self) -> None:
        """Wait for in-flight publishes, e.g. on shutdown."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
