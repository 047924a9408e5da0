"""Streaming cluster extraction from an incrementally produced model response.

The stream is always drained: while chunks arrive, the buffer is scanned for a
brace-bounded JSON object and any successful parse is kept as the last known
good result. Once the stream ends, one strict pass decides the outcome, falling
back to the last known good result before giving up.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from keywordscope.core.exceptions import (
    ClusterCancelledError,
    ClusterStreamError,
    ClusterTimeoutError,
    ClusteringError,
    InsufficientInputError,
    MalformedOutputError,
    SchemaMismatchError,
)
from keywordscope.schemas.research import ClusterMap, ClusterPayload

logger = logging.getLogger(__name__)

DEFAULT_MIN_KEYWORDS = 5
DEFAULT_TIMEOUT_MS = 60_000


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the substring between the first ``{`` and the last ``}``.

    Raises:
        json.JSONDecodeError: No braces, invalid JSON, or not an object
    """
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


@dataclass
class _StreamState:
    buffer: list[str] = field(default_factory=list)
    last_good: dict[str, Any] | None = None
    chunks: int = 0

    @property
    def text(self) -> str:
        return "".join(self.buffer)


async def _consume(stream: AsyncIterable[str], state: _StreamState) -> None:
    async for chunk in stream:
        if not chunk:
            continue
        state.buffer.append(chunk)
        state.chunks += 1
        if "}" not in chunk:
            continue
        try:
            state.last_good = extract_json_object(state.text)
        except json.JSONDecodeError:
            pass


async def _close_stream(stream: AsyncIterable[str]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.warning("Closing cluster stream failed", extra={"error": str(e)})


def validate_clusters(parsed: dict[str, Any], keywords: Sequence[str]) -> ClusterMap:
    """Check the cluster schema and restrict clusters to known keywords.

    Keywords outside ``keywords`` are dropped. A keyword listed under several
    topics stays in the last one. Topics left without keywords are removed.

    Raises:
        SchemaMismatchError: Object lacks a ``clusters`` mapping of str to list[str]
    """
    try:
        payload = ClusterPayload.model_validate(parsed)
    except ValidationError as e:
        raise SchemaMismatchError(
            "Cluster output does not match the expected schema",
            {"errors": e.errors(include_url=False)},
        ) from e

    known = set(keywords)
    owner: dict[str, str] = {}
    unknown: list[str] = []

    # Labels that differ only by surrounding whitespace name the same topic.
    labelled = [(topic.strip() or topic, members) for topic, members in payload.clusters.items()]

    for topic, members in labelled:
        for keyword in members:
            text = keyword.strip()
            if text not in known:
                unknown.append(text)
                continue
            owner[text] = topic

    if unknown:
        logger.warning(
            "Dropping clustered keywords not in input",
            extra={"count": len(unknown), "sample": unknown[:5]},
        )

    clusters: ClusterMap = {}
    for topic, members in labelled:
        for keyword in members:
            text = keyword.strip()
            if owner.get(text) != topic:
                continue
            kept = clusters.setdefault(topic, [])
            if text not in kept:
                kept.append(text)

    return clusters


async def extract_clusters(
    keywords: Sequence[str],
    stream: AsyncIterable[str],
    *,
    min_keywords: int = DEFAULT_MIN_KEYWORDS,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    cancel_event: asyncio.Event | None = None,
) -> ClusterMap:
    """Consume a model text stream and return validated clusters.

    Args:
        keywords: Keywords the model was asked to cluster
        stream: Incremental text chunks from the language model
        min_keywords: Minimum distinct keywords required
        timeout_ms: Overall budget for draining the stream
        cancel_event: Set by the caller to abort extraction

    Returns:
        Topic label to keyword list mapping

    Raises:
        InsufficientInputError: Too few keywords; the stream is not consumed
        ClusterTimeoutError: Time ran out with nothing parseable
        ClusterCancelledError: ``cancel_event`` was set
        ClusterStreamError: The stream raised while being read
        MalformedOutputError: No JSON object could be recovered
        SchemaMismatchError: JSON did not have the cluster shape
    """
    distinct = list(dict.fromkeys(k.strip() for k in keywords if k and k.strip()))
    if len(distinct) < min_keywords:
        raise InsufficientInputError(min_keywords, len(distinct))

    state = _StreamState()
    consumer = asyncio.create_task(_consume(stream, state))
    waiters: set[asyncio.Future[Any]] = {consumer}
    cancel_waiter: asyncio.Task[Any] | None = None
    if cancel_event is not None:
        cancel_waiter = asyncio.create_task(cancel_event.wait())
        waiters.add(cancel_waiter)

    timed_out = False
    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=timeout_ms / 1000,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if consumer in done:
            stream_error = consumer.exception()
            if isinstance(stream_error, ClusteringError):
                raise stream_error
            if stream_error is not None:
                logger.warning(
                    "Cluster stream failed",
                    extra={"error": str(stream_error), "chunks": state.chunks},
                )
                raise ClusterStreamError(stream_error) from stream_error
        elif cancel_waiter is not None and cancel_waiter in done:
            logger.info("Cluster extraction cancelled", extra={"chunks": state.chunks})
            raise ClusterCancelledError()
        else:
            timed_out = True
            logger.warning(
                "Cluster stream timed out",
                extra={
                    "timeout_ms": timeout_ms,
                    "chunks": state.chunks,
                    "has_last_good": state.last_good is not None,
                },
            )
    finally:
        for task in (consumer, cancel_waiter):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(
            *(task for task in (consumer, cancel_waiter) if task is not None),
            return_exceptions=True,
        )
        await _close_stream(stream)

    if timed_out and state.last_good is None:
        raise ClusterTimeoutError(timeout_ms)

    raw = state.text
    try:
        parsed = extract_json_object(raw)
    except json.JSONDecodeError:
        if state.last_good is None:
            logger.warning(
                "Cluster output is not valid JSON",
                extra={"raw_length": len(raw), "chunks": state.chunks},
            )
            raise MalformedOutputError(raw) from None
        logger.info("Falling back to last parseable cluster output")
        parsed = state.last_good

    clusters = validate_clusters(parsed, distinct)
    logger.info(
        "Cluster extraction complete",
        extra={
            "clusters": len(clusters),
            "clustered_keywords": sum(len(members) for members in clusters.values()),
            "input_keywords": len(distinct),
            "chunks": state.chunks,
        },
    )
    return clusters
