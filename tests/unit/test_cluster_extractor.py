"""Unit tests for streaming cluster extraction."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from keywordscope.core.exceptions import (
    ClusterCancelledError,
    ClusterStreamError,
    ClusterTimeoutError,
    ExternalAPIError,
    InsufficientInputError,
    MalformedOutputError,
    SchemaMismatchError,
)
from keywordscope.services.cluster_extractor import (
    extract_clusters,
    extract_json_object,
    validate_clusters,
)

KEYWORDS = ["x", "y", "z", "w", "v"]


class _FakeStream:
    """Async iterator over fixed chunks that records how it was used."""

    def __init__(self, chunks: list[str], *, delay: float = 0.0, hang: bool = False) -> None:
        self._chunks = list(chunks)
        self._delay = delay
        self._hang = hang
        self.iterated = False
        self.closed = False

    def __aiter__(self) -> AsyncIterator[str]:
        self.iterated = True
        return self

    async def __anext__(self) -> str:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._chunks:
            return self._chunks.pop(0)
        if self._hang:
            await asyncio.Event().wait()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.closed = True


class _FailingStream(_FakeStream):
    async def __anext__(self) -> str:
        raise RuntimeError("model connection reset")


@pytest.mark.asyncio
async def test_insufficient_keywords_do_not_touch_stream() -> None:
    stream = _FakeStream(['{"clusters": {}}'])

    with pytest.raises(InsufficientInputError):
        await extract_clusters(["a", "b", "a", " ", "c", "d"], stream)

    assert not stream.iterated
    assert not stream.closed


@pytest.mark.asyncio
async def test_one_character_chunks_are_reassembled() -> None:
    text = '{"clusters":{"A":["x","y"]}}'
    stream = _FakeStream(list(text))

    clusters = await extract_clusters(KEYWORDS, stream)

    assert clusters == {"A": ["x", "y"]}
    assert stream.closed


@pytest.mark.asyncio
async def test_prose_and_trailing_garbage_are_tolerated() -> None:
    stream = _FakeStream(
        ["Sure! Here you go:\n", '{"clusters": {"A": ["x", "y"], ', '"B": ["z"]}}', "\nHope it helps"]
    )

    clusters = await extract_clusters(KEYWORDS, stream)

    assert clusters == {"A": ["x", "y"], "B": ["z"]}


@pytest.mark.asyncio
async def test_stray_brace_after_object_falls_back_to_last_good() -> None:
    stream = _FakeStream(['{"clusters": {"A": ["x", "w"]}}', " trailing } brace"])

    clusters = await extract_clusters(KEYWORDS, stream)

    assert clusters == {"A": ["x", "w"]}


@pytest.mark.asyncio
async def test_unparseable_output_raises_malformed_with_raw_buffer() -> None:
    stream = _FakeStream(["I cannot ", "cluster these."])

    with pytest.raises(MalformedOutputError) as exc_info:
        await extract_clusters(KEYWORDS, stream)

    assert exc_info.value.raw_output == "I cannot cluster these."
    assert stream.closed


@pytest.mark.asyncio
async def test_wrong_shape_raises_schema_mismatch() -> None:
    stream = _FakeStream(['{"topics": [["x", "y"]]}'])

    with pytest.raises(SchemaMismatchError):
        await extract_clusters(KEYWORDS, stream)


@pytest.mark.asyncio
async def test_timeout_without_output_raises() -> None:
    stream = _FakeStream([], hang=True)

    with pytest.raises(ClusterTimeoutError) as exc_info:
        await extract_clusters(KEYWORDS, stream, timeout_ms=50)

    assert exc_info.value.timeout_ms == 50
    assert stream.closed


@pytest.mark.asyncio
async def test_timeout_after_parseable_output_returns_last_good() -> None:
    stream = _FakeStream(['{"clusters": {"A": ["v", "w"]}}'], hang=True)

    clusters = await extract_clusters(KEYWORDS, stream, timeout_ms=50)

    assert clusters == {"A": ["v", "w"]}
    assert stream.closed


@pytest.mark.asyncio
async def test_cancel_event_aborts_promptly() -> None:
    stream = _FakeStream(['{"clusters": '], hang=True)
    cancel_event = asyncio.Event()

    async def cancel_soon() -> None:
        await asyncio.sleep(0.01)
        cancel_event.set()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(ClusterCancelledError):
        await extract_clusters(KEYWORDS, stream, timeout_ms=5_000, cancel_event=cancel_event)
    await canceller

    assert stream.closed


@pytest.mark.asyncio
async def test_stream_errors_are_wrapped_and_close_stream() -> None:
    stream = _FailingStream([])

    with pytest.raises(ClusterStreamError, match="connection reset") as exc_info:
        await extract_clusters(KEYWORDS, stream)

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert exc_info.value.details == {"error_type": "RuntimeError"}
    assert stream.closed


@pytest.mark.asyncio
async def test_stream_error_after_partial_output_is_wrapped() -> None:
    async def generate() -> AsyncIterator[str]:
        yield '{"clus'
        raise ConnectionError("peer reset")

    with pytest.raises(ClusterStreamError):
        await extract_clusters(KEYWORDS, generate())


@pytest.mark.asyncio
async def test_provider_errors_from_stream_are_wrapped() -> None:
    async def generate() -> AsyncIterator[str]:
        raise ExternalAPIError("OpenAI", "model overloaded")
        yield ""

    with pytest.raises(ClusterStreamError, match="model overloaded") as exc_info:
        await extract_clusters(KEYWORDS, generate())

    assert isinstance(exc_info.value.__cause__, ExternalAPIError)


@pytest.mark.asyncio
async def test_clustering_errors_from_stream_pass_through() -> None:
    async def generate() -> AsyncIterator[str]:
        raise ClusterCancelledError()
        yield ""

    with pytest.raises(ClusterCancelledError):
        await extract_clusters(KEYWORDS, generate())


@pytest.mark.asyncio
async def test_async_generator_streams_are_closed() -> None:
    finished: list[bool] = []

    async def generate() -> AsyncIterator[str]:
        try:
            yield '{"clusters": {"A": ["x", "y", "z"]}}'
        finally:
            finished.append(True)

    clusters = await extract_clusters(KEYWORDS, generate())

    assert clusters == {"A": ["x", "y", "z"]}
    assert finished == [True]


def test_validate_clusters_drops_unknown_and_keeps_last_topic() -> None:
    parsed = {
        "clusters": {
            "A": ["x", "y", "ghost"],
            "B": ["y", " z "],
            "C": ["ghost"],
        }
    }

    assert validate_clusters(parsed, KEYWORDS) == {"A": ["x"], "B": ["y", "z"]}


def test_validate_clusters_rejects_non_string_members() -> None:
    with pytest.raises(SchemaMismatchError):
        validate_clusters({"clusters": {"A": [1, 2]}}, KEYWORDS)


def test_extract_json_object_uses_outer_braces() -> None:
    assert extract_json_object('noise {"a": {"b": 1}} noise') == {"a": {"b": 1}}
    with pytest.raises(ValueError):
        extract_json_object("no braces here")


def test_validate_clusters_merges_labels_differing_by_whitespace() -> None:
    parsed = {"clusters": {"A": ["x", "y"], "A ": ["z"], " B": ["w"]}}

    assert validate_clusters(parsed, KEYWORDS) == {"A": ["x", "y", "z"], "B": ["w"]}


def test_validate_clusters_moves_keyword_to_last_of_merged_labels() -> None:
    parsed = {"clusters": {"A": ["x", "y"], "B": ["x"], "A ": ["v"]}}

    assert validate_clusters(parsed, KEYWORDS) == {"A": ["y", "v"], "B": ["x"]}
