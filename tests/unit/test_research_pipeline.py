"""Unit tests for the research pipeline across all stages."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence

import pytest

from keywordscope.core.exceptions import (
    ClusterCancelledError,
    ClusterStreamError,
    InsufficientInputError,
    MalformedOutputError,
    UpstreamUnavailableError,
)
from keywordscope.persistence.research_store import InMemoryResearchStore
from keywordscope.services.research_lifecycle import ResearchLifecycleManager
from keywordscope.services.research_pipeline import (
    cluster_research,
    enrich_research,
    run_keyword_research,
    select_cluster_keywords,
    start_research,
)
from keywordscope.services.suggestion_fanout import ExpansionOptions
from keywordscope.services.volume_enrichment import RawVolumeRow


class _RecordingBus:
    def __init__(self) -> None:
        self.tags: list[str] = []

    def signal(self, tag: str) -> None:
        self.tags.append(tag)


class _SourdoughAutocomplete:
    """Each query yields two suggestions; the base query also yields a simplified one."""

    def __init__(self) -> None:
        self.queries: list[str] = []

    async def lookup(self, query: str, region: str, language: str) -> list[str]:
        self.queries.append(query)
        if query == "sourdough bread":
            return ["sourdough bread recipe", "sourdough bread 面包 价格", "sourdough bread near me"]
        return [f"{query} one", f"{query} two"]


class _CountingVolumeService:
    def __init__(self) -> None:
        self.batches: list[list[str]] = []

    async def fetch_batch(self, keywords: list[str], region: str, language: str) -> list[RawVolumeRow]:
        self.batches.append(list(keywords))
        return [
            RawVolumeRow(text=keyword, raw_competition=1, raw_competition_index=20, raw_cpc_micros=500_000, raw_volume=100 + index)
            for index, keyword in enumerate(keywords)
        ]


class _FakeClusterStream:
    def __init__(self, text: str) -> None:
        self.text = text
        self.requested: list[list[str]] = []
        self.closed = 0

    def __call__(self, keywords: Sequence[str]) -> AsyncIterator[str]:
        self.requested.append(list(keywords))
        return self._generate()

    async def _generate(self) -> AsyncIterator[str]:
        try:
            for char in self.text:
                yield char
        finally:
            self.closed += 1


def _lifecycle(bus: _RecordingBus | None = None) -> ResearchLifecycleManager:
    return ResearchLifecycleManager(InMemoryResearchStore(), bus or _RecordingBus())


@pytest.fixture(autouse=True)
def _fast_pacing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("keywordscope.services.research_pipeline.settings.volume_pacing_seconds", 0.1)


@pytest.mark.asyncio
async def test_sourdough_bread_end_to_end() -> None:
    bus = _RecordingBus()
    lifecycle = _lifecycle(bus)
    autocomplete = _SourdoughAutocomplete()
    volumes = _CountingVolumeService()

    started = await start_research(
        lifecycle, seed_query="sourdough bread", region="US", language="en", autocomplete=autocomplete
    )
    record = started.record

    assert len(autocomplete.queries) == 27
    assert record.seed_query == "sourdough bread"
    assert "sourdough bread 面包 价格" not in record.candidate_texts
    assert len(record.candidate_texts) == len(set(record.candidate_texts)) == 2 + 26 * 2
    assert started.estimated_processing_seconds is not None

    bus.tags.clear()
    enriched = await enrich_research(lifecycle, record.id, volume_service=volumes)

    assert len(volumes.batches) <= 3
    assert sum(len(batch) for batch in volumes.batches) == 54
    assert all(item.text in enriched.record.candidate_texts for item in enriched.record.volumes)
    assert bus.tags == [f"research:{record.id}", "research:list"]
    assert enriched.batch_errors == []

    stored = await lifecycle.get(record.id)
    assert len(stored.volumes) == 54
    assert stored.clusters is None


@pytest.mark.asyncio
async def test_run_keyword_research_with_clustering() -> None:
    lifecycle = _lifecycle()
    stream = _FakeClusterStream(
        '{"clusters": {"Recipes": ["sourdough bread recipe", "sourdough bread a one"],'
        ' "Local": ["sourdough bread near me", "made up keyword"]}}'
    )

    outcome = await run_keyword_research(
        lifecycle,
        "sourdough bread",
        "US",
        "en",
        autocomplete=_SourdoughAutocomplete(),
        volume_service=_CountingVolumeService(),
        stream_factory=stream,
    )

    assert outcome.record.clusters == {
        "Recipes": ["sourdough bread recipe", "sourdough bread a one"],
        "Local": ["sourdough bread near me"],
    }
    assert outcome.expansion is not None
    assert len(stream.requested) == 1
    assert stream.closed == 1
    assert (await lifecycle.get(outcome.record.id)).clusters == outcome.record.clusters
    assert outcome.cluster_error is None

    volume_by_text = {item.text: item.search_volume for item in outcome.record.volumes}
    totals = {topic.name: topic.total_volume for topic in outcome.record.clusters_with_volume or []}
    assert totals == {
        "Recipes": volume_by_text["sourdough bread recipe"] + volume_by_text["sourdough bread a one"],
        "Local": volume_by_text["sourdough bread near me"],
    }


@pytest.mark.asyncio
async def test_run_keyword_research_propagates_base_failure() -> None:
    class _DownAutocomplete:
        async def lookup(self, query: str, region: str, language: str) -> list[str]:
            raise ConnectionError("suggest endpoint down")

    lifecycle = _lifecycle()

    with pytest.raises(UpstreamUnavailableError):
        await run_keyword_research(
            lifecycle,
            "sourdough bread",
            "US",
            "en",
            autocomplete=_DownAutocomplete(),
            volume_service=_CountingVolumeService(),
        )

    assert await lifecycle.list_recent() == []


@pytest.mark.asyncio
async def test_run_keyword_research_skips_enrichment_without_candidates() -> None:
    class _EmptyAutocomplete:
        async def lookup(self, query: str, region: str, language: str) -> list[str]:
            return []

    volumes = _CountingVolumeService()

    outcome = await run_keyword_research(
        _lifecycle(),
        "sourdough bread",
        "US",
        "en",
        autocomplete=_EmptyAutocomplete(),
        volume_service=volumes,
    )

    assert outcome.record.candidates == []
    assert volumes.batches == []


@pytest.mark.asyncio
async def test_recluster_failure_can_clear_previous_clusters() -> None:
    lifecycle = _lifecycle()
    record = await lifecycle.create("bread", "US", "en")
    await lifecycle.commit_suggestions(record.id, ["a", "b", "c", "d", "e"])
    await lifecycle.commit_clusters(record.id, {"Old": ["a", "b"]})

    with pytest.raises(MalformedOutputError):
        await cluster_research(lifecycle, record.id, stream_factory=_FakeClusterStream("no json"))
    assert (await lifecycle.get(record.id)).clusters == {"Old": ["a", "b"]}

    with pytest.raises(MalformedOutputError):
        await cluster_research(
            lifecycle,
            record.id,
            stream_factory=_FakeClusterStream("no json"),
            clear_on_failure=True,
        )
    assert (await lifecycle.get(record.id)).clusters is None


@pytest.mark.asyncio
async def test_cluster_research_can_be_cancelled() -> None:
    lifecycle = _lifecycle()
    record = await lifecycle.create("bread", "US", "en")
    await lifecycle.commit_suggestions(record.id, ["a", "b", "c", "d", "e"])
    cancel_event = asyncio.Event()
    cancel_event.set()

    async def never_ending(keywords: Sequence[str]) -> AsyncIterator[str]:
        await asyncio.Event().wait()
        yield ""

    with pytest.raises(ClusterCancelledError):
        await cluster_research(
            lifecycle, record.id, stream_factory=never_ending, cancel_event=cancel_event
        )


@pytest.mark.asyncio
async def test_select_cluster_keywords_ranks_by_volume() -> None:
    lifecycle = _lifecycle()
    record = await lifecycle.create("bread", "US", "en")
    record = await lifecycle.commit_suggestions(record.id, ["low", "high", "mid"])

    assert select_cluster_keywords(record, 2) == ["low", "high"]

    enriched = await enrich_research(lifecycle, record.id, volume_service=_CountingVolumeService())
    assert select_cluster_keywords(enriched.record, 2) == ["mid", "high"]


@pytest.mark.asyncio
async def test_stream_failure_can_clear_previous_clusters() -> None:
    lifecycle = _lifecycle()
    record = await lifecycle.create("bread", "US", "en")
    await lifecycle.commit_suggestions(record.id, ["a", "b", "c", "d", "e"])
    await lifecycle.commit_clusters(record.id, {"Old": ["a", "b"]})

    async def dropped_connection(keywords: Sequence[str]) -> AsyncIterator[str]:
        yield '{"clus'
        raise ConnectionError("connection reset by peer")

    with pytest.raises(ClusterStreamError) as exc_info:
        await cluster_research(
            lifecycle, record.id, stream_factory=dropped_connection, clear_on_failure=True
        )

    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert (await lifecycle.get(record.id)).clusters is None


@pytest.mark.asyncio
async def test_run_keyword_research_keeps_volumes_when_clustering_fails() -> None:
    lifecycle = _lifecycle()
    volumes = _CountingVolumeService()
    stream = _FakeClusterStream('{"clusters": {}}')

    outcome = await run_keyword_research(
        lifecycle,
        "sourdough bread",
        "US",
        "en",
        autocomplete=_SourdoughAutocomplete(),
        volume_service=volumes,
        options=ExpansionOptions(use_alphabet=False, use_symbols=False),
        stream_factory=stream,
    )

    assert isinstance(outcome.cluster_error, InsufficientInputError)
    assert outcome.batch_errors == []
    assert [item.text for item in outcome.record.volumes] == [
        "sourdough bread recipe",
        "sourdough bread near me",
    ]
    assert outcome.record.clusters is None
    assert stream.requested == []
    assert len((await lifecycle.get(outcome.record.id)).volumes) == 2


@pytest.mark.asyncio
async def test_run_keyword_research_reports_stream_failure() -> None:
    async def dropped_connection(keywords: Sequence[str]) -> AsyncIterator[str]:
        raise ConnectionError("connection reset by peer")
        yield ""

    outcome = await run_keyword_research(
        _lifecycle(),
        "sourdough bread",
        "US",
        "en",
        autocomplete=_SourdoughAutocomplete(),
        volume_service=_CountingVolumeService(),
        stream_factory=dropped_connection,
    )

    assert isinstance(outcome.cluster_error, ClusterStreamError)
    assert len(outcome.record.volumes) == 54
