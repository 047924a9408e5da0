"""Research pipeline: chains fan-out, volume enrichment, and clustering.

Each stage reads its inputs from the stored record and commits its output
through the lifecycle manager, so any stage can be re-run on its own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Callable, Sequence
from dataclasses import dataclass, field

from keywordscope.agents.cluster_agent import ClusterAgent, ClusterAgentInput
from keywordscope.config import settings
from keywordscope.core.exceptions import (
    ClusteringError,
    InsufficientInputError,
    InvalidInputError,
    KeywordScopeError,
)
from keywordscope.schemas.research import ResearchRecord
from keywordscope.services.cluster_extractor import extract_clusters
from keywordscope.services.research_lifecycle import ResearchLifecycleManager
from keywordscope.services.suggestion_fanout import (
    AutocompleteService,
    ExpansionOptions,
    ExpansionResult,
    estimate_processing_time,
    expand_suggestions,
    expand_url_suggestions,
)
from keywordscope.services.volume_enrichment import (
    BatchError,
    VolumeDataService,
    enrich_volumes,
)

logger = logging.getLogger(__name__)

ClusterStreamFactory = Callable[[Sequence[str]], AsyncIterable[str]]


@dataclass
class ResearchOutcome:
    """Stored record plus what the stage run reported along the way."""

    record: ResearchRecord
    expansion: ExpansionResult | None = None
    batch_errors: list[BatchError] = field(default_factory=list)
    estimated_processing_seconds: int | None = None
    cluster_error: KeywordScopeError | None = None


def cluster_agent_stream(
    model: str | None = None,
    max_keywords: int | None = None,
) -> ClusterStreamFactory:
    """Build a stream factory backed by the clustering agent."""
    agent = ClusterAgent(model_override=model)

    def factory(keywords: Sequence[str]) -> AsyncIterable[str]:
        if max_keywords is None:
            agent_input = ClusterAgentInput(keywords=list(keywords))
        else:
            agent_input = ClusterAgentInput(keywords=list(keywords), max_keywords=max_keywords)
        return agent.stream_text(agent_input)

    return factory


def select_cluster_keywords(record: ResearchRecord, max_keywords: int) -> list[str]:
    """Highest-volume keywords first; falls back to raw candidates before enrichment."""
    if record.volumes:
        ranked = sorted(record.volumes, key=lambda item: item.search_volume, reverse=True)
        return [item.text for item in ranked][:max_keywords]
    return record.candidate_texts[:max_keywords]


async def start_research(
    lifecycle: ResearchLifecycleManager,
    *,
    seed_query: str | None,
    region: str,
    language: str,
    autocomplete: AutocompleteService,
    options: ExpansionOptions | None = None,
    url: str | None = None,
) -> ResearchOutcome:
    """Expand a seed query (or URL) and store the suggestions on a new record."""
    if url and url.strip():
        expansion = await expand_url_suggestions(url, region, language, autocomplete=autocomplete)
        label = url.strip()
    elif seed_query and seed_query.strip():
        expansion = await expand_suggestions(
            seed_query, region, language, options, autocomplete=autocomplete
        )
        label = seed_query.strip()
    else:
        raise InvalidInputError("Either seed_query or url is required")

    record = await lifecycle.create(label, region, language)
    record = await lifecycle.commit_suggestions(record.id, expansion.candidates)
    return ResearchOutcome(
        record=record,
        expansion=expansion,
        estimated_processing_seconds=estimate_processing_time(
            expansion.suggestions, with_volume=True
        ),
    )


async def enrich_research(
    lifecycle: ResearchLifecycleManager,
    research_id: str,
    *,
    volume_service: VolumeDataService,
    max_count: int | None = None,
    pacing_seconds: float | None = None,
) -> ResearchOutcome:
    """Fetch volumes for the record's candidates and commit them."""
    record = await lifecycle.get(research_id)
    result = await enrich_volumes(
        record.candidate_texts,
        record.region,
        record.language,
        volume_service=volume_service,
        max_count=max_count or settings.volume_max_count,
        batch_size=settings.volume_batch_size,
        pacing_seconds=settings.volume_pacing_seconds if pacing_seconds is None else pacing_seconds,
    )
    if result.is_partial:
        logger.warning(
            "Volume enrichment partially failed",
            extra={
                "research_id": research_id,
                "failed_batches": len(result.errors),
                "batches_total": result.batches_total,
            },
        )
    record = await lifecycle.commit_volumes(research_id, result.items)
    return ResearchOutcome(record=record, batch_errors=result.errors)


async def cluster_research(
    lifecycle: ResearchLifecycleManager,
    research_id: str,
    *,
    stream_factory: ClusterStreamFactory,
    max_keywords: int | None = None,
    clear_on_failure: bool = False,
    cancel_event: asyncio.Event | None = None,
) -> ResearchRecord:
    """Cluster the record's keywords and commit the topic map.

    With ``clear_on_failure`` a failed model run also clears previously
    stored clusters before the error propagates.
    """
    record = await lifecycle.get(research_id)
    keywords = select_cluster_keywords(
        record, max_keywords or settings.clustering_max_keywords
    )

    try:
        clusters = await extract_clusters(
            keywords,
            _LazyStream(stream_factory, keywords),
            min_keywords=settings.clustering_min_keywords,
            timeout_ms=settings.clustering_timeout_ms,
            cancel_event=cancel_event,
        )
    except ClusteringError as exc:
        logger.warning(
            "Clustering failed",
            extra={"research_id": research_id, "error": exc.message, "clear": clear_on_failure},
        )
        if clear_on_failure and record.clusters is not None:
            await lifecycle.commit_clusters(research_id, None)
        raise

    return await lifecycle.commit_clusters(research_id, clusters)


async def run_keyword_research(
    lifecycle: ResearchLifecycleManager,
    seed_query: str,
    region: str,
    language: str,
    *,
    autocomplete: AutocompleteService,
    volume_service: VolumeDataService,
    options: ExpansionOptions | None = None,
    stream_factory: ClusterStreamFactory | None = None,
) -> ResearchOutcome:
    """Run every stage for one seed query; clustering only with a stream factory.

    A clustering failure is reported on ``cluster_error`` instead of raised.
    """
    started = await start_research(
        lifecycle,
        seed_query=seed_query,
        region=region,
        language=language,
        autocomplete=autocomplete,
        options=options,
    )
    research_id = started.record.id

    if not started.record.candidates:
        logger.info("No candidates found, skipping enrichment", extra={"research_id": research_id})
        return started

    enriched = await enrich_research(lifecycle, research_id, volume_service=volume_service)
    record = enriched.record
    cluster_error: KeywordScopeError | None = None
    if stream_factory is not None:
        # Clustering is optional; enriched volumes stay committed if it fails.
        try:
            record = await cluster_research(lifecycle, research_id, stream_factory=stream_factory)
        except (ClusteringError, InsufficientInputError) as exc:
            logger.warning(
                "Skipping clusters for research run",
                extra={"research_id": research_id, "error": exc.message},
            )
            cluster_error = exc

    return ResearchOutcome(
        record=record,
        expansion=started.expansion,
        batch_errors=enriched.batch_errors,
        estimated_processing_seconds=started.estimated_processing_seconds,
        cluster_error=cluster_error,
    )


class _LazyStream:
    """Defers creating the model stream until the extractor iterates it."""

    def __init__(self, factory: ClusterStreamFactory, keywords: Sequence[str]) -> None:
        self._factory = factory
        self._keywords = list(keywords)
        self._stream: AsyncIterable[str] | None = None

    def __aiter__(self):
        if self._stream is None:
            self._stream = self._factory(self._keywords)
        return self._stream.__aiter__()

    async def aclose(self) -> None:
        aclose = getattr(self._stream, "aclose", None)
        if aclose is not None:
            await aclose()


__all__ = [
    "ClusterStreamFactory",
    "ResearchOutcome",
    "cluster_agent_stream",
    "cluster_research",
    "enrich_research",
    "run_keyword_research",
    "select_cluster_keywords",
    "start_research",
]
