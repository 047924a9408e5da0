"""Research API endpoints."""

import logging

from fastapi import APIRouter, Query, status

from keywordscope.api.v1.dependencies import (
    Autocomplete,
    ClusterStreamBuilder,
    LifecycleManager,
    VolumeService,
)
from keywordscope.api.v1.research.constants import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT
from keywordscope.api.v1.research.utils import to_http_exception
from keywordscope.core.exceptions import KeywordScopeError
from keywordscope.schemas.research import (
    BatchErrorResponse,
    ClusterRequest,
    ResearchCreateRequest,
    ResearchListItem,
    ResearchResponse,
    VolumeEnrichRequest,
)
from keywordscope.services.research_pipeline import (
    cluster_research,
    enrich_research,
    start_research,
)
from keywordscope.services.suggestion_fanout import ExpansionOptions

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=ResearchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start keyword research",
    description=(
        "Expand a seed query (or the phrases found in a URL) through autocomplete "
        "fan-out and store the suggestions on a new research record."
    ),
)
async def create_research(
    request: ResearchCreateRequest,
    lifecycle: LifecycleManager,
    autocomplete: Autocomplete,
) -> ResearchResponse:
    try:
        outcome = await start_research(
            lifecycle,
            seed_query=request.seed_query,
            url=request.url,
            region=request.region,
            language=request.language,
            autocomplete=autocomplete,
            options=ExpansionOptions(
                use_alphabet=request.use_alphabet,
                use_symbols=request.use_symbols,
            ),
        )
    except KeywordScopeError as e:
        raise to_http_exception(e) from e

    return ResearchResponse(
        research=outcome.record,
        estimated_processing_seconds=outcome.estimated_processing_seconds,
    )


@router.get(
    "",
    response_model=list[ResearchListItem],
    summary="List research",
    description="Return the most recently updated research records.",
)
async def list_research(
    lifecycle: LifecycleManager,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
) -> list[ResearchListItem]:
    records = await lifecycle.list_recent(limit)
    return [ResearchListItem.from_record(record) for record in records]


@router.get("/{research_id}", response_model=ResearchResponse, summary="Get research")
async def get_research(research_id: str, lifecycle: LifecycleManager) -> ResearchResponse:
    try:
        record = await lifecycle.get(research_id)
    except KeywordScopeError as e:
        raise to_http_exception(e) from e
    return ResearchResponse(research=record)


@router.delete(
    "/{research_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete research",
)
async def delete_research(research_id: str, lifecycle: LifecycleManager) -> None:
    try:
        await lifecycle.delete(research_id)
    except KeywordScopeError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{research_id}/volumes",
    response_model=ResearchResponse,
    summary="Enrich volumes",
    description=(
        "Fetch search volume, competition, and CPC for the record's candidates in "
        "paced batches of 20. Failed batches are reported in `batch_errors`."
    ),
)
async def enrich_research_volumes(
    research_id: str,
    lifecycle: LifecycleManager,
    volume_service: VolumeService,
    request: VolumeEnrichRequest | None = None,
) -> ResearchResponse:
    max_count = request.max_count if request else None
    try:
        outcome = await enrich_research(
            lifecycle,
            research_id,
            volume_service=volume_service,
            max_count=max_count,
        )
    except KeywordScopeError as e:
        raise to_http_exception(e) from e

    return ResearchResponse(
        research=outcome.record,
        batch_errors=[
            BatchErrorResponse(
                batch_index=error.batch_index,
                keywords=list(error.keywords),
                error=error.error,
            )
            for error in outcome.batch_errors
        ],
    )


@router.post(
    "/{research_id}/clusters",
    response_model=ResearchResponse,
    summary="Cluster keywords",
    description="Group the record's highest-volume keywords into listicle-sized topics.",
)
async def cluster_research_keywords(
    research_id: str,
    lifecycle: LifecycleManager,
    stream_builder: ClusterStreamBuilder,
    request: ClusterRequest | None = None,
) -> ResearchResponse:
    request = request or ClusterRequest()
    try:
        record = await cluster_research(
            lifecycle,
            research_id,
            stream_factory=stream_builder(request.model, request.max_keywords),
            max_keywords=request.max_keywords,
            clear_on_failure=request.clear_on_failure,
        )
    except KeywordScopeError as e:
        raise to_http_exception(e) from e
    return ResearchResponse(research=record)
