"""Dependencies wiring research routes to stores, buses, and upstream clients."""

from collections.abc import AsyncGenerator, Callable
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status

from keywordscope.config import settings
from keywordscope.core.exceptions import APIKeyMissingError
from keywordscope.core.redis import get_redis_client
from keywordscope.integrations.google_ads import GoogleAdsClient
from keywordscope.integrations.google_autocomplete import GoogleAutocompleteClient
from keywordscope.persistence.research_store import InMemoryResearchStore, ResearchStore
from keywordscope.services.cache_invalidation import (
    InvalidationBus,
    NullInvalidationBus,
    RedisInvalidationBus,
)
from keywordscope.services.research_lifecycle import ResearchLifecycleManager
from keywordscope.services.research_pipeline import ClusterStreamFactory, cluster_agent_stream
from keywordscope.services.suggestion_fanout import AutocompleteService
from keywordscope.services.volume_enrichment import VolumeDataService

GOOGLE_ADS_NOT_CONFIGURED_DETAIL = "Google Ads credentials are not configured"


@lru_cache
def get_research_store() -> ResearchStore:
    """Process-wide research store for the configured backend."""
    if settings.research_store_backend == "memory":
        return InMemoryResearchStore()

    from keywordscope.persistence.sql_store import SqlResearchStore

    return SqlResearchStore()


@lru_cache
def get_invalidation_bus() -> InvalidationBus:
    """Process-wide invalidation bus."""
    if not settings.cache_invalidation_enabled:
        return NullInvalidationBus()
    return RedisInvalidationBus(get_redis_client(), settings.cache_invalidation_channel)


def get_lifecycle_manager(
    store: Annotated[ResearchStore, Depends(get_research_store)],
    bus: Annotated[InvalidationBus, Depends(get_invalidation_bus)],
) -> ResearchLifecycleManager:
    return ResearchLifecycleManager(store, bus)


async def get_autocomplete() -> AsyncGenerator[AutocompleteService, None]:
    async with GoogleAutocompleteClient() as client:
        yield client


async def get_volume_service() -> AsyncGenerator[VolumeDataService, None]:
    try:
        client = GoogleAdsClient()
    except APIKeyMissingError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=GOOGLE_ADS_NOT_CONFIGURED_DETAIL,
        ) from None
    async with client:
        yield client


def get_cluster_stream_builder() -> Callable[[str | None, int | None], ClusterStreamFactory]:
    """Return the builder routes use to create a clustering stream factory."""
    return cluster_agent_stream


LifecycleManager = Annotated[ResearchLifecycleManager, Depends(get_lifecycle_manager)]
Autocomplete = Annotated[AutocompleteService, Depends(get_autocomplete)]
VolumeService = Annotated[VolumeDataService, Depends(get_volume_service)]
ClusterStreamBuilder = Annotated[
    Callable[[str | None, int | None], ClusterStreamFactory],
    Depends(get_cluster_stream_builder),
]
