"""Reusable API dependencies shared across v1 routes."""

from keywordscope.api.v1.dependencies.research import (
    Autocomplete,
    ClusterStreamBuilder,
    LifecycleManager,
    VolumeService,
    get_autocomplete,
    get_cluster_stream_builder,
    get_invalidation_bus,
    get_lifecycle_manager,
    get_research_store,
    get_volume_service,
)

__all__ = [
    "Autocomplete",
    "ClusterStreamBuilder",
    "LifecycleManager",
    "VolumeService",
    "get_autocomplete",
    "get_cluster_stream_builder",
    "get_invalidation_bus",
    "get_lifecycle_manager",
    "get_research_store",
    "get_volume_service",
]
