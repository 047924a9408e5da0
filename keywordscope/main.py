"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from keywordscope.api.v1.dependencies import get_invalidation_bus
from keywordscope.api.v1.router import api_router
from keywordscope.config import settings
from keywordscope.core.logging import setup_logging
from keywordscope.core.redis import close_redis
from keywordscope.services.cache_invalidation import RedisInvalidationBus

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    setup_logging()

    logger.info(
        "Starting KeywordScope",
        extra={
            "environment": settings.environment,
            "version": settings.app_version,
            "store_backend": settings.research_store_backend,
            "model_clustering": settings.get_clustering_model(),
            "google_ads_configured": settings.google_ads_configured,
        },
    )

    use_sql = settings.research_store_backend == "sql"
    if use_sql and settings.environment == "development":
        from keywordscope.core.database import init_db

        await init_db()
        logger.info("Development database initialized")

    yield

    logger.info("Shutting down KeywordScope")
    bus = get_invalidation_bus()
    if isinstance(bus, RedisInvalidationBus):
        await bus.drain()
    await close_redis()
    if use_sql:
        from keywordscope.core.database import close_db

        await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Keyword research service: autocomplete fan-out, search volume "
            "enrichment, and LLM topic clustering"
        ),
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        cast(Any, CORSMiddleware),
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get(
        "/health",
        summary="Health check",
        description="Return service health status and backend version information.",
    )
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "version": settings.app_version}

    return app


app = create_app()
