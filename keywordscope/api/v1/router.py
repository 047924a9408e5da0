"""API v1 router aggregator."""

from fastapi import APIRouter

from keywordscope.api.v1.research.routes import router as research_router

api_router = APIRouter()

api_router.include_router(research_router, prefix="/research", tags=["Research"])
