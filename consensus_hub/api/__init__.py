"""API routes for ConsensusHub."""

from fastapi import APIRouter

from .discussions import router as discussions_router
from .jobs import router as jobs_router
from .notifications import router as notifications_router

# Main API router
api_router = APIRouter()

api_router.include_router(discussions_router)

# User routes (/me/*)
api_router.include_router(notifications_router)

# Scheduler trigger
api_router.include_router(jobs_router)

__all__ = ["api_router"]
