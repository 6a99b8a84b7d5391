"""API routers for the settlement engine."""
from fastapi import APIRouter

from . import apikeys, disputes, engagements, events, health, holds


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(engagements.router)
    api_router.include_router(holds.router)
    api_router.include_router(disputes.router)
    api_router.include_router(events.router)
    api_router.include_router(apikeys.router)
    return api_router
