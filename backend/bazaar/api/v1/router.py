"""
API v1 router aggregation.

WHAT: Combine all v1 endpoint routers
WHY: Single place to register all API routes
HOW: Include routers from endpoints under /api/v1
"""

from fastapi import APIRouter

from .endpoints import agents, marketplace, negotiation, status, streaming

# Create main v1 router
api_router = APIRouter()

api_router.include_router(status.router, prefix="/api/v1", tags=["status"])
api_router.include_router(marketplace.router, prefix="/api/v1", tags=["marketplace"])
api_router.include_router(negotiation.router, prefix="/api/v1", tags=["negotiation"])
api_router.include_router(streaming.router, prefix="/api/v1", tags=["streaming"])
api_router.include_router(agents.router, prefix="/api/v1", tags=["agents"])
