"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the FastAPI
application only needs to include a single router.

Includes:
    * Dispatch: SOS fan-out to SMS / email contacts
    * Tracking: live latest-position sessions
    * Safety: nearby safe places (Gemini with map grounding)
    * Health: liveness and readiness probes
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api.v1 import dispatch, health, safety, tracking

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(dispatch.router)
api_router.include_router(tracking.router)
api_router.include_router(safety.router)
api_router.include_router(health.router)
