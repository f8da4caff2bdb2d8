"""Live tracking API endpoints.

A publisher posts its latest position under a session code; anyone who
holds the code can poll for the latest snapshot until it expires.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

from src.api.errors import AppError, NotFoundError
from src.models.tracking import TrackingRecord, TrackingUpdate
from src.services.tracking import TrackingStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/tracking", tags=["tracking"])


class TrackingUpdateResponse(BaseModel):
    ok: bool = True


class TrackingFetchResponse(BaseModel):
    ok: bool = True
    data: TrackingRecord


def _store(request: Request) -> TrackingStore:
    store: TrackingStore | None = getattr(request.app.state, "tracking", None)
    if store is None:
        raise AppError("Tracking service not available", status_code=503, error_code="UNAVAILABLE")
    return store


@router.post("/update", response_model=TrackingUpdateResponse)
async def update_location(body: TrackingUpdate, request: Request) -> TrackingUpdateResponse:
    """Upsert the latest position for ``sessionId`` (last write wins)."""
    await _store(request).publish(body)
    return TrackingUpdateResponse()


@router.get("/{session_id}", response_model=TrackingFetchResponse, response_model_by_alias=True)
async def get_location(session_id: str, request: Request) -> TrackingFetchResponse:
    """Return the latest position, or 404 if unknown or expired."""
    record = await _store(request).fetch(session_id)
    if record is None:
        raise NotFoundError("Tracking session")
    return TrackingFetchResponse(data=record)
