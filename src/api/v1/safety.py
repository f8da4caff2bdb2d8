"""Safe-zone lookup endpoint.

Lists police stations, hospitals and rescue points near a position
using Gemini with Google Maps grounding.  Unavailable (503) when no
Gemini API key is configured.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from src.api.errors import AppError
from src.models.safety import SafePlacesResult
from src.services.llm import GeminiMessageWriter

router = APIRouter(prefix="/safety", tags=["safety"])


class SafePlacesResponse(SafePlacesResult):
    ok: bool = True


@router.get("/nearby", response_model=SafePlacesResponse)
async def nearby_safe_places(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
) -> SafePlacesResponse:
    writer: GeminiMessageWriter | None = getattr(request.app.state, "gemini", None)
    if writer is None:
        raise AppError("Safe-zone lookup not configured", status_code=503, error_code="UNAVAILABLE")
    result = await writer.find_nearby_safe_places(lat, lng)
    return SafePlacesResponse(text=result.text, places=result.places)
