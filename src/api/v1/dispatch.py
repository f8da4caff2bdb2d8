"""Emergency dispatch API endpoint.

Fans a distress message out to SMS and email for every contact and
reports the outcome of each channel individually.  The endpoint
answers ``ok: true`` whenever the fan-out ran, even if every single
channel failed; only malformed input is rejected.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request

from src.api.errors import AppError, InvalidInputError
from src.models.dispatch import DispatchAlertRequest, DispatchAlertResponse
from src.services.dispatch import DispatchOrchestrator, InvalidDispatchRequest

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


@router.post("/alert", response_model=DispatchAlertResponse, response_model_exclude_none=True)
async def dispatch_alert(body: DispatchAlertRequest, request: Request) -> DispatchAlertResponse:
    """Send an SOS alert to every channel of every listed contact."""
    orchestrator: DispatchOrchestrator | None = getattr(request.app.state, "dispatcher", None)
    if orchestrator is None:
        raise AppError("Dispatch service not available", status_code=503, error_code="UNAVAILABLE")

    try:
        outcome = await orchestrator.dispatch(body.message, body.contacts)
    except InvalidDispatchRequest as exc:
        raise InvalidInputError(str(exc)) from None

    return DispatchAlertResponse(ok=True, results=outcome.results, authority=outcome.authority)
