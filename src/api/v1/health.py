"""Health check endpoints.

Liveness and readiness probes for container deployments.  Readiness
verifies the tracking store backend and that the dispatcher is wired.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Readiness check response with individual service statuses."""

    status: str
    checks: dict[str, str]


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.  Does *not* check downstream dependencies."""
    start_time: float = getattr(request.app.state, "start_time", time.time())
    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(time.time() - start_time, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe."""
    checks: dict[str, str] = {}
    all_ok = True

    records = getattr(request.app.state, "records", None)
    if records is not None:
        try:
            if await records.ping():
                checks["storage"] = f"ok ({records.backend_name})"
            else:
                checks["storage"] = "degraded"
                all_ok = False
        except Exception as exc:
            checks["storage"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["storage"] = "not_configured"
        all_ok = False

    if getattr(request.app.state, "dispatcher", None) is not None:
        checks["dispatcher"] = "ok"
    else:
        checks["dispatcher"] = "not_initialised"
        all_ok = False

    authority = getattr(request.app.state, "authority", None)
    checks["authority_relay"] = "enabled" if authority is not None and authority.enabled else "disabled"

    status = "ready" if all_ok else "degraded"
    logger.info("health.readiness_check", status=status, checks=checks)
    return ReadinessResponse(status=status, checks=checks)
