"""Application error hierarchy and JSON error handlers.

Every error response has the shape ``{"error": "<CODE>"}``; outside
production a human-readable ``detail`` is included as well.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config.settings import settings
from src.services.storage import StorageUnavailableError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class AppError(Exception):
    """Base exception for errors surfaced to API callers."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "SERVER_ERROR",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code


class InvalidInputError(AppError):
    """Malformed request (400).  No side effects have happened."""

    def __init__(self, message: str = "Invalid input") -> None:
        super().__init__(message, status_code=400, error_code="INVALID_INPUT")


class NotFoundError(AppError):
    """Resource absent (404).  Also used for logically expired records."""

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found", status_code=404, error_code="NOT_FOUND")


def _body(error_code: str, detail: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"error": error_code}
    if not settings.is_production and detail:
        body["detail"] = detail
    return body


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("api.error", path=request.url.path, error_code=exc.error_code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=_body(exc.error_code, exc.message))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("api.invalid_input", path=request.url.path, errors=len(exc.errors()))
    detail = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=_body("INVALID_INPUT", detail))


async def _storage_unavailable_handler(request: Request, exc: StorageUnavailableError) -> JSONResponse:
    logger.error("api.storage_unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content=_body("UNAVAILABLE", "Storage backend unavailable"))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("api.unhandled_error", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "SERVER_ERROR"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StorageUnavailableError, _storage_unavailable_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)
