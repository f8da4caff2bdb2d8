"""AeroBantu FastAPI application entry point.

Creates the FastAPI app, configures middleware and error handlers,
includes routers, and manages the lifecycle of the backend services
(record storage, tracking store, notification gateway, authority relay,
dispatch orchestrator).
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings
from src.api.errors import register_error_handlers
from src.api.router import api_router
from src.middleware.privacy import PrivacyMiddleware
from src.middleware.rate_limit import RateLimitMiddleware

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of the backend services.

    On startup:
      1. Record storage (Redis, or in-memory when unset)
      2. Tracking store and its expiry sweeper
      3. Notification gateway (SMS + email providers)
      4. Authority relay and dispatch orchestrator
      5. Gemini client for safe-zone lookups (only with an API key)

    On shutdown the sweeper is stopped and storage connections closed.
    """
    _configure_logging()
    logger.info("app.startup", env=settings.env, version=VERSION)
    app.state.start_time = time.time()

    # -- 1. Storage ---------------------------------------------------------
    from src.services.storage import RecordStore

    records = RecordStore(redis_url=settings.redis_url or None, namespace="aerobantu:tracking:")
    app.state.records = records

    # -- 2. Tracking --------------------------------------------------------
    from src.services.tracking import TrackingStore

    tracking = TrackingStore(records, ttl_ms=settings.tracking_ttl_ms)
    tracking.start_sweeper(settings.tracking_sweep_interval_seconds)
    app.state.tracking = tracking
    logger.info("app.tracking_initialised", ttl_ms=settings.tracking_ttl_ms)

    # -- 3. Notification gateway --------------------------------------------
    from src.services.notifications import NotificationGateway

    gateway = NotificationGateway.from_settings(settings)
    app.state.notifications = gateway

    # -- 4. Authority relay + dispatcher ------------------------------------
    from src.services.authority import AuthorityRelay
    from src.services.dispatch import DispatchOrchestrator

    authority = AuthorityRelay(
        settings.authority_webhook_url,
        token=settings.authority_webhook_token,
        timeout_ms=settings.authority_webhook_timeout_ms,
    )
    app.state.authority = authority
    app.state.dispatcher = DispatchOrchestrator(gateway, authority)
    logger.info("app.dispatcher_initialised", authority_enabled=authority.enabled)

    # -- 5. Gemini ----------------------------------------------------------
    from src.services.llm import GeminiMessageWriter

    app.state.gemini = GeminiMessageWriter.from_settings(settings)
    logger.info("app.gemini_initialised", enabled=app.state.gemini is not None)

    logger.info("app.startup_complete")

    yield

    logger.info("app.shutdown_start")
    await tracking.stop_sweeper()
    await records.close()
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    app = FastAPI(
        title="AeroBantu API",
        description=(
            "AeroBantu personal safety backend -- SOS dispatch to SMS / email "
            "contacts and live location tracking sessions."
        ),
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
    )

    if settings.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origin_list,
            allow_credentials=False,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type", "Authorization"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.add_middleware(PrivacyMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests_per_minute=settings.rate_limit_per_minute,
        trusted_proxy_count=settings.trusted_proxy_count,
    )

    register_error_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("src.main:app", host=settings.api_host, port=settings.api_port)
