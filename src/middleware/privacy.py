"""Privacy middleware and PII masking helpers.

Contact phone numbers and email addresses flow through the dispatch
fan-out; they are masked with :func:`mask_target` before they reach any
log line.  The middleware logs requests without PII and adds privacy
headers to every response.
"""

from __future__ import annotations

import re
from typing import Final

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# PII masking
# ---------------------------------------------------------------------------

_EMAIL_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b"
)

# Any run of 5+ digits, optionally with a leading "+" and separators.
_PHONE_PATTERN: Final[re.Pattern[str]] = re.compile(r"\+?\d[\d\s-]{3,}\d")

# The last path segment of a tracking URL is a session code.
_TRACKING_PATH: Final[re.Pattern[str]] = re.compile(r"^(/api/v1/tracking/)(?!update$)[^/]+$")


def mask_email(text: str) -> str:
    """``guardian@example.co.za`` becomes ``g***@example.co.za``."""
    return _EMAIL_PATTERN.sub(lambda m: f"{m.group(1)}***@{m.group(2)}", text)


def mask_phone(text: str) -> str:
    """Mask digit runs, preserving only the last 3 digits.

    ``+27 82 123 4567`` becomes ``********567``.
    """

    def _mask(match: re.Match[str]) -> str:
        digits = re.sub(r"\D", "", match.group(0))
        return "*" * max(0, len(digits) - 3) + digits[-3:]

    return _PHONE_PATTERN.sub(_mask, text)


def mask_target(target: str) -> str:
    """Mask a dispatch target (email address or phone number)."""
    if "@" in target:
        return mask_email(target)
    return mask_phone(target)


def redact_path(path: str) -> str:
    """Hide session codes in tracking URLs."""
    return _TRACKING_PATH.sub(r"\1<session>", path)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class PrivacyMiddleware(BaseHTTPMiddleware):
    """Logs requests without PII and adds privacy headers to responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        logger.info(
            "request.incoming",
            method=request.method,
            path=redact_path(request.url.path),
        )

        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(self), geolocation=(self)"
        # Locations and contact lists must never be cached by intermediaries.
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
        response.headers["Pragma"] = "no-cache"

        return response
