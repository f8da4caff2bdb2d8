"""Authority relay: best-effort webhook to an external dispatch provider.

Emergency services are not reachable through a public API, so alerts
are forwarded to a configured monitoring / dispatch provider webhook
(private security control room, armed-response network, ...).

The relay never raises.  Its outcome is informational:

* no URL configured   -> ``{"enabled": False}``
* 2xx                 -> ``{"enabled": True, "ok": True, "status": <code>}``
* non-2xx             -> ``{"enabled": True, "ok": False, "error": "HTTP_<code>[:<body>]"}``
* timeout             -> ``{"enabled": True, "ok": False, "error": "TIMEOUT"}``
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog

from src.models.dispatch import AuthorityResult, DispatchContact

logger = structlog.get_logger(__name__)


class AuthorityRelay:
    __slots__ = ("_timeout_seconds", "_token", "_transport", "_url")

    def __init__(
        self,
        url: str = "",
        *,
        token: str = "",
        timeout_ms: int = 5_000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._token = token
        self._timeout_seconds = timeout_ms / 1000
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def relay(self, message: str, contacts: list[DispatchContact]) -> AuthorityResult:
        if not self._url:
            return AuthorityResult(enabled=False)

        payload: dict[str, Any] = {
            "message": message,
            "contacts": [c.model_dump(exclude_none=True) for c in contacts],
            "meta": {"ts": int(time.time() * 1000)},
        }
        headers = {"content-type": "application/json"}
        if self._token:
            headers["authorization"] = f"Bearer {self._token}"

        try:
            # httpx timeouts are per phase; bound the whole exchange.
            response = await asyncio.wait_for(self._post(payload, headers), timeout=self._timeout_seconds)
        except (httpx.TimeoutException, TimeoutError):
            logger.warning("authority.timeout", timeout_seconds=self._timeout_seconds)
            return AuthorityResult(enabled=True, ok=False, error="TIMEOUT")
        except httpx.HTTPError as exc:
            logger.warning("authority.request_failed", error=str(exc))
            return AuthorityResult(enabled=True, ok=False, error=str(exc) or "FAILED")

        if not response.is_success:
            body = response.text[:200]
            error = f"HTTP_{response.status_code}{f':{body}' if body else ''}"
            logger.warning("authority.rejected", status=response.status_code)
            return AuthorityResult(enabled=True, ok=False, error=error)

        logger.info("authority.relayed", status=response.status_code)
        return AuthorityResult(enabled=True, ok=True, status=response.status_code)

    async def _post(self, payload: dict[str, Any], headers: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
            return await client.post(self._url, json=payload, headers=headers)
