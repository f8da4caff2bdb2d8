"""Async HTTP client for the AeroBantu JSON API.

Every non-2xx response raises :class:`ApiError` carrying the status code
and the decoded payload; transport failures propagate as ``httpx``
exceptions.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.models.dispatch import DispatchAlertResponse, DispatchContact
from src.models.emergency import Contact
from src.models.tracking import TrackingRecord, TrackingUpdate

logger = structlog.get_logger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, status: int, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload

    @property
    def not_found(self) -> bool:
        return self.status == 404


class ApiClient:
    """Thin wrapper around :class:`httpx.AsyncClient` bound to ``/api/v1``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api/v1",
            timeout=timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        response = await self._client.request(method, path, json=json)
        is_json = "application/json" in response.headers.get("content-type", "")
        try:
            payload = response.json() if is_json else response.text
        except ValueError:
            payload = None

        if response.is_error:
            message = ""
            if isinstance(payload, dict):
                message = payload.get("error") or payload.get("message") or ""
            raise ApiError(message or f"Request failed ({response.status_code})", response.status_code, payload)
        return payload

    # -- Dispatch ----------------------------------------------------------

    async def send_alert(self, message: str, contacts: list[Contact]) -> DispatchAlertResponse:
        body = {
            "message": message,
            "contacts": [
                DispatchContact(id=c.id, name=c.name, phone=c.phone, email=c.email).model_dump()
                for c in contacts
            ],
        }
        payload = await self._request("POST", "/dispatch/alert", json=body)
        return DispatchAlertResponse.model_validate(payload)

    # -- Tracking ----------------------------------------------------------

    async def update_tracking(self, update: TrackingUpdate) -> None:
        await self._request("POST", "/tracking/update", json=update.model_dump(by_alias=True))

    async def fetch_tracking(self, session_id: str) -> TrackingRecord:
        payload = await self._request("GET", f"/tracking/{session_id.strip().upper()}")
        return TrackingRecord.model_validate(payload["data"])
