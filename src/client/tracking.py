"""Live tracking clients.

:class:`TrackingPublisher` pushes the device's position under a stable
``TX-XXXXXX`` code kept in the device store.  :class:`TrackingSubscriber`
follows someone else's code, keeping a short de-duplicated trail.
"""

from __future__ import annotations

import secrets
import string
from collections import deque
from typing import Final

import httpx
import structlog

from src.client.api import ApiClient, ApiError
from src.client.device_store import DeviceStore
from src.models.emergency import LocationSnapshot
from src.models.tracking import TrackingRecord, TrackingUpdate

logger = structlog.get_logger(__name__)

PATH_HISTORY_LIMIT: Final[int] = 50
_CODE_ALPHABET: Final[str] = string.ascii_uppercase + string.digits


def new_tracking_code() -> str:
    return "TX-" + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))


def snapshot_to_update(session_id: str, fix: LocationSnapshot) -> TrackingUpdate:
    """Convert a raw fix to the wire payload (km/h, battery percent)."""
    return TrackingUpdate(
        session_id=session_id,
        lat=fix.latitude,
        lng=fix.longitude,
        accuracy=fix.accuracy,
        speed_kmh=fix.speed_kmh,
        battery=fix.battery_percent,
        network=fix.network_type,
    )


class TrackingPublisher:
    def __init__(self, client: ApiClient, store: DeviceStore) -> None:
        self._client = client
        self._store = store

    @property
    def session_id(self) -> str:
        return self._store.tracking_session_id(new_tracking_code)

    async def publish(self, fix: LocationSnapshot) -> bool:
        """Send *fix*; failures are logged and reported as ``False``."""
        update = snapshot_to_update(self.session_id, fix)
        try:
            await self._client.update_tracking(update)
        except (ApiError, httpx.HTTPError) as exc:
            logger.warning("tracking.publish_failed", error=str(exc))
            return False
        return True


class TrackingSubscriber:
    """Follow one tracking code and remember where it has been."""

    def __init__(self, client: ApiClient, *, history_limit: int = PATH_HISTORY_LIMIT) -> None:
        self._client = client
        self._session_id: str | None = None
        self._latest: TrackingRecord | None = None
        self._path: deque[tuple[float, float]] = deque(maxlen=history_limit)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def latest(self) -> TrackingRecord | None:
        return self._latest

    @property
    def path(self) -> list[tuple[float, float]]:
        return list(self._path)

    async def join(self, code: str) -> TrackingRecord | None:
        """Switch to *code*, clearing the previous trail, and fetch once."""
        self._session_id = code.strip().upper()
        self._latest = None
        self._path.clear()
        return await self.refresh()

    async def refresh(self) -> TrackingRecord | None:
        """Fetch the latest snapshot; ``None`` when missing or expired."""
        if self._session_id is None:
            raise RuntimeError("join() a tracking code first")
        try:
            record = await self._client.fetch_tracking(self._session_id)
        except ApiError as exc:
            if exc.not_found:
                self._latest = None
                return None
            raise

        point = (record.lat, record.lng)
        if not self._path or self._path[-1] != point:
            self._path.append(point)
        self._latest = record
        return record
