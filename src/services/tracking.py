"""Live tracking session store.

Holds exactly one latest-known position per session code.  Publishers
upsert; subscribers read.  Expiry is logical: a record whose
``updated_at`` is older than the configured TTL is reported as absent,
whether or not it has been physically removed yet.  Physical removal is
best effort (backend TTL plus a periodic sweep).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Final

import structlog

from src.models.tracking import TrackingRecord, TrackingUpdate
from src.services.storage import RecordStore, ttl_ms_to_seconds

logger = structlog.get_logger(__name__)

# Extra time records are physically retained past the logical TTL.
_PHYSICAL_GRACE_SECONDS: Final[int] = 60


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class TrackingStore:
    """Single-writer-per-session latest-position cache.

    Concurrent publishes to the same session are last-write-wins by
    arrival order; ordering by the client's own timestamp is not
    attempted.
    """

    __slots__ = ("_clock", "_records", "_sweep_task", "_ttl_ms")

    def __init__(
        self,
        records: RecordStore,
        *,
        ttl_ms: int = 86_400_000,
        clock: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._records = records
        self._ttl_ms = ttl_ms
        self._clock = clock
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    @staticmethod
    def normalise_session_id(session_id: str) -> str:
        return session_id.strip().upper()

    async def publish(self, update: TrackingUpdate) -> TrackingRecord:
        """Upsert the latest snapshot for ``update.session_id``."""
        session_id = self.normalise_session_id(update.session_id)
        now = self._clock()

        existing = await self._load(session_id)
        created_at = existing.created_at if existing is not None and not self._expired(existing, now) else now

        record = TrackingRecord(
            session_id=session_id,
            lat=update.lat,
            lng=update.lng,
            accuracy=update.accuracy,
            speed_kmh=update.speed_kmh,
            battery=update.battery,
            network=update.network,
            created_at=created_at,
            updated_at=now,
        )
        await self._records.put(
            session_id,
            record.model_dump(),
            ttl_seconds=ttl_ms_to_seconds(self._ttl_ms) + _PHYSICAL_GRACE_SECONDS,
        )
        logger.debug("tracking.published", session_id=session_id, fresh=created_at == now)
        return record

    async def fetch(self, session_id: str) -> TrackingRecord | None:
        """Return the latest record, or *None* if absent or expired."""
        session_id = self.normalise_session_id(session_id)
        record = await self._load(session_id)
        if record is None or self._expired(record, self._clock()):
            return None
        return record

    async def _load(self, session_id: str) -> TrackingRecord | None:
        raw = await self._records.get(session_id)
        if raw is None:
            return None
        return TrackingRecord.model_validate(raw)

    def _expired(self, record: TrackingRecord, now: int) -> bool:
        return record.is_expired(now, self._ttl_ms)

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def sweep(self) -> int:
        removed = await self._records.purge_expired()
        if removed:
            logger.info("tracking.sweep", removed=removed)
        return removed

    def start_sweeper(self, interval_seconds: float) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop(interval_seconds))

    async def stop_sweeper(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.warning("tracking.sweep_failed", exc_info=True)
