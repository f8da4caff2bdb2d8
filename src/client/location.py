"""Location acquisition for the emergency and tracking clients."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol

import structlog

from src.models.emergency import LocationSnapshot

logger = structlog.get_logger(__name__)


class LocationProvider(Protocol):
    """Anything that can produce a position fix (GPS, browser bridge, ...)."""

    async def current_position(self) -> LocationSnapshot: ...


class LocationPoller:
    """Acquire a fix immediately, then every *interval_seconds*.

    Each successful fix is handed to *on_fix*.  Failures are logged and
    skipped; polling continues until :meth:`stop` is called.
    """

    def __init__(
        self,
        provider: LocationProvider,
        on_fix: Callable[[LocationSnapshot], None],
        *,
        interval_seconds: float = 10.0,
    ) -> None:
        self._provider = provider
        self._on_fix = on_fix
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def poll_once(self) -> LocationSnapshot | None:
        try:
            fix = await self._provider.current_position()
        except Exception as exc:
            logger.debug("location.fix_failed", error=str(exc))
            return None
        self._on_fix(fix)
        return fix

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self._interval)
