"""Tests for the location poller."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from src.client.location import LocationPoller
from src.models.emergency import LocationSnapshot

_FIX = LocationSnapshot(latitude=-25.7479, longitude=28.2293)


class TestLocationPoller:
    async def test_immediate_fix_then_interval(self) -> None:
        provider = MagicMock()
        provider.current_position = AsyncMock(return_value=_FIX)
        on_fix = MagicMock()
        poller = LocationPoller(provider, on_fix, interval_seconds=0.01)

        poller.start()
        await asyncio.sleep(0)
        assert on_fix.call_count == 1, "the first fix should be taken immediately"

        await asyncio.sleep(0.05)
        await poller.stop()
        assert on_fix.call_count >= 2, "fixes should keep coming on the interval"
        assert poller.running is False

    async def test_failures_ignored(self) -> None:
        provider = MagicMock()
        provider.current_position = AsyncMock(side_effect=[PermissionError("denied"), _FIX])
        on_fix = MagicMock()
        poller = LocationPoller(provider, on_fix)

        assert await poller.poll_once() is None
        assert await poller.poll_once() == _FIX
        on_fix.assert_called_once_with(_FIX)

    async def test_stop_without_start(self) -> None:
        poller = LocationPoller(MagicMock(), MagicMock())
        await poller.stop()
        assert poller.running is False
