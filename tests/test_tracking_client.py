"""Tests for the HTTP API client and the live tracking publisher/subscriber.

The backend is simulated with ``httpx.MockTransport``.
"""

from __future__ import annotations

import json
import re

import httpx
import pytest

from src.client.api import ApiClient, ApiError
from src.client.device_store import DeviceStore
from src.client.tracking import (
    TrackingPublisher,
    TrackingSubscriber,
    new_tracking_code,
    snapshot_to_update,
)
from src.models.emergency import Contact, LocationSnapshot
from src.models.enums import DeliveryChannel


def _record(lat: float, lng: float, session_id: str = "TX-AB12CD") -> dict:
    return {
        "sessionId": session_id,
        "lat": lat,
        "lng": lng,
        "accuracy": 5.0,
        "speedKmh": 0.0,
        "battery": 50,
        "network": "wifi",
        "createdAt": 1_700_000_000_000,
        "updatedAt": 1_700_000_010_000,
    }


class SequenceBackend:
    """Serves queued tracking records for GET and records POST bodies."""

    def __init__(self, records: list[dict | None] | None = None) -> None:
        self.records = list(records or [])
        self.posted: list[dict] = []
        self.fail_posts = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            if self.fail_posts:
                return httpx.Response(500, json={"error": "SERVER_ERROR"})
            self.posted.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})
        record = self.records.pop(0) if self.records else None
        if record is None:
            return httpx.Response(404, json={"error": "NOT_FOUND"})
        return httpx.Response(200, json={"ok": True, "data": record})


def _client(backend) -> ApiClient:
    return ApiClient("http://aerobantu.test", transport=httpx.MockTransport(backend))


# -----------------------------------------------------------------------
# ApiClient
# -----------------------------------------------------------------------


class TestApiClient:
    async def test_send_alert_parses_results(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "ok": True,
                    "results": [{"id": "c1", "type": "SMS", "ok": False, "error": "bad number"}],
                    "authority": {"enabled": False},
                },
            )

        async with _client(handler) as client:
            response = await client.send_alert("help", [Contact(id="c1", name="A", phone="000")])

        assert seen[0].url.path == "/api/v1/dispatch/alert"
        body = json.loads(seen[0].content)
        assert body["contacts"][0] == {"id": "c1", "name": "A", "phone": "000", "email": ""}
        assert response.results[0].key == ("c1", DeliveryChannel.SMS)
        assert response.results[0].error == "bad number"

    async def test_error_status_raises_api_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "INVALID_INPUT"})

        async with _client(handler) as client:
            with pytest.raises(ApiError) as excinfo:
                await client.send_alert("", [])
        assert excinfo.value.status == 400
        assert str(excinfo.value) == "INVALID_INPUT"
        assert excinfo.value.not_found is False

    async def test_fetch_tracking_upper_cases_code(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True, "data": _record(1.0, 2.0)})

        async with _client(handler) as client:
            record = await client.fetch_tracking(" tx-ab12cd ")
        assert seen[0].url.path == "/api/v1/tracking/TX-AB12CD"
        assert record.session_id == "TX-AB12CD"


# -----------------------------------------------------------------------
# Publisher
# -----------------------------------------------------------------------


class TestTrackingPublisher:
    def test_code_format(self) -> None:
        assert re.fullmatch(r"TX-[A-Z0-9]{6}", new_tracking_code())

    def test_snapshot_conversion(self) -> None:
        fix = LocationSnapshot(latitude=1.5, longitude=2.5, accuracy=3, speed=10.0, battery_level=0.87, network_type="3g")
        update = snapshot_to_update("TX-AAAAAA", fix)
        assert update.speed_kmh == pytest.approx(36.0), "m/s should be converted to km/h"
        assert update.battery == 87, "battery fraction should become a percentage"
        assert update.network == "3g"

    async def test_publish_reuses_persisted_code(self) -> None:
        backend = SequenceBackend()
        store = DeviceStore()
        async with _client(backend) as client:
            publisher = TrackingPublisher(client, store)
            fix = LocationSnapshot(latitude=1, longitude=2)
            assert await publisher.publish(fix) is True
            assert await publisher.publish(fix) is True

        codes = {body["sessionId"] for body in backend.posted}
        assert len(codes) == 1, "every publish should use the same session code"
        assert codes == {store.state.tracking_session_id}

    async def test_publish_failure_swallowed(self) -> None:
        backend = SequenceBackend()
        backend.fail_posts = True
        async with _client(backend) as client:
            ok = await TrackingPublisher(client, DeviceStore()).publish(LocationSnapshot(latitude=1, longitude=2))
        assert ok is False


# -----------------------------------------------------------------------
# Subscriber
# -----------------------------------------------------------------------


class TestTrackingSubscriber:
    async def test_path_deduplicated(self) -> None:
        backend = SequenceBackend([_record(1, 1), _record(1, 1), _record(2, 2)])
        async with _client(backend) as client:
            subscriber = TrackingSubscriber(client)
            await subscriber.join("tx-ab12cd")
            await subscriber.refresh()
            await subscriber.refresh()

        assert subscriber.session_id == "TX-AB12CD"
        assert subscriber.path == [(1.0, 1.0), (2.0, 2.0)], "repeated positions should not extend the trail"
        assert subscriber.latest is not None and subscriber.latest.lat == 2

    async def test_path_capped(self) -> None:
        backend = SequenceBackend([_record(i, i) for i in range(5)])
        async with _client(backend) as client:
            subscriber = TrackingSubscriber(client, history_limit=3)
            await subscriber.join("TX-AB12CD")
            for _ in range(4):
                await subscriber.refresh()
        assert subscriber.path == [(2.0, 2.0), (3.0, 3.0), (4.0, 4.0)], "oldest points should drop off"

    async def test_not_found_reported_as_none(self) -> None:
        async with _client(SequenceBackend([None])) as client:
            subscriber = TrackingSubscriber(client)
            assert await subscriber.join("TX-GONE00") is None
        assert subscriber.latest is None

    async def test_join_resets_path(self) -> None:
        backend = SequenceBackend([_record(1, 1), _record(9, 9, "TX-OTHER1")])
        async with _client(backend) as client:
            subscriber = TrackingSubscriber(client)
            await subscriber.join("TX-AB12CD")
            await subscriber.join("TX-OTHER1")
        assert subscriber.path == [(9.0, 9.0)]

    async def test_refresh_before_join_rejected(self) -> None:
        async with _client(SequenceBackend()) as client:
            with pytest.raises(RuntimeError):
                await TrackingSubscriber(client).refresh()
