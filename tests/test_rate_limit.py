"""Tests for the sliding-window rate limiter and its middleware."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from src.middleware.rate_limit import RateLimitMiddleware, SlidingWindowLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestSlidingWindowLimiter:
    async def test_allows_up_to_limit(self) -> None:
        limiter = SlidingWindowLimiter(3, clock=FakeClock())
        results = [await limiter.hit("1.2.3.4") for _ in range(3)]
        assert [allowed for allowed, _ in results] == [True, True, True]
        assert [remaining for _, remaining in results] == [2, 1, 0], "remaining budget should count down"

    async def test_blocks_over_limit_with_retry_after(self) -> None:
        clock = FakeClock()
        limiter = SlidingWindowLimiter(2, window_seconds=60, clock=clock)
        await limiter.hit("ip")
        await limiter.hit("ip")

        allowed, retry_after = await limiter.hit("ip")
        assert allowed is False, "third hit inside the window should be rejected"
        assert 1 <= retry_after <= 61

    async def test_window_slides(self) -> None:
        clock = FakeClock()
        limiter = SlidingWindowLimiter(1, window_seconds=60, clock=clock)
        await limiter.hit("ip")
        clock.now += 61
        allowed, _ = await limiter.hit("ip")
        assert allowed is True, "hits older than the window should be forgotten"

    async def test_keys_are_independent(self) -> None:
        limiter = SlidingWindowLimiter(1, clock=FakeClock())
        await limiter.hit("a")
        allowed, _ = await limiter.hit("b")
        assert allowed is True

    async def test_prune_drops_idle_keys(self) -> None:
        clock = FakeClock()
        limiter = SlidingWindowLimiter(5, window_seconds=10, clock=clock)
        await limiter.hit("a")
        clock.now += 11
        assert await limiter.prune() == 1


def _app(limit: int) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, max_requests_per_minute=limit, trusted_proxy_count=1)

    @app.get("/api/v1/ping")
    async def ping() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/api/v1/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    return app


class TestRateLimitMiddleware:
    def test_returns_429_when_exceeded(self) -> None:
        client = TestClient(_app(2))
        assert client.get("/api/v1/ping").status_code == 200
        assert client.get("/api/v1/ping").status_code == 200

        response = client.get("/api/v1/ping")
        assert response.status_code == 429
        assert response.json()["error"] == "RATE_LIMITED"
        assert "Retry-After" in response.headers

    def test_health_exempt(self) -> None:
        client = TestClient(_app(1))
        for _ in range(5):
            assert client.get("/api/v1/health").status_code == 200, "health probes are never limited"

    def test_forwarded_for_respected(self) -> None:
        client = TestClient(_app(1))
        first = client.get("/api/v1/ping", headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.1"})
        second = client.get("/api/v1/ping", headers={"X-Forwarded-For": "10.0.0.2, 172.16.0.1"})
        assert first.status_code == 200
        assert second.status_code == 200, "different clients behind the proxy have separate budgets"

    def test_single_spoofed_forwarded_for_uses_peer_address(self) -> None:
        client = TestClient(_app(1))
        first = client.get("/api/v1/ping", headers={"X-Forwarded-For": "203.0.113.1"})
        second = client.get("/api/v1/ping", headers={"X-Forwarded-For": "203.0.113.2"})
        assert first.status_code == 200
        assert second.status_code == 429, "rotating a forged header must not buy a fresh budget"

    def test_client_ip_resolution(self) -> None:
        middleware = RateLimitMiddleware(FastAPI(), trusted_proxy_count=1)

        def request(forwarded_for: str | None) -> Request:
            headers = [(b"x-forwarded-for", forwarded_for.encode())] if forwarded_for else []
            return Request({"type": "http", "headers": headers, "client": ("198.51.100.7", 5000)})

        assert middleware._client_ip(request("10.0.0.1, 172.16.0.1")) == "10.0.0.1"
        assert middleware._client_ip(request("9.9.9.9, 10.0.0.1, 172.16.0.1")) == "10.0.0.1"
        assert middleware._client_ip(request("203.0.113.1")) == "198.51.100.7"
        assert middleware._client_ip(request(None)) == "198.51.100.7"
