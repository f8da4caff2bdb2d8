"""Key/value record storage backed by Redis or process memory.

Backs the live tracking store.  When Redis is configured every server
instance talks to the same Redis and no correctness-relevant state lives
in process memory; Redis failures surface as 503s.  Without Redis (local
development, tests) records live in a process-local dictionary with the
same TTL semantics.
"""

from __future__ import annotations

import asyncio
import contextlib
import math
import time
from typing import Any, Protocol, runtime_checkable

import orjson
import structlog

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class RecordBackend(Protocol):
    """Async byte-oriented record backend."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisRecordBackend:
    """Redis-backed records using ``redis.asyncio`` with connection pooling.

    Physical expiry is delegated to Redis (``SET ... EX``).
    """

    __slots__ = ("_pool", "_redis")

    def __init__(self, url: str, *, max_connections: int = 20) -> None:
        import redis.asyncio as aioredis

        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)

    async def get(self, key: str) -> bytes | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        if ttl_seconds is not None:
            await self._redis.set(key, value, ex=ttl_seconds)
        else:
            await self._redis.set(key, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()

    async def ping(self) -> bool:
        """Return *True* if the Redis server is reachable."""
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class _Entry:
    __slots__ = ("expires_at", "value")

    def __init__(self, value: bytes, ttl_seconds: int | None) -> None:
        self.value = value
        self.expires_at: float | None = (time.monotonic() + ttl_seconds) if ttl_seconds is not None else None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class InMemoryRecordBackend:
    """Dictionary-backed records guarded by an :class:`asyncio.Lock`.

    Expired entries are evicted lazily on access and in bulk by
    :meth:`purge_expired`, which the application runs on a timer.
    """

    __slots__ = ("_data", "_lock")

    def __init__(self) -> None:
        self._data: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.expired(time.monotonic()):
                del self._data[key]
                return None
            return entry.value

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        async with self._lock:
            self._data[key] = _Entry(value, ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = time.monotonic()
        async with self._lock:
            stale = [key for key, entry in self._data.items() if entry.expired(now)]
            for key in stale:
                del self._data[key]
        return len(stale)

    @property
    def size(self) -> int:
        """Number of stored (possibly expired) entries."""
        return len(self._data)


# ---------------------------------------------------------------------------
# RecordStore  --  public API
# ---------------------------------------------------------------------------


def ttl_ms_to_seconds(ttl_ms: int) -> int:
    """Round a millisecond TTL up to whole seconds (minimum 1)."""
    return max(1, math.ceil(ttl_ms / 1000))


class StorageUnavailableError(RuntimeError):
    """The configured Redis backend could not serve a request."""


class RecordStore:
    """JSON record facade over Redis, or process memory when Redis is not configured.

    With a ``redis_url`` Redis is the only backend: a failing call raises
    :class:`StorageUnavailableError` instead of writing to memory, which
    other instances could never see.

    Parameters
    ----------
    redis_url:
        Redis connection string.  Pass *None* or ``""`` to use memory.
    namespace:
        Prefix prepended to every key (e.g. ``"tracking:"``).
    """

    __slots__ = ("_memory", "_namespace", "_redis", "_redis_checked")

    def __init__(self, *, redis_url: str | None = None, namespace: str = "") -> None:
        self._namespace = namespace
        self._memory = InMemoryRecordBackend()
        self._redis: RedisRecordBackend | None = RedisRecordBackend(url=redis_url) if redis_url else None
        self._redis_checked = False

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def _ensure_checked(self) -> None:
        if self._redis is not None and not self._redis_checked:
            self._redis_checked = True
            if await self._redis.ping():
                logger.info("storage.redis_connected", namespace=self._namespace)
            else:
                logger.warning("storage.redis_unreachable", namespace=self._namespace)

    async def _op(self, method: str, key: str, *args: Any, **kwargs: Any) -> Any:
        if self._redis is None:
            return await getattr(self._memory, method)(key, *args, **kwargs)
        await self._ensure_checked()
        try:
            return await getattr(self._redis, method)(key, *args, **kwargs)
        except Exception as exc:
            logger.error("storage.redis_op_failed", method=method, key=key, error=str(exc))
            raise StorageUnavailableError(f"redis {method} failed") from exc

    @property
    def backend_name(self) -> str:
        return "redis" if self._redis is not None else "memory"

    async def get(self, key: str) -> dict[str, Any] | None:
        raw: bytes | None = await self._op("get", self._make_key(key))
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("storage.corrupt_record", key=key)
            return None

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> None:
        await self._op("set", self._make_key(key), orjson.dumps(value), ttl_seconds=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._op("delete", self._make_key(key))

    async def purge_expired(self) -> int:
        """Purge expired in-memory entries.  Redis expires keys on its own."""
        if self._redis is not None:
            return 0
        return await self._memory.purge_expired()

    async def ping(self) -> bool:
        if self._redis is not None:
            return await self._redis.ping()
        return True

    async def close(self) -> None:
        """Cleanly shut down the Redis connection pool (if any)."""
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()
