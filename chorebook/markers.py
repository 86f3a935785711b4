import redis.asyncio as redis

from .config import MARKER_TTL_SECONDS, REDIS_URL

MARKER_FAILED = "failed"
MARKER_SUCCESS = "success"


def marker_key(booking_id: str, order_id: str) -> str:
    return f"payment_verification:{booking_id}:{order_id}"


class MemoryMarkerStore:
    """Session markers held in-process. Write-once, never cleared."""

    def __init__(self):
        self._markers: dict[str, str] = {}

    async def get(self, booking_id: str, order_id: str) -> str | None:
        return self._markers.get(marker_key(booking_id, order_id))

    async def mark(self, booking_id: str, order_id: str, outcome: str) -> bool:
        key = marker_key(booking_id, order_id)
        if key in self._markers:
            return False
        self._markers[key] = outcome
        return True


class RedisMarkerStore:
    """
    Session markers in Redis so a restarted client process sees the same
    blocks. SET NX keeps them write-once; the TTL bounds the session.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = MARKER_TTL_SECONDS):
        self._redis = client
        self._ttl = ttl_seconds

    async def get(self, booking_id: str, order_id: str) -> str | None:
        return await self._redis.get(marker_key(booking_id, order_id))

    async def mark(self, booking_id: str, order_id: str, outcome: str) -> bool:
        stored = await self._redis.set(marker_key(booking_id, order_id), outcome, nx=True, ex=self._ttl)
        return bool(stored)


def make_marker_store(redis_url: str | None = REDIS_URL):
    if not redis_url:
        return MemoryMarkerStore()
    return RedisMarkerStore(redis.from_url(redis_url, decode_responses=True))
