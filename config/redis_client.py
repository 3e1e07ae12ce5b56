"""
config/redis_client.py
Async Redis client for per-booking transition locks, the JWT
deny-list and the unauthenticated request counter.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import redis.asyncio as aioredis

from config.settings import settings
from shared.utils.errors import ConflictError


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    await redis_client.ping()


async def close_redis() -> None:
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


def _booking_key(booking_id: int) -> str:
    return f"booking_lock:{booking_id}"


class RedisCache:
    """Key patterns used by the marketplace API."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── Booking transition locks ─────────────────────────────
    async def lock_booking(self, booking_id: int, holder: str) -> bool:
        """SET NX with a TTL; False when another transition holds the booking."""
        acquired = await self.client.set(
            _booking_key(booking_id),
            holder,
            ex=settings.BOOKING_LOCK_TTL_SECONDS,
            nx=True,
        )
        return acquired is True

    async def release_booking(self, booking_id: int, holder: str) -> None:
        # An expired lock may already belong to someone else
        if await self.client.get(_booking_key(booking_id)) == holder:
            await self.client.delete(_booking_key(booking_id))

    @asynccontextmanager
    async def booking_lock(self, booking_id: int, holder: str) -> AsyncIterator[None]:
        if not await self.lock_booking(booking_id, holder):
            raise ConflictError("Another update to this booking is in progress. Please retry.")
        try:
            yield
        finally:
            await self.release_booking(booking_id, holder)

    # ── JWT deny-list ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Unauthenticated rate limit ────────────────────────────
    async def count_unauth_request(self, client_ip: str, window_seconds: int = 60) -> int:
        """Increment and return this IP's request count for the current window."""
        key = f"rate:unauth:{client_ip}"
        count = await self.client.incr(key)
        if count == 1:
            await self.client.expire(key, window_seconds)
        return count
