"""Rate limiting and idempotency helpers."""
from __future__ import annotations

import time
import uuid
from typing import Optional

import redis.asyncio as redis

from agenda.core.config import settings
from agenda.core.exceptions import DuplicateRequestError, RateLimitExceededError

_redis_client: redis.Redis | None = None


async def _get_client() -> redis.Redis:
    """Return a cached Redis client instance."""

    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            str(settings.REDIS_URI), decode_responses=True
        )
    return _redis_client


async def check_rate_limit(key: str, limit: Optional[int] = None) -> None:
    """
    Enforce a sliding-window rate limit for ``key``.

    Each key owns a sorted set of request timestamps. Pruning, recording the
    request and counting run in one MULTI/EXEC, so concurrent requests cannot
    both observe room under the limit. A rejected request is removed again
    and does not hold a slot.
    """

    client = await _get_client()
    window = settings.limits.rate_limit_window_seconds
    max_requests = limit if limit is not None else settings.limits.rate_limit_rpm
    now = time.time()
    redis_key = f"rl:{key}"
    member = f"{now}:{uuid.uuid4().hex}"

    async with client.pipeline(transaction=True) as pipe:
        pipe.zremrangebyscore(redis_key, 0, now - window)
        pipe.zadd(redis_key, {member: now})
        pipe.zcard(redis_key)
        pipe.expire(redis_key, window)
        _, _, current, _ = await pipe.execute()

    if current > max_requests:
        await client.zrem(redis_key, member)
        raise RateLimitExceededError("Rate limit exceeded")


async def ensure_idempotent(user_id: str, key: Optional[str]) -> None:
    """Reject duplicate POST requests sharing the same idempotency key."""

    if not key:
        return
    client = await _get_client()
    redis_key = f"idemp:{user_id}:{key}"
    was_set = await client.set(
        redis_key, "1", ex=settings.limits.idempotency_ttl_seconds, nx=True
    )
    if not was_set:
        raise DuplicateRequestError("Duplicate request (idempotency)")


async def close_client() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None
