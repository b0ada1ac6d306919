"""Shared Redis connection pool.

The pool backs the human handoff queue (Redis Streams) and the readiness
probe. Stream keys are scoped per user by the notifier, so no key-prefixing
wrapper is needed here.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.relay.config import get_settings

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None
