"""Redis connection pool used for publishing progress events."""

import redis.asyncio as redis

_pool: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 20) -> None:
    """Open the shared Redis pool. Safe to call twice; the second call is ignored."""
    global _pool  # noqa: PLW0603
    if _pool is not None:
        return
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client, failing loudly if the pool was never opened."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


def optional_redis() -> redis.Redis | None:
    """Get the Redis client if the pool is open, else None (events are then only stored)."""
    return _pool
