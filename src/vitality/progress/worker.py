"""Progress arq worker: daily streak sweep, ledger pruning and outbox relay.

Import path for arq CLI: arq vitality.progress.worker.WorkerSettings
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from vitality.config import get_settings
from vitality.database import close_db, get_session_factory, init_db
from vitality.progress.engine import ProgressEngine
from vitality.progress.events import EventPublisher

logger = logging.getLogger(__name__)

_settings = get_settings()


async def progress_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB and Redis connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    ctx["redis"] = redis_client
    ctx["engine"] = ProgressEngine(
        get_session_factory(),
        publisher=EventPublisher(redis_client, settings.events_channel),
        settings=settings,
    )
    logger.info("Progress worker started")


async def progress_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Progress worker shut down")


async def daily_streak_sweep(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: reset streaks that missed yesterday. Runs shortly after 00:00 UTC."""
    engine: ProgressEngine = ctx["engine"]
    # Sweep for the day that just started; anyone without activity yesterday is broken
    broken = await engine.run_daily_sweep(engine.today())
    return len(broken)


async def prune_ledger(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: drop ledger entries past the retention window."""
    engine: ProgressEngine = ctx["engine"]
    return await engine.prune_ledger()


async def relay_pending_events(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: publish outbox events that missed their post-commit publish.

    Delivery is at-least-once; an event published by its request while this
    job runs may go out twice.
    """
    engine: ProgressEngine = ctx["engine"]
    published = await engine.publish_pending()
    if published:
        logger.info("Relayed %d pending events", published)
    return published


class WorkerSettings:
    """arq worker settings for the progress engine's scheduled jobs."""

    functions = [daily_streak_sweep, prune_ledger, relay_pending_events]
    cron_jobs = [
        cron(daily_streak_sweep, hour=_settings.daily_sweep_hour, minute=_settings.daily_sweep_minute),
        cron(prune_ledger, hour=3, minute=0),
        cron(relay_pending_events, minute=set(range(0, 60, 5))),
    ]
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    on_startup = progress_startup
    on_shutdown = progress_shutdown
    max_jobs = 4
    job_timeout = 600
