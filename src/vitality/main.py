"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from vitality.config import get_settings
from vitality.database import close_db, get_session_factory, init_db
from vitality.health.router import router as health_router
from vitality.middleware import setup_middleware
from vitality.progress.engine import ProgressEngine
from vitality.progress.events import EventPublisher
from vitality.progress.router import router as progress_router
from vitality.progress.seed import seed_badges
from vitality.redis_client import close_redis, init_redis, optional_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    session_factory = get_session_factory()

    # Seed badge definitions (idempotent)
    try:
        async with session_factory() as db:
            await seed_badges(db)
    except SQLAlchemyError:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)

    app.state.progress_engine = ProgressEngine(
        session_factory,
        publisher=EventPublisher(optional_redis(), settings.events_channel),
        settings=settings,
    )

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Vitality Progress Engine",
        description="Points, day-streak and badge engine for the Vitality wellness platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progress_router)

    return app


app = create_app()
