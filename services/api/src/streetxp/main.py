"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from streetxp.config import get_settings
from streetxp.database import close_db, create_all, get_session, init_db
from streetxp.health.router import router as health_router
from streetxp.middleware import setup_middleware
from streetxp.progression.router import router as progression_router
from streetxp.progression.seed import seed_ranks
from streetxp.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.create_schema:
        await create_all()
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Seed the rank ladder (idempotent)
    try:
        async for db in get_session():
            await seed_ranks(db)
            break
    except SQLAlchemyError:
        logger.warning("Rank seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Street Team XP API",
        description="XP ledger, ranks, missions and streaks for street sales agents",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progression_router)

    return app


app = create_app()
