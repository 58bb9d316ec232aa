"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from treasure.config import get_settings
from treasure.database import close_db, init_db
from treasure.enrollment.router import router as enrollment_router
from treasure.leaderboard.router import router as leaderboard_router
from treasure.middleware import setup_middleware
from treasure.progress.router import router as progress_router
from treasure.progression.router import router as progression_router
from treasure.redis_client import close_redis, init_redis
from treasure.search.router import router as search_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Treasure Hunt Engine API",
        description="Enrollment, task progression, leveling, plan search and leaderboards for treasure hunts",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(search_router)
    app.include_router(enrollment_router)
    app.include_router(progress_router)
    app.include_router(progression_router)
    app.include_router(leaderboard_router)

    return app


app = create_app()
