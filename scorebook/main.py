"""
Scorebook API

FastAPI application that syncs a study app's snapshot and score images.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from scorebook.config import settings
from scorebook.api.routes import health, scores, sync
from scorebook.db import init_db, close_db
from scorebook.storage.blob_store import get_blob_store

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the database and the image directory; dispose of the engine on shutdown."""
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    logger.info("Score images: %s served at %s", settings.score_upload_dir, settings.score_upload_route)

    try:
        await init_db()
    except Exception as e:
        logger.error("❌ Failed to initialize database: %s", e)
        raise

    # StaticFiles refuses to serve from a directory that does not exist yet.
    get_blob_store().ensure_root()

    yield

    logger.info("Shutting down...")
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Snapshot sync and score storage for the study app.",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
)

# POST /sync carries its own limiter; slowapi looks it up on app state.
app.state.limiter = sync.limiter
app.add_exception_handler(
    RateLimitExceeded,
    _rate_limit_exceeded_handler,  # type: ignore[arg-type]  # slowapi handler signature is (Request, RateLimitExceeded) not (Request, Exception)
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(sync.router, prefix="/api/v1")
app.include_router(scores.router, prefix="/api/v1")

app.mount(
    settings.score_upload_route,
    StaticFiles(directory=settings.score_upload_dir, check_dir=False),
    name="score-images",
)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "sync": "/api/v1/sync",
        "images": settings.score_upload_route,
    }


def run() -> None:
    """Serve the app with uvicorn on ``SCOREBOOK_HOST``/``SCOREBOOK_PORT``."""
    import uvicorn

    uvicorn.run(app, host=settings.scorebook_host, port=settings.scorebook_port)


if __name__ == "__main__":
    run()
