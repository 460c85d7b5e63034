import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.config import get_settings
from app.database import async_session_factory, engine
from app.services.background import drain_background
from app.services.search_cleanup import run_periodic_cleanup

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan: startup and shutdown events."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Startup: create tables if they don't exist (the trigger comes from Alembic)
    from app.database import Base
    from app import models  # noqa: F401 - Import models to register them with Base

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    cleanup_task: asyncio.Task | None = None
    if settings.SEARCH_CLEANUP_INTERVAL_MINUTES > 0:
        cleanup_task = asyncio.create_task(
            run_periodic_cleanup(async_session_factory, settings.SEARCH_CLEANUP_INTERVAL_MINUTES)
        )
        logger.info("Search cleanup every %d minutes", settings.SEARCH_CLEANUP_INTERVAL_MINUTES)

    yield

    # Shutdown: stop the sweeper, let pending history/analytics writes finish
    if cleanup_task is not None:
        cleanup_task.cancel()
        with suppress(asyncio.CancelledError):
            await cleanup_task
    await drain_background(timeout=5.0)
    await engine.dispose()


app = FastAPI(
    title="Note Search",
    description="Hybrid keyword and semantic search over notes and documents",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Router includes ---
from app.api.search import router as search_router

app.include_router(search_router, prefix="/api")


@app.get("/api/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Liveness check."""
    return {"status": "ok"}
