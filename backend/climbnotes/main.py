"""FastAPI entrypoint for the Climbing Notes remote sync store."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from climbnotes.database import create_tables, engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan: startup and shutdown events."""
    # Startup: create all database tables if they don't exist
    await create_tables(engine)
    logger.info("Sync store tables ready")

    yield
    # Shutdown: dispose the async engine connection pool
    await engine.dispose()


app = FastAPI(
    title="Climbing Notes Sync",
    description="Row-level sync store for the Climbing Notes offline log",
    version="0.1.0",
    lifespan=lifespan,
)

# --- Router includes ---
from climbnotes.api.sync import router as sync_router  # noqa: E402

app.include_router(sync_router, prefix="/api")


@app.get("/api/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns a simple status response to verify the API is running.
    """
    return {"status": "ok"}
