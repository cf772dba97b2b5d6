"""Async engine and sessions for the remote sync store.

SQLite (the default, via aiosqlite) and PostgreSQL (via asyncpg) are both
supported; the engine options differ per backend.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from climbnotes.config import get_settings

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s",
}


def engine_options(url: str) -> dict[str, Any]:
    """Keyword arguments for :func:`create_async_engine` given *url*."""
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    # An in-memory database lives only as long as its single connection
    if url.rstrip("/").endswith(":memory:") or url.endswith("://"):
        options["poolclass"] = StaticPool
    return options


settings = get_settings()

engine = create_async_engine(
    settings.async_database_url,
    echo=False,
    **engine_options(settings.async_database_url),
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for the sync store tables."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


async def create_tables(bind: AsyncEngine) -> None:
    """Create every sync store table that does not exist yet."""
    from climbnotes import models  # noqa: F401 - Import models to register them with Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session; commits on success, rolls back on error.

    Usage::

        @router.post("/sync/push")
        async def push(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
