import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment variables before importing climbnotes modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SYNC_API_URL", "http://test")
os.environ.setdefault("SYNC_USER_ID", "climber-1")


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture(scope="function")
async def test_db() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session backed by a fresh in-memory SQLite.

    Each test gets its own engine so no rows leak between tests.
    """
    from climbnotes.database import create_tables, engine_options

    url = "sqlite+aiosqlite://"
    engine = create_async_engine(url, echo=False, **engine_options(url))
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    await create_tables(engine)

    async with session_factory() as session:
        yield session
        await session.rollback()

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_app(test_db: AsyncSession):
    """Provide the FastAPI app with the test database override."""
    from climbnotes.database import get_db
    from climbnotes.main import app

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing with test database."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def make_user_headers(user_id: str = "climber-1") -> dict[str, str]:
    """Create the identity header the sync API expects."""
    return {"X-User-Id": user_id}


@pytest.fixture
def memory_storage():
    from climbnotes.storage.kv import MemoryStorage

    return MemoryStorage()
