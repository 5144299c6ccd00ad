"""
Shared pytest configuration for scouting tests.

Defaults to a throwaway SQLite database per test (aiosqlite). Set
TEST_DATABASE_URL to run the store tests against PostgreSQL instead.

Tables are dropped after every test, so the resolved database name must
contain "test".
"""

import os

# Rate limiting is disabled when ENV=test; must be set before the app is imported
os.environ.setdefault("ENV", "test")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from scouting.database.db import Base
from scouting.services import subscription_service


def _resolve_test_database_url(tmp_path) -> str:
    """TEST_DATABASE_URL if set, else a SQLite file under tmp_path.

    Raises ``RuntimeError`` unless the database name contains "test", so a
    misconfigured environment can never drop a real scouting database.
    """
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'scouting_test.db'}"

    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"Refusing to run scouting tests against '{db_name}' ({url}). "
            f"Point TEST_DATABASE_URL at a database whose name contains 'test', "
            f"e.g. postgresql+asyncpg://.../{db_name}_test"
        )
    return url


@pytest.fixture(autouse=True)
def fresh_subscription_manager():
    """Each test gets its own global subscription manager."""
    subscription_service.reset_subscription_manager()
    yield
    subscription_service.reset_subscription_manager()


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine with all tables."""
    # NullPool avoids connection reuse across event loops
    engine = create_async_engine(
        _resolve_test_database_url(tmp_path),
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        from scouting.database import models  # noqa: F401

        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions through db.AsyncSessionLocal uses the test engine
    from scouting.database import db

    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Database session bound to the test engine."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()
