"""Fixtures for integration tests with a real database."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from maintainer_inbox.db.models import Base


@pytest.fixture(scope="function")
def test_db_engine(tmp_path):
    """Create a SQLite engine on a per-test database file.

    A file (rather than :memory:) lets concurrent sessions see the same
    data, as sync and enrichment do in production.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'inbox.db'}",
        echo=False,
    )
    return engine


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_db_engine):
    """Create tables and provide a session factory.

    Tables are dropped after the test completes.
    """
    async with test_db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    yield factory

    async with test_db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await test_db_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_db_session(session_factory):
    """A session for seeding and asserting."""
    async with session_factory() as session:
        yield session
