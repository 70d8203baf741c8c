"""Database engine and session factory for the inbox store."""

import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from maintainer_inbox.config import settings

logger = logging.getLogger(__name__)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=30000",
    "PRAGMA synchronous=NORMAL",
)


def _apply_sqlite_pragmas(dbapi_conn, connection_record):
    """WAL lets the recommendation API read while a sync pass writes."""
    cursor = dbapi_conn.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

if settings.DATABASE_URL.startswith("sqlite"):
    event.listen(engine.sync_engine, "connect", _apply_sqlite_pragmas)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Create any missing tables. Safe to run on every start."""
    from maintainer_inbox.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug(f"Schema ready on {engine.url.render_as_string(hide_password=True)}")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for request handlers that open their own sessions."""
    return async_session_maker
