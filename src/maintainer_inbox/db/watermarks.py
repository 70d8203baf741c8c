"""Per-repository sync watermarks.

A watermark records the instant through which a resource (issues or pull
requests) of one repository has been synced. No row means the resource was
never synced and the next pass does a full fetch.
"""

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintainer_inbox.db.database import async_session_maker
from maintainer_inbox.db.models import SyncWatermark, ensure_utc, utcnow

logger = logging.getLogger(__name__)

RESOURCE_ISSUES = "issues"
RESOURCE_PULL_REQUESTS = "pull_requests"


class WatermarkStore:
    """Reads and advances sync watermarks."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory or async_session_maker

    async def get_watermark(self, repo_id: int, resource: str) -> datetime | None:
        """Return the synced-through instant, or None if never synced."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncWatermark.synced_through).where(
                    SyncWatermark.repo_github_id == repo_id,
                    SyncWatermark.resource == resource,
                )
            )
            return ensure_utc(result.scalar_one_or_none())

    async def set_watermark(self, repo_id: int, resource: str, ts: datetime) -> None:
        """Record that `resource` of `repo_id` is synced through `ts`."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncWatermark).where(
                    SyncWatermark.repo_github_id == repo_id,
                    SyncWatermark.resource == resource,
                )
            )
            existing = result.scalar_one_or_none()
            if existing:
                existing.synced_through = ts
                existing.updated_at = utcnow()
            else:
                session.add(
                    SyncWatermark(repo_github_id=repo_id, resource=resource, synced_through=ts)
                )
            await session.commit()
        logger.debug(f"Watermark {resource} for repo {repo_id} -> {ts.isoformat()}")

    async def reset(self, repo_id: int | None = None) -> int:
        """Drop watermarks so the next pass does a full sync.

        Returns the number of rows removed.
        """
        async with self.session_factory() as session:
            stmt = delete(SyncWatermark)
            if repo_id is not None:
                stmt = stmt.where(SyncWatermark.repo_github_id == repo_id)
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0
