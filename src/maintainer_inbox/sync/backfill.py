"""Backfill jobs that run outside the incremental pass.

- comments and reactions for every stored open item
- starred repositories of a user
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintainer_inbox.db.database import async_session_maker
from maintainer_inbox.db.models import Repository, WorkItem
from maintainer_inbox.db.writer import upsert_comments, upsert_reactions, upsert_repo_star, upsert_user
from maintainer_inbox.github.client import GitHubClient
from maintainer_inbox.github.fetchers import (
    fetch_item_comments,
    fetch_item_reactions,
    fetch_starred_repos,
    fetch_user_profile,
)

logger = logging.getLogger(__name__)


class Backfill:
    """Re-fetches discussion data and user stars."""

    def __init__(
        self,
        client: GitHubClient,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.client = client
        self.session_factory = session_factory or async_session_maker

    async def _open_items(self, repo_full_name: str | None = None) -> list[tuple[int, int, str]]:
        """(item github id, number, repo full name) of open items."""
        async with self.session_factory() as session:
            stmt = (
                select(WorkItem.github_id, WorkItem.number, Repository.full_name)
                .join(Repository, Repository.github_id == WorkItem.repo_github_id)
                .where(WorkItem.state == "open")
                .order_by(Repository.full_name, WorkItem.number)
            )
            if repo_full_name:
                stmt = stmt.where(Repository.full_name == repo_full_name)
            result = await session.execute(stmt)
            return [tuple(row) for row in result.all()]

    async def sync_comments(self, repo_full_name: str | None = None) -> dict:
        """Fetch and store comments for all open items.

        Returns:
            Statistics dict with counts of items, comments and errors
        """
        stats = {"items": 0, "comments": 0, "errors": 0}
        for item_id, number, full_name in await self._open_items(repo_full_name):
            try:
                comments = await fetch_item_comments(self.client, full_name, number)
                async with self.session_factory() as session:
                    for comment in comments:
                        if comment.user:
                            await upsert_user(session, comment.user)
                    stats["comments"] += await upsert_comments(session, item_id, comments)
                    await session.commit()
                stats["items"] += 1
            except Exception as e:
                stats["errors"] += 1
                logger.error(f"Error backfilling comments for {full_name}#{number}: {e}")

        logger.info(
            f"Comment backfill complete: {stats['items']} items, "
            f"{stats['comments']} comments, {stats['errors']} errors"
        )
        return stats

    async def sync_reactions(self, repo_full_name: str | None = None) -> dict:
        """Fetch and store reactions for all open items."""
        stats = {"items": 0, "reactions": 0, "errors": 0}
        for item_id, number, full_name in await self._open_items(repo_full_name):
            try:
                reactions = await fetch_item_reactions(self.client, full_name, number)
                async with self.session_factory() as session:
                    for reaction in reactions:
                        if reaction.user:
                            await upsert_user(session, reaction.user)
                    stats["reactions"] += await upsert_reactions(session, item_id, reactions)
                    await session.commit()
                stats["items"] += 1
            except Exception as e:
                stats["errors"] += 1
                logger.error(f"Error backfilling reactions for {full_name}#{number}: {e}")

        logger.info(
            f"Reaction backfill complete: {stats['items']} items, "
            f"{stats['reactions']} reactions, {stats['errors']} errors"
        )
        return stats

    async def sync_starred_repos(self, login: str) -> int:
        """Store the repositories `login` has starred. Returns the star count."""
        profile = await fetch_user_profile(self.client, login)
        async with self.session_factory() as session:
            await upsert_user(session, profile)
            await session.commit()

        count = 0
        async for batch in fetch_starred_repos(self.client, login):
            async with self.session_factory() as session:
                for starred in batch.items:
                    await upsert_repo_star(session, profile.id, starred.repo.id, starred.starred_at)
                await session.commit()
            count += len(batch.items)

        logger.info(f"Stored {count} starred repositories for {login}")
        return count
