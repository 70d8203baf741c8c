"""Fire-and-forget user enrichment.

The sync loop submits logins and moves on; enrichment runs as detached
asyncio tasks whose failures are only logged. `drain()` is the single
point where the caller waits for them.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintainer_inbox.config import settings
from maintainer_inbox.db.database import async_session_maker
from maintainer_inbox.db.writer import upsert_user
from maintainer_inbox.github.client import GitHubClient
from maintainer_inbox.github.fetchers import fetch_user_profile
from maintainer_inbox.triage.identity import is_bot_login

logger = logging.getLogger(__name__)

Enricher = Callable[[str], Awaitable[None]]


class EnrichmentQueue:
    """Bounded set of detached enrichment tasks, deduplicated per login."""

    def __init__(self, enricher: Enricher, concurrency: int | None = None):
        self._enricher = enricher
        self._semaphore = asyncio.Semaphore(concurrency or settings.ENRICHMENT_CONCURRENCY)
        self._tasks: set[asyncio.Task] = set()
        self._seen: set[str] = set()
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, login: str | None) -> bool:
        """Schedule enrichment of `login` unless already submitted this pass."""
        if not login:
            return False
        key = login.lower()
        if key in self._seen:
            return False
        self._seen.add(key)

        task = asyncio.create_task(self._run(login), name=f"enrich:{login}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return True

    async def _run(self, login: str) -> None:
        async with self._semaphore:
            await self._enricher(login)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failed += 1
            logger.warning(f"Enrichment failed ({task.get_name()}): {exc}")
        else:
            self.completed += 1

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding tasks; cancel whatever is left after `timeout`."""
        if not self._tasks:
            return
        wait_for = timeout if timeout is not None else settings.ENRICHMENT_DRAIN_TIMEOUT
        done, pending = await asyncio.wait(set(self._tasks), timeout=wait_for)
        if pending:
            logger.warning(f"Cancelling {len(pending)} enrichment tasks still running after {wait_for}s")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info(f"Enrichment drained: {self.completed} completed, {self.failed} failed")


class GitHubProfileEnricher:
    """Fills name and company from the user's GitHub profile."""

    def __init__(
        self,
        client: GitHubClient,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.client = client
        self.session_factory = session_factory or async_session_maker

    async def __call__(self, login: str) -> None:
        if is_bot_login(login):
            return
        profile = await fetch_user_profile(self.client, login)
        async with self.session_factory() as session:
            await upsert_user(session, profile)
            await session.commit()
        logger.debug(f"Enriched {login}: company={profile.company!r}")
