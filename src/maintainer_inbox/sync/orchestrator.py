"""Incremental GitHub -> database sync for an organization.

One pass walks the organization's repositories sequentially. Per
repository, issues and then pull requests are fetched (full on the first
pass, delta afterwards) and each item is persisted in its own transaction
together with its comments, reactions and, for PRs, reviews and diff
stats. Side fetches for one item run concurrently and are best-effort.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeVar

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintainer_inbox.config import settings
from maintainer_inbox.db.database import async_session_maker
from maintainer_inbox.db.models import utcnow
from maintainer_inbox.db.watermarks import RESOURCE_ISSUES, RESOURCE_PULL_REQUESTS, WatermarkStore
from maintainer_inbox.db.writer import (
    replace_reviews,
    upsert_comments,
    upsert_issue,
    upsert_pull_request,
    upsert_reactions,
    upsert_repository,
    upsert_user,
)
from maintainer_inbox.github.client import GitHubAPIError, GitHubClient
from maintainer_inbox.github.fetchers import (
    Batch,
    fetch_item_comments,
    fetch_item_reactions,
    fetch_org_repos,
    fetch_pull_request_file_stats,
    fetch_pull_request_reviews,
    fetch_recently_closed_issues,
    fetch_recently_closed_pull_requests,
    fetch_repo_issues,
    fetch_repo_pull_requests,
)
from maintainer_inbox.github.models import (
    Issue,
    IssueComment,
    IssueReaction,
    PullRequest,
    Repo,
    Review,
    UserRef,
)
from maintainer_inbox.sync.enrichment import Enricher, EnrichmentQueue, GitHubProfileEnricher
from maintainer_inbox.sync.maintainers import MaintainerDetector
from maintainer_inbox.sync.repo_filter import RepoFilter

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SyncError:
    """A failure recorded during a pass."""

    repo: str
    error: str
    item: str | None = None


@dataclass
class SyncSummary:
    """Outcome of one organization pass."""

    org: str
    repos_processed: int = 0
    repos_skipped: int = 0
    issues_synced: int = 0
    prs_synced: int = 0
    errors: list[SyncError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class IncrementalSync:
    """Synchronizes repositories, issues and pull requests of one organization."""

    def __init__(
        self,
        client: GitHubClient,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        watermarks: WatermarkStore | None = None,
        repo_filter: RepoFilter | None = None,
        enricher: Enricher | None = None,
        enrich: bool | None = None,
        detect_maintainers: bool | None = None,
        lookback: timedelta | None = None,
        drain_timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.session_factory = session_factory or async_session_maker
        self.watermarks = watermarks or WatermarkStore(self.session_factory)
        self.repo_filter = repo_filter or RepoFilter(
            settings.repo_include_list, settings.repo_exclude_list
        )
        enrich = settings.ENRICHMENT_ENABLED if enrich is None else enrich
        self.enricher = (enricher or GitHubProfileEnricher(client, self.session_factory)) if enrich else None
        detect = settings.SYNC_MAINTAINERS_DURING_SYNC if detect_maintainers is None else detect_maintainers
        self.maintainer_detector = MaintainerDetector(client, self.session_factory) if detect else None
        self.lookback = lookback or timedelta(hours=settings.RECENTLY_CLOSED_LOOKBACK_HOURS)
        self.drain_timeout = drain_timeout
        self.clock = clock

    async def sync_organization(self, org: str) -> SyncSummary:
        """Run one pass over every allowed repository of `org`.

        Never raises for upstream or per-item failures; they are reported
        in the summary's `errors`.
        """
        summary = SyncSummary(org=org)
        queue = EnrichmentQueue(self.enricher) if self.enricher else None

        try:
            async for batch in fetch_org_repos(self.client, org):
                for repo in batch.items:
                    if not self.repo_filter.allows(repo):
                        logger.debug(f"Skipping {repo.full_name} (not in allow-list)")
                        continue
                    await self._sync_repository_guarded(repo, summary, queue)
        except (GitHubAPIError, httpx.HTTPError) as e:
            logger.error(f"Listing repositories of {org} failed: {e}")
            summary.errors.append(SyncError(repo=org, error=f"repository listing failed: {e}"))
        finally:
            if queue is not None:
                await queue.drain(self.drain_timeout)

        logger.info(
            f"Organization {org} sync complete: "
            f"{summary.repos_processed} repos processed, {summary.repos_skipped} skipped, "
            f"{summary.issues_synced} issues, {summary.prs_synced} PRs, "
            f"{len(summary.errors)} errors"
        )
        return summary

    async def _sync_repository_guarded(
        self, repo: Repo, summary: SyncSummary, queue: EnrichmentQueue | None
    ) -> None:
        try:
            await self.sync_repository(repo, summary, queue)
            summary.repos_processed += 1
        except Exception as e:
            summary.repos_skipped += 1
            summary.errors.append(SyncError(repo=repo.full_name, error=str(e)))
            logger.error(f"Error syncing repository {repo.full_name}: {e}")

    async def sync_repository(
        self, repo: Repo, summary: SyncSummary, queue: EnrichmentQueue | None = None
    ) -> None:
        """Sync one repository; raises on failures that abort the repository."""
        async with self.session_factory() as session:
            await upsert_repository(session, repo)
            await session.commit()

        await self._sync_issues(repo, summary, queue)
        await self._sync_pull_requests(repo, summary, queue)

        if self.maintainer_detector is not None:
            try:
                await self.maintainer_detector.sync_repo(repo)
            except Exception as e:
                logger.warning(f"Maintainer detection failed for {repo.full_name}: {e}")

    # -------------------------------------------------------------------------
    # Issues
    # -------------------------------------------------------------------------

    async def _sync_issues(
        self, repo: Repo, summary: SyncSummary, queue: EnrichmentQueue | None
    ) -> None:
        watermark = await self.watermarks.get_watermark(repo.id, RESOURCE_ISSUES)
        started_at = self.clock()

        if watermark is None:
            logger.info(f"{repo.full_name}: full issue sync")
            sources = [fetch_repo_issues(self.client, repo.full_name)]
        else:
            logger.info(f"{repo.full_name}: issues updated since {watermark.isoformat()}")
            sources = [
                fetch_repo_issues(self.client, repo.full_name, since=watermark),
                fetch_recently_closed_issues(
                    self.client, repo.full_name, since=watermark - self.lookback
                ),
            ]

        processed: set[int] = set()
        async for issue in _merge_unique(sources, processed):
            if await self._sync_issue(repo, issue, summary, queue):
                summary.issues_synced += 1

        await self.watermarks.set_watermark(repo.id, RESOURCE_ISSUES, started_at)

    async def _sync_issue(
        self, repo: Repo, issue: Issue, summary: SyncSummary, queue: EnrichmentQueue | None
    ) -> bool:
        label = f"{repo.full_name}#{issue.number}"
        comments, reactions = await asyncio.gather(
            _best_effort(fetch_item_comments(self.client, repo.full_name, issue.number), f"comments of {label}"),
            _best_effort(fetch_item_reactions(self.client, repo.full_name, issue.number), f"reactions of {label}"),
        )

        try:
            async with self.session_factory() as session:
                await upsert_issue(session, repo.id, issue)
                await self._persist_people_and_discussion(
                    session, issue.id, _item_users(issue, comments, reactions), comments, reactions
                )
                await session.commit()
        except Exception as e:
            summary.errors.append(SyncError(repo=repo.full_name, error=str(e), item=f"issue #{issue.number}"))
            logger.error(f"Error persisting issue {label}: {e}")
            return False

        self._enrich(queue, issue.user, issue.assignees)
        return True

    # -------------------------------------------------------------------------
    # Pull requests
    # -------------------------------------------------------------------------

    async def _sync_pull_requests(
        self, repo: Repo, summary: SyncSummary, queue: EnrichmentQueue | None
    ) -> None:
        watermark = await self.watermarks.get_watermark(repo.id, RESOURCE_PULL_REQUESTS)
        started_at = self.clock()

        if watermark is None:
            logger.info(f"{repo.full_name}: full pull request sync")
            sources = [fetch_repo_pull_requests(self.client, repo.full_name)]
        else:
            logger.info(f"{repo.full_name}: pull requests updated since {watermark.isoformat()}")
            sources = [
                fetch_repo_pull_requests(self.client, repo.full_name, updated_since=watermark),
                fetch_recently_closed_pull_requests(
                    self.client, repo.full_name, since=watermark - self.lookback
                ),
            ]

        processed: set[int] = set()
        async for pr in _merge_unique(sources, processed):
            if await self._sync_pull_request(repo, pr, summary, queue):
                summary.prs_synced += 1

        await self.watermarks.set_watermark(repo.id, RESOURCE_PULL_REQUESTS, started_at)

    async def _sync_pull_request(
        self, repo: Repo, pr: PullRequest, summary: SyncSummary, queue: EnrichmentQueue | None
    ) -> bool:
        label = f"{repo.full_name}#{pr.number}"
        comments, reactions, file_stats, reviews = await asyncio.gather(
            _best_effort(fetch_item_comments(self.client, repo.full_name, pr.number), f"comments of {label}"),
            _best_effort(fetch_item_reactions(self.client, repo.full_name, pr.number), f"reactions of {label}"),
            _best_effort(fetch_pull_request_file_stats(self.client, repo.full_name, pr.number), f"file stats of {label}"),
            _best_effort(fetch_pull_request_reviews(self.client, repo.full_name, pr.number), f"reviews of {label}"),
        )

        try:
            async with self.session_factory() as session:
                await upsert_pull_request(session, repo.id, pr, file_stats)
                users = _item_users(pr, comments, reactions) + _reviewers(reviews)
                await self._persist_people_and_discussion(session, pr.id, users, comments, reactions)
                if reviews is not None:
                    await replace_reviews(session, pr.id, reviews)
                await session.commit()
        except Exception as e:
            summary.errors.append(SyncError(repo=repo.full_name, error=str(e), item=f"pr #{pr.number}"))
            logger.error(f"Error persisting pull request {label}: {e}")
            return False

        self._enrich(queue, pr.user, pr.assignees)
        return True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _persist_people_and_discussion(
        self,
        session: AsyncSession,
        item_id: int,
        users: list[UserRef],
        comments: list[IssueComment] | None,
        reactions: list[IssueReaction] | None,
    ) -> None:
        seen: set[int] = set()
        for user in users:
            if user.id in seen:
                continue
            seen.add(user.id)
            await upsert_user(session, user)
        if comments is not None:
            await upsert_comments(session, item_id, comments)
        if reactions is not None:
            await upsert_reactions(session, item_id, reactions)

    def _enrich(self, queue: EnrichmentQueue | None, author: UserRef | None, assignees: list[UserRef]) -> None:
        if queue is None:
            return
        for user in [author, *assignees]:
            if user is not None:
                queue.submit(user.login)


async def sync_all_organizations(client: GitHubClient, orgs: list[str] | None = None) -> list[SyncSummary]:
    """Sync each configured organization in turn."""
    org_list = orgs or settings.github_org_list
    syncer = IncrementalSync(client)
    summaries = []
    for org in org_list:
        summaries.append(await syncer.sync_organization(org))
    return summaries


async def _merge_unique(
    sources: list[AsyncIterator[Batch[T]]], processed: set[int]
) -> AsyncIterator[T]:
    """Chain batch streams, yielding each item id once."""
    for source in sources:
        async for batch in source:
            for item in batch.items:
                if item.id in processed:
                    continue
                processed.add(item.id)
                yield item


async def _best_effort(awaitable: Awaitable[T], what: str) -> T | None:
    try:
        return await awaitable
    except Exception as e:
        logger.warning(f"Could not fetch {what}: {e}")
        return None


def _item_users(
    item: Issue | PullRequest,
    comments: list[IssueComment] | None,
    reactions: list[IssueReaction] | None,
) -> list[UserRef]:
    users = [item.user, *item.assignees]
    users.extend(c.user for c in comments or [])
    users.extend(r.user for r in reactions or [])
    return [u for u in users if u is not None]


def _reviewers(reviews: list[Review] | None) -> list[UserRef]:
    return [r.user for r in reviews or [] if r.user is not None]
