"""Idempotent upserts of fetched GitHub objects.

Every function looks the row up by its stable GitHub key, updates it in
place when present and creates it otherwise. Callers own the session and
the commit, so one item can be persisted per transaction.
"""

import json
import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from maintainer_inbox.db.models import (
    ALLOWED_REACTIONS,
    ITEM_TYPE_ISSUE,
    ITEM_TYPE_PR,
    Comment,
    GitHubUser,
    PullRequestReview,
    Reaction,
    RepoStar,
    Repository,
    WorkItem,
    utcnow,
)
from maintainer_inbox.github.models import (
    FileStats,
    Issue,
    IssueComment,
    IssueReaction,
    PullRequest,
    Repo,
    Review,
    UserProfile,
    UserRef,
)

logger = logging.getLogger(__name__)


async def upsert_repository(session: AsyncSession, repo: Repo) -> Repository:
    """Insert or refresh repository metadata."""
    result = await session.execute(select(Repository).where(Repository.github_id == repo.id))
    existing = result.scalar_one_or_none()
    if existing is None:
        existing = Repository(github_id=repo.id)
        session.add(existing)

    existing.name = repo.name
    existing.full_name = repo.full_name
    existing.owner_login = repo.owner_login
    existing.private = repo.private
    existing.archived = repo.archived
    existing.pushed_at = repo.pushed_at
    existing.created_at = repo.created_at
    existing.updated_at = repo.updated_at
    existing.synced_at = utcnow()
    await session.flush()
    return existing


async def upsert_user(session: AsyncSession, user: UserRef | UserProfile) -> GitHubUser:
    """Insert or refresh a user.

    Profile fields (name, company) are only written from a full profile,
    so an embedded user reference never wipes enriched data.
    """
    result = await session.execute(select(GitHubUser).where(GitHubUser.github_id == user.id))
    existing = result.scalar_one_or_none()
    now = utcnow()
    if existing is None:
        existing = GitHubUser(github_id=user.id, first_seen=now)
        session.add(existing)

    existing.login = user.login
    existing.type = user.type or "User"
    if user.avatar_url:
        existing.avatar_url = user.avatar_url
    if isinstance(user, UserProfile):
        if user.name is not None:
            existing.name = user.name
        if user.company is not None:
            existing.company = user.company
        existing.profile_synced_at = now
    existing.last_seen = now
    await session.flush()
    return existing


async def get_user_by_login(session: AsyncSession, login: str) -> GitHubUser | None:
    """Case-insensitive lookup of a known user."""
    result = await session.execute(
        select(GitHubUser).where(GitHubUser.login.ilike(login)).limit(1)
    )
    return result.scalar_one_or_none()


async def _get_work_item(session: AsyncSession, github_id: int) -> WorkItem | None:
    result = await session.execute(select(WorkItem).where(WorkItem.github_id == github_id))
    return result.scalar_one_or_none()


def _apply_common(item: WorkItem, source: Issue | PullRequest) -> None:
    item.number = source.number
    item.title = source.title
    item.body = source.body
    item.state = source.state
    item.author_login = source.user.login if source.user else None
    item.labels = json.dumps(source.labels)
    item.assignees = json.dumps([a.login for a in source.assignees])
    item.created_at = source.created_at
    item.updated_at = source.updated_at
    item.closed_at = source.closed_at
    item.synced_at = utcnow()


async def upsert_issue(session: AsyncSession, repo_id: int, issue: Issue) -> WorkItem:
    """Insert or refresh an issue; fetched values always win."""
    existing = await _get_work_item(session, issue.id)
    if existing is None:
        existing = WorkItem(github_id=issue.id, item_type=ITEM_TYPE_ISSUE, repo_github_id=repo_id)
        session.add(existing)
    _apply_common(existing, issue)
    await session.flush()
    return existing


async def upsert_pull_request(
    session: AsyncSession,
    repo_id: int,
    pr: PullRequest,
    file_stats: FileStats | None = None,
) -> WorkItem:
    """Insert or refresh a pull request.

    Diff-size stats keep their stored value when neither the PR payload
    nor `file_stats` supplies one.
    """
    existing = await _get_work_item(session, pr.id)
    if existing is None:
        existing = WorkItem(github_id=pr.id, item_type=ITEM_TYPE_PR, repo_github_id=repo_id)
        session.add(existing)
    _apply_common(existing, pr)
    existing.draft = pr.draft
    existing.merged = pr.merged
    existing.merged_at = pr.merged_at
    existing.merge_commit_sha = pr.merge_commit_sha

    additions = file_stats.additions if file_stats else pr.additions
    deletions = file_stats.deletions if file_stats else pr.deletions
    changed = file_stats.changed_files if file_stats else pr.changed_files
    if additions is not None:
        existing.additions = additions
    if deletions is not None:
        existing.deletions = deletions
    if changed is not None:
        existing.changed_files = changed
    await session.flush()
    return existing


async def replace_reviews(session: AsyncSession, pr_id: int, reviews: list[Review]) -> int:
    """Replace the stored reviews of a pull request."""
    await session.execute(delete(PullRequestReview).where(PullRequestReview.pr_github_id == pr_id))
    for review in reviews:
        session.add(
            PullRequestReview(
                github_id=review.id,
                pr_github_id=pr_id,
                reviewer_login=review.user.login if review.user else None,
                state=review.state,
                submitted_at=review.submitted_at,
            )
        )
    await session.flush()
    return len(reviews)


async def upsert_comments(session: AsyncSession, item_id: int, comments: list[IssueComment]) -> int:
    """Insert new comments and refresh edited ones."""
    if not comments:
        return 0
    result = await session.execute(
        select(Comment).where(Comment.github_id.in_([c.id for c in comments]))
    )
    existing = {c.github_id: c for c in result.scalars().all()}
    now = utcnow()

    for comment in comments:
        row = existing.get(comment.id)
        if row is None:
            row = Comment(github_id=comment.id, item_github_id=item_id)
            session.add(row)
        row.author_login = comment.user.login if comment.user else None
        row.author_type = comment.user.type if comment.user else None
        row.body = comment.body
        row.created_at = comment.created_at
        row.updated_at = comment.updated_at
        row.synced_at = now
    await session.flush()
    return len(comments)


async def upsert_reactions(session: AsyncSession, item_id: int, reactions: list[IssueReaction]) -> int:
    """Insert reactions; an already stored triple only gets its synced_at touched."""
    written = 0
    now = utcnow()
    for reaction in reactions:
        if reaction.user is None or reaction.content not in ALLOWED_REACTIONS:
            continue
        result = await session.execute(
            select(Reaction).where(
                Reaction.item_github_id == item_id,
                Reaction.user_github_id == reaction.user.id,
                Reaction.content == reaction.content,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            session.add(
                Reaction(
                    item_github_id=item_id,
                    user_github_id=reaction.user.id,
                    content=reaction.content,
                    created_at=reaction.created_at,
                    synced_at=now,
                )
            )
        else:
            row.synced_at = now
        written += 1
    await session.flush()
    return written


async def upsert_repo_star(
    session: AsyncSession, user_id: int, repo_id: int, starred_at: datetime | None
) -> None:
    """Record that a user starred a repository."""
    result = await session.execute(
        select(RepoStar).where(RepoStar.user_github_id == user_id, RepoStar.repo_github_id == repo_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = RepoStar(user_github_id=user_id, repo_github_id=repo_id)
        session.add(row)
    if starred_at is not None:
        row.starred_at = starred_at
    row.synced_at = utcnow()
    await session.flush()
