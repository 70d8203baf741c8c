"""Paginated resource fetchers for the GitHub REST API.

List fetchers are async generators yielding one Batch per page. They are
lazy (nothing is requested until iterated) and restartable through
`start_page`. Page-number pagination continues while the last page was
full.
"""

import base64
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, TypeVar

from maintainer_inbox.db.models import ALLOWED_REACTIONS
from maintainer_inbox.github.client import GitHubClient, GitHubNotFoundError
from maintainer_inbox.github.models import (
    Collaborator,
    FileStats,
    Issue,
    IssueComment,
    IssueReaction,
    PullRequest,
    Repo,
    Review,
    StarredRepo,
    UserProfile,
)

logger = logging.getLogger(__name__)

PER_PAGE = 100

T = TypeVar("T")


@dataclass
class Batch(Generic[T]):
    """One page of results."""

    items: list[T]
    page: int
    has_more: bool


async def _paginate(
    client: GitHubClient,
    path: str,
    params: dict[str, Any] | None = None,
    start_page: int = 1,
    headers: dict[str, str] | None = None,
) -> AsyncIterator[tuple[int, list[dict], bool]]:
    """Yield (page, raw items, has_more) until a short page is returned."""
    page = start_page
    while True:
        query = dict(params or {})
        query.update({"per_page": PER_PAGE, "page": page})
        data = await client.request("GET", path, params=query, headers=headers)
        items = data or []
        has_more = len(items) == PER_PAGE
        yield page, items, has_more
        if not has_more:
            break
        page += 1


def _iso(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Repositories
# =============================================================================


async def fetch_org_repos(
    client: GitHubClient, org: str, start_page: int = 1
) -> AsyncIterator[Batch[Repo]]:
    """Fetch non-archived repositories of an organization.

    Falls back to the user repos endpoint when `org` is a user account.
    """
    yielded = False
    try:
        async for page, raw, has_more in _paginate(
            client, f"/orgs/{org}/repos", {"type": "all"}, start_page
        ):
            yielded = True
            yield Batch(_active_repos(raw), page, has_more)
        return
    except GitHubNotFoundError:
        if yielded:
            raise
        logger.info(f"{org} is not an organization, listing user repositories")

    async for page, raw, has_more in _paginate(
        client, f"/users/{org}/repos", {"type": "owner"}, start_page
    ):
        yield Batch(_active_repos(raw), page, has_more)


def _active_repos(raw: list[dict]) -> list[Repo]:
    return [Repo.from_api(r) for r in raw if not r.get("archived")]


async def fetch_starred_repos(
    client: GitHubClient, login: str, start_page: int = 1
) -> AsyncIterator[Batch[StarredRepo]]:
    """Fetch repositories starred by a user, with star timestamps."""
    async for page, raw, has_more in _paginate(
        client,
        f"/users/{login}/starred",
        start_page=start_page,
        headers={"Accept": "application/vnd.github.star+json"},
    ):
        yield Batch([StarredRepo.from_api(r) for r in raw], page, has_more)


async def fetch_repo_collaborators(client: GitHubClient, full_name: str) -> list[Collaborator]:
    """Fetch direct collaborators with their permission level."""
    collaborators: list[Collaborator] = []
    async for _, raw, _ in _paginate(
        client, f"/repos/{full_name}/collaborators", {"affiliation": "direct"}
    ):
        for item in raw:
            collaborator = Collaborator.from_api(item)
            if collaborator:
                collaborators.append(collaborator)
    return collaborators


async def fetch_repo_file(client: GitHubClient, full_name: str, path: str) -> str | None:
    """Fetch a file's decoded text from the default branch, or None if absent."""
    try:
        data = await client.get(f"/repos/{full_name}/contents/{path}")
    except GitHubNotFoundError:
        return None

    if not isinstance(data, dict) or data.get("type") != "file":
        return None
    content = data.get("content") or ""
    if data.get("encoding") == "base64":
        return base64.b64decode(content).decode("utf-8", errors="replace")
    return content


# =============================================================================
# Issues
# =============================================================================


async def fetch_repo_issues(
    client: GitHubClient,
    full_name: str,
    since: datetime | None = None,
    start_page: int = 1,
) -> AsyncIterator[Batch[Issue]]:
    """Fetch issues (both states) updated since `since`, newest first.

    The issues endpoint also returns pull requests; those are dropped.
    """
    params: dict[str, Any] = {"state": "all", "sort": "updated", "direction": "desc"}
    if since:
        params["since"] = _iso(since)

    async for page, raw, has_more in _paginate(
        client, f"/repos/{full_name}/issues", params, start_page
    ):
        issues = [i for i in map(Issue.from_api, raw) if not i.is_pull_request]
        yield Batch(issues, page, has_more)


async def fetch_recently_closed_issues(
    client: GitHubClient,
    full_name: str,
    since: datetime,
    start_page: int = 1,
) -> AsyncIterator[Batch[Issue]]:
    """Fetch issues closed at or after `since`."""
    params = {"state": "closed", "sort": "updated", "direction": "desc", "since": _iso(since)}

    async for page, raw, has_more in _paginate(
        client, f"/repos/{full_name}/issues", params, start_page
    ):
        issues = [i for i in map(Issue.from_api, raw) if not i.is_pull_request]
        closed = [i for i in issues if i.closed_at and i.closed_at >= since]
        yield Batch(closed, page, has_more)


async def fetch_item_comments(client: GitHubClient, full_name: str, number: int) -> list[IssueComment]:
    """Fetch all conversation comments on an issue or pull request."""
    comments: list[IssueComment] = []
    async for _, raw, _ in _paginate(client, f"/repos/{full_name}/issues/{number}/comments"):
        comments.extend(IssueComment.from_api(c) for c in raw)
    return comments


async def fetch_item_reactions(client: GitHubClient, full_name: str, number: int) -> list[IssueReaction]:
    """Fetch reactions on an issue or pull request body, restricted to known kinds."""
    reactions: list[IssueReaction] = []
    async for _, raw, _ in _paginate(client, f"/repos/{full_name}/issues/{number}/reactions"):
        for item in raw:
            reaction = IssueReaction.from_api(item)
            if reaction.content in ALLOWED_REACTIONS:
                reactions.append(reaction)
    return reactions


# =============================================================================
# Pull requests
# =============================================================================


async def fetch_repo_pull_requests(
    client: GitHubClient,
    full_name: str,
    updated_since: datetime | None = None,
    start_page: int = 1,
) -> AsyncIterator[Batch[PullRequest]]:
    """Fetch pull requests (both states), newest update first.

    The pulls endpoint has no `since` filter, so with `updated_since` the
    results are filtered client-side and paging stops at the first page
    reaching older items.
    """
    params = {"state": "all", "sort": "updated", "direction": "desc"}

    async for page, raw, has_more in _paginate(
        client, f"/repos/{full_name}/pulls", params, start_page
    ):
        prs = [PullRequest.from_api(p) for p in raw]
        if updated_since is None:
            yield Batch(prs, page, has_more)
            continue

        fresh = [p for p in prs if p.updated_at >= updated_since]
        reached_older = len(fresh) < len(prs)
        yield Batch(fresh, page, has_more and not reached_older)
        if reached_older:
            break


async def fetch_recently_closed_pull_requests(
    client: GitHubClient,
    full_name: str,
    since: datetime,
    start_page: int = 1,
) -> AsyncIterator[Batch[PullRequest]]:
    """Fetch pull requests closed (or merged) at or after `since`."""
    params = {"state": "closed", "sort": "updated", "direction": "desc"}

    async for page, raw, has_more in _paginate(
        client, f"/repos/{full_name}/pulls", params, start_page
    ):
        prs = [PullRequest.from_api(p) for p in raw]
        closed = [p for p in prs if p.closed_at and p.closed_at >= since]
        # closed_at <= updated_at, so an older update means nothing newer follows
        reached_older = any(p.updated_at < since for p in prs)
        yield Batch(closed, page, has_more and not reached_older)
        if reached_older:
            break


async def fetch_pull_request_file_stats(
    client: GitHubClient, full_name: str, number: int
) -> FileStats:
    """Sum additions and deletions over the files of a pull request."""
    additions = deletions = changed = 0
    async for _, raw, _ in _paginate(client, f"/repos/{full_name}/pulls/{number}/files"):
        for f in raw:
            additions += f.get("additions", 0)
            deletions += f.get("deletions", 0)
        changed += len(raw)
    return FileStats(additions=additions, deletions=deletions, changed_files=changed)


async def fetch_pull_request_reviews(client: GitHubClient, full_name: str, number: int) -> list[Review]:
    """Fetch submitted reviews of a pull request."""
    reviews: list[Review] = []
    async for _, raw, _ in _paginate(client, f"/repos/{full_name}/pulls/{number}/reviews"):
        reviews.extend(Review.from_api(r) for r in raw)
    return reviews


# =============================================================================
# Users
# =============================================================================


async def fetch_user_profile(client: GitHubClient, login: str) -> UserProfile:
    """Fetch a full user profile (company, name, type)."""
    data = await client.get(f"/users/{login}")
    return UserProfile.from_api(data)
