"""Integration tests for the incremental sync pass against a fake GitHub."""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import func, select

from github_fakes import NOW, comment_payload, issue_payload, pr_payload, repo_payload, user_payload
from maintainer_inbox.db.models import Comment, GitHubUser, PullRequestReview, Repository, WorkItem
from maintainer_inbox.db.watermarks import RESOURCE_ISSUES, RESOURCE_PULL_REQUESTS, WatermarkStore
from maintainer_inbox.db.writer import upsert_issue
from maintainer_inbox.sync.orchestrator import IncrementalSync
from maintainer_inbox.sync.repo_filter import RepoFilter

ALICE = user_payload(1, "alice")
MARIA = user_payload(2, "maria")

RULES_JS = 10
WEBSITE = 11


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def by_state(open_items: list[dict], closed_items: list[dict]):
    """Serve listing results by the `state` query parameter."""
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("state") == "closed":
            return httpx.Response(200, json=closed_items)
        return httpx.Response(200, json=open_items)
    return handler


@pytest.fixture
def github(fake_github):
    """One org with one repository holding two issues and one PR."""
    fake_github.add("/orgs/acme/repos", [repo_payload(RULES_JS, "acme/rules_js")])
    fake_github.add_handler("/repos/acme/rules_js/issues", by_state(
        [
            issue_payload(101, 1, ALICE, NOW - timedelta(hours=5)),
            issue_payload(102, 2, ALICE, NOW - timedelta(hours=6), assignees=[MARIA]),
        ],
        [],
    ))
    fake_github.add_handler("/repos/acme/rules_js/pulls", by_state(
        [pr_payload(201, 3, ALICE, NOW - timedelta(hours=7))],
        [],
    ))
    fake_github.add("/repos/acme/rules_js/issues/1/comments", [
        comment_payload(9001, MARIA, NOW - timedelta(hours=4)),
    ])
    fake_github.add("/repos/acme/rules_js/pulls/3/files", [
        {"filename": "a.bzl", "additions": 12, "deletions": 3},
    ])
    fake_github.add("/repos/acme/rules_js/pulls/3/reviews", [
        {"id": 7001, "state": "APPROVED", "user": MARIA, "submitted_at": "2024-06-01T08:00:00Z"},
    ])
    return fake_github


def make_sync(github, session_factory, clock, **kwargs):
    kwargs.setdefault("enrich", False)
    kwargs.setdefault("detect_maintainers", False)
    kwargs.setdefault("repo_filter", RepoFilter())
    return IncrementalSync(
        github.client(),
        session_factory=session_factory,
        clock=clock,
        **kwargs,
    )


async def count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestFirstPass:
    """Tests for the initial full sync."""

    async def test_persists_items_and_discussion(self, github, session_factory):
        """Issues, PRs, comments, reviews and users are stored."""
        syncer = make_sync(github, session_factory, Clock(NOW))

        summary = await syncer.sync_organization("acme")

        assert summary.ok
        assert summary.repos_processed == 1
        assert summary.issues_synced == 2
        assert summary.prs_synced == 1
        assert await count(session_factory, Repository) == 1
        assert await count(session_factory, WorkItem) == 3
        assert await count(session_factory, Comment) == 1
        assert await count(session_factory, PullRequestReview) == 1

        async with session_factory() as session:
            pr = (await session.execute(select(WorkItem).where(WorkItem.github_id == 201))).scalar_one()
            logins = set((await session.execute(select(GitHubUser.login))).scalars().all())
        assert pr.item_type == "pr"
        assert (pr.additions, pr.deletions, pr.changed_files) == (12, 3, 1)
        assert logins == {"alice", "maria"}

    async def test_watermarks_advance_to_pass_start(self, github, session_factory):
        """Both resources are synced through the instant the pass started."""
        syncer = make_sync(github, session_factory, Clock(NOW))
        await syncer.sync_organization("acme")

        store = WatermarkStore(session_factory)
        assert await store.get_watermark(RULES_JS, RESOURCE_ISSUES) == NOW
        assert await store.get_watermark(RULES_JS, RESOURCE_PULL_REQUESTS) == NOW

    async def test_first_pass_is_full(self, github, session_factory):
        """Without a watermark no `since` filter is sent."""
        await make_sync(github, session_factory, Clock(NOW)).sync_organization("acme")

        issue_calls = github.calls("/repos/acme/rules_js/issues")
        assert len(issue_calls) == 1
        assert "since" not in issue_calls[0].url.params


class TestIncrementalPass:
    """Tests for passes after the first one."""

    async def test_second_pass_is_idempotent(self, github, session_factory):
        """Re-syncing the same data changes no row counts."""
        await make_sync(github, session_factory, Clock(NOW)).sync_organization("acme")
        counts = [await count(session_factory, m) for m in (WorkItem, Comment, GitHubUser)]

        await make_sync(github, session_factory, Clock(NOW + timedelta(hours=1))).sync_organization("acme")

        assert [await count(session_factory, m) for m in (WorkItem, Comment, GitHubUser)] == counts

    async def test_delta_uses_watermark(self, github, session_factory):
        """The second pass asks for changes since the first pass started."""
        await make_sync(github, session_factory, Clock(NOW)).sync_organization("acme")
        github.requests.clear()

        await make_sync(github, session_factory, Clock(NOW + timedelta(hours=1))).sync_organization("acme")

        delta = [
            r for r in github.calls("/repos/acme/rules_js/issues")
            if r.url.params.get("state") == "all"
        ]
        assert delta[0].url.params["since"] == "2024-06-01T12:00:00Z"

    async def test_closed_item_in_both_listings_counted_once(self, github, session_factory):
        """An item in the delta and the recently-closed listing is processed once."""
        await make_sync(github, session_factory, Clock(NOW)).sync_organization("acme")

        closed = issue_payload(
            101, 1, ALICE, NOW + timedelta(minutes=30), state="closed", closed_at=NOW + timedelta(minutes=30)
        )
        github.add_handler("/repos/acme/rules_js/issues", by_state([closed], [closed]))
        github.add_handler("/repos/acme/rules_js/pulls", by_state([], []))

        summary = await make_sync(
            github, session_factory, Clock(NOW + timedelta(hours=1))
        ).sync_organization("acme")

        assert summary.issues_synced == 1
        async with session_factory() as session:
            issue = (await session.execute(select(WorkItem).where(WorkItem.github_id == 101))).scalar_one()
        assert issue.state == "closed"


class TestFailures:
    """Tests for error isolation and reporting."""

    async def test_item_failure_is_recorded_and_skipped(self, github, session_factory):
        """A failing item is reported; its siblings and the watermark proceed."""
        async def flaky_upsert(session, repo_id, issue):
            if issue.number == 2:
                raise ValueError("constraint violated")
            return await upsert_issue(session, repo_id, issue)

        with patch("maintainer_inbox.sync.orchestrator.upsert_issue", side_effect=flaky_upsert):
            summary = await make_sync(github, session_factory, Clock(NOW)).sync_organization("acme")

        assert summary.repos_processed == 1
        assert summary.issues_synced == 1
        assert len(summary.errors) == 1
        error = summary.errors[0]
        assert error.repo == "acme/rules_js"
        assert error.item == "issue #2"
        assert "constraint violated" in error.error
        assert await WatermarkStore(session_factory).get_watermark(RULES_JS, RESOURCE_ISSUES) == NOW

    async def test_repository_failure_does_not_stop_the_pass(self, github, session_factory):
        """A repository whose listing keeps failing is skipped without a watermark."""
        github.add("/orgs/acme/repos", [
            repo_payload(WEBSITE, "acme/website"),
            repo_payload(RULES_JS, "acme/rules_js"),
        ])
        github.add("/repos/acme/website/issues", {"message": "unavailable"}, status=502)

        summary = await make_sync(github, session_factory, Clock(NOW)).sync_organization("acme")

        assert summary.repos_processed == 1
        assert summary.repos_skipped == 1
        assert [e.repo for e in summary.errors] == ["acme/website"]
        assert summary.issues_synced == 2
        store = WatermarkStore(session_factory)
        assert await store.get_watermark(WEBSITE, RESOURCE_ISSUES) is None
        assert await store.get_watermark(RULES_JS, RESOURCE_ISSUES) == NOW

    async def test_listing_failure_reported(self, fake_github, session_factory):
        """An unreadable organization yields an error, not an exception."""
        fake_github.add("/orgs/acme/repos", {"message": "Forbidden"}, status=403)

        summary = await make_sync(fake_github, session_factory, Clock(NOW)).sync_organization("acme")

        assert summary.repos_processed == 0
        assert summary.errors[0].repo == "acme"

    async def test_listing_connection_failure_reported(self, fake_github, session_factory):
        """A dropped connection while listing repositories is recorded like an API error."""

        def reset(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection reset", request=request)

        fake_github.add_handler("/orgs/acme/repos", reset)

        summary = await make_sync(fake_github, session_factory, Clock(NOW)).sync_organization("acme")

        assert summary.repos_processed == 0
        assert summary.errors[0].repo == "acme"
        assert "connection reset" in summary.errors[0].error

    async def test_side_fetch_failure_is_best_effort(self, github, session_factory):
        """A failing comments fetch does not fail the item."""
        github.add("/repos/acme/rules_js/issues/1/comments", {"message": "oops"}, status=403)

        summary = await make_sync(github, session_factory, Clock(NOW)).sync_organization("acme")

        assert summary.ok
        assert summary.issues_synced == 2
        assert await count(session_factory, Comment) == 0

    async def test_filtered_repositories_not_synced(self, github, session_factory):
        syncer = make_sync(github, session_factory, Clock(NOW), repo_filter=RepoFilter(exclude=["rules_*"]))

        summary = await syncer.sync_organization("acme")

        assert summary.repos_processed == 0
        assert summary.repos_skipped == 0
        assert github.calls("/repos/acme/rules_js/issues") == []


class TestEnrichment:
    """Tests for fire-and-forget enrichment during sync."""

    async def test_slow_enrichment_never_blocks(self, github, session_factory):
        """The pass completes while enrichment hangs; drain cancels it."""
        started: list[str] = []
        never = asyncio.Event()

        async def hanging_enricher(login: str) -> None:
            started.append(login)
            await never.wait()

        syncer = make_sync(
            github, session_factory, Clock(NOW),
            enrich=True, enricher=hanging_enricher, drain_timeout=0.05,
        )
        summary = await asyncio.wait_for(syncer.sync_organization("acme"), timeout=5)

        assert summary.ok
        assert summary.issues_synced == 2
        assert sorted(started) == ["alice", "maria"]

    async def test_enrichment_failure_is_only_logged(self, github, session_factory):
        async def broken_enricher(login: str) -> None:
            raise RuntimeError("profile service down")

        syncer = make_sync(github, session_factory, Clock(NOW), enrich=True, enricher=broken_enricher)
        summary = await syncer.sync_organization("acme")

        assert summary.ok
        assert summary.prs_synced == 1
