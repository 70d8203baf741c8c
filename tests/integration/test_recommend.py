"""Integration tests for next-work-item recommendation."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from maintainer_inbox.db.models import (
    Comment,
    Company,
    CompanyOverride,
    GitHubUser,
    MaintainerAssertion,
    Reaction,
    RepoStar,
    Repository,
    WorkItem,
)
from maintainer_inbox.db.preferences import WorkItemPreferences
from maintainer_inbox.triage.recommend import RecommendationEngine, SnoozedItem
from maintainer_inbox.triage.scoring import REASON_KNOWN_CUSTOMER, REASON_WAITING_ON_ME
from maintainer_inbox.triage.turns import Turn, get_turn_state

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

MARIA = 100  # maintainer of acme/rules_js
ALICE = 200
BOB = 300

RULES_JS = 1
WEBSITE = 2


@pytest.fixture
async def seeded(test_db_session):
    """Two repositories, three users and maria maintaining rules_js."""
    session = test_db_session
    session.add_all([
        Repository(github_id=RULES_JS, name="rules_js", full_name="acme/rules_js", owner_login="acme"),
        Repository(github_id=WEBSITE, name="website", full_name="acme/website", owner_login="acme"),
        GitHubUser(github_id=MARIA, login="maria"),
        GitHubUser(github_id=ALICE, login="alice"),
        GitHubUser(github_id=BOB, login="bob"),
        MaintainerAssertion(
            repo_github_id=RULES_JS, user_github_id=MARIA, source="github-permissions", confidence=100
        ),
    ])
    await session.commit()
    return session


def work_item(
    github_id: int,
    repo_id: int = RULES_JS,
    author: str = "alice",
    updated_at: datetime | None = None,
    item_type: str = "issue",
    state: str = "open",
    draft: bool = False,
    assignees: list[str] | None = None,
) -> WorkItem:
    updated = updated_at or NOW - timedelta(days=10)
    return WorkItem(
        github_id=github_id,
        item_type=item_type,
        repo_github_id=repo_id,
        number=github_id,
        title=f"Item {github_id}",
        state=state,
        author_login=author,
        assignees=json.dumps(assignees or []),
        created_at=updated - timedelta(days=1),
        updated_at=updated,
        draft=draft,
    )


def comment(github_id: int, item_id: int, author: str, at: datetime) -> Comment:
    return Comment(github_id=github_id, item_github_id=item_id, author_login=author, created_at=at)


async def recommend(session_factory, user_id=MARIA, **kwargs):
    engine = RecommendationEngine(session_factory=session_factory)
    return await engine.get_next_work_item(user_id, now=NOW, **kwargs)


class TestEligibility:
    """Tests for which items can be recommended."""

    async def test_waiting_item_recommended(self, seeded, session_factory):
        """An untouched issue in a maintained repo waits on the maintainer."""
        seeded.add(work_item(10))
        await seeded.commit()

        item = await recommend(session_factory)

        assert item is not None
        assert item.github_id == 10
        assert item.turn == Turn.MAINTAINER
        assert item.explanation.primary == REASON_WAITING_ON_ME

    async def test_author_turn_excluded(self, seeded, session_factory):
        """An item the maintainer answered last is not recommended."""
        seeded.add(work_item(10))
        seeded.add(comment(1, 10, "maria", NOW - timedelta(hours=3)))
        await seeded.commit()

        assert await recommend(session_factory) is None

    async def test_author_turn_excluded_even_when_assigned(self, seeded, session_factory):
        """Assignment does not override an author's turn."""
        seeded.add(work_item(10, assignees=["maria"]))
        seeded.add(comment(1, 10, "maria", NOW - timedelta(hours=3)))
        await seeded.commit()

        assert await recommend(session_factory) is None

    async def test_only_item_snoozed(self, seeded, session_factory):
        """Snoozing the only candidate yields nothing."""
        seeded.add(work_item(10))
        await seeded.commit()

        item = await recommend(session_factory, snoozed_items=[SnoozedItem(type="issue", id=10)])

        assert item is None

    async def test_expired_snooze_ignored(self, seeded, session_factory):
        seeded.add(work_item(10))
        await seeded.commit()

        snooze = SnoozedItem(type="issue", id=10, snoozed_until=NOW - timedelta(minutes=1))
        item = await recommend(session_factory, snoozed_items=[snooze])

        assert item is not None and item.github_id == 10

    async def test_snooze_matches_type(self, seeded, session_factory):
        """A PR snooze does not hide an issue with the same id."""
        seeded.add(work_item(10))
        await seeded.commit()

        item = await recommend(session_factory, snoozed_items=[SnoozedItem(type="pr", id=10)])

        assert item is not None

    async def test_drafts_and_closed_items_excluded(self, seeded, session_factory):
        seeded.add_all([
            work_item(10, item_type="pr", draft=True),
            work_item(11, state="closed"),
        ])
        await seeded.commit()

        assert await recommend(session_factory) is None

    async def test_assigned_item_in_unmaintained_repo(self, seeded, session_factory):
        """Assignment makes an item waiting on the assignee."""
        seeded.add(work_item(20, repo_id=WEBSITE, author="alice", assignees=["Bob"]))
        await seeded.commit()

        item = await recommend(session_factory, user_id=BOB, include_scoring=True)

        assert item is not None
        assert item.scoring.signals.waiting_on_me is True
        assert item.scoring.signals.is_repo_maintained_or_starred is False

    async def test_starred_only_limits_repositories(self, seeded, session_factory):
        """With starred_only, unrelated repositories are skipped."""
        seeded.add(work_item(20, repo_id=WEBSITE))
        await seeded.commit()
        prefs = WorkItemPreferences(starred_only=True)

        assert await recommend(session_factory, user_id=BOB, preferences=prefs) is None

        seeded.add(RepoStar(user_github_id=BOB, repo_github_id=WEBSITE))
        await seeded.commit()
        item = await recommend(session_factory, user_id=BOB, preferences=prefs)
        assert item is not None and item.github_id == 20


class TestRanking:
    """Tests for scoring-driven selection."""

    async def test_known_customer_preferred(self, seeded, session_factory):
        """A customer's item outranks an equal one when customers are preferred."""
        seeded.add_all([
            Company(name="Initech", classification="CUSTOMER"),
            work_item(10, author="bob"),
            work_item(11, author="alice"),
        ])
        await seeded.commit()

        result = await seeded.execute(select(GitHubUser).where(GitHubUser.login == "alice"))
        alice = result.scalar_one()
        alice.company = "  initech "
        await seeded.commit()

        prefs = WorkItemPreferences(prefer_known_customers=True)
        item = await recommend(session_factory, preferences=prefs, include_scoring=True)

        assert item.github_id == 11
        assert item.scoring.signals.is_known_customer_author is True
        assert REASON_KNOWN_CUSTOMER in [item.explanation.primary, *item.explanation.secondary]

    async def test_override_beats_profile_company(self, seeded, session_factory):
        """A manual company override replaces the profile company."""
        seeded.add_all([
            Company(name="Initech", classification="CUSTOMER"),
            CompanyOverride(github_user_id=ALICE, override_company_name="Freelance"),
            work_item(11, author="alice"),
        ])
        result = await seeded.execute(select(GitHubUser).where(GitHubUser.github_id == ALICE))
        result.scalar_one().company = "Initech"
        await seeded.commit()

        item = await recommend(session_factory, include_scoring=True)

        assert item.scoring.signals.is_known_customer_author is False

    async def test_enrichment_company_used_as_fallback(self, seeded, session_factory):
        seeded.add_all([Company(name="Initech", classification="CUSTOMER"), work_item(11, author="alice")])
        result = await seeded.execute(select(GitHubUser).where(GitHubUser.github_id == ALICE))
        result.scalar_one().enriched_company = "INITECH"
        await seeded.commit()

        item = await recommend(session_factory, include_scoring=True)

        assert item.scoring.signals.is_known_customer_author is True

    async def test_community_interest_counts(self, seeded, session_factory):
        """Commenters and reactions raise the score, with caps."""
        seeded.add(work_item(10))
        seeded.add_all(
            [comment(i, 10, f"user{i}", NOW - timedelta(days=9, minutes=i)) for i in range(1, 8)]
        )
        seeded.add_all(
            [Reaction(item_github_id=10, user_github_id=1000 + i, content="+1") for i in range(12)]
        )
        await seeded.commit()

        item = await recommend(session_factory, include_scoring=True)

        assert item.scoring.signals.unique_commenter_count == 5
        assert item.scoring.signals.reaction_score == 10
        assert item.scoring.signals.quick_win is False
        assert item.scoring.community_interest_contribution == 25

    async def test_tie_broken_by_recent_activity(self, seeded, session_factory):
        """Equal scores prefer the most recently active item."""
        seeded.add_all([
            work_item(10, updated_at=NOW - timedelta(days=20)),
            work_item(11, updated_at=NOW - timedelta(days=15)),
        ])
        await seeded.commit()

        item = await recommend(session_factory)

        assert item.github_id == 11

    async def test_scoring_omitted_by_default(self, seeded, session_factory):
        seeded.add(work_item(10))
        await seeded.commit()

        item = await recommend(session_factory)

        assert item.scoring is None
        assert "scoring" not in item.to_dict()


class TestGetTurnState:
    """Tests for the store-backed turn lookup."""

    async def test_open_item(self, seeded, session_factory):
        seeded.add(work_item(10))
        seeded.add(comment(1, 10, "Maria", NOW - timedelta(days=1)))
        await seeded.commit()

        state = await get_turn_state(10, session_factory=session_factory, now=NOW)

        assert state.turn == Turn.AUTHOR
        assert state.stalled is False

    async def test_closed_or_unknown_item(self, seeded, session_factory):
        seeded.add(work_item(11, state="closed"))
        await seeded.commit()

        assert await get_turn_state(11, session_factory=session_factory, now=NOW) is None
        assert await get_turn_state(999, session_factory=session_factory, now=NOW) is None

    async def test_stalled_maintainer_turn(self, seeded, session_factory):
        seeded.add(work_item(10, updated_at=NOW - timedelta(days=30)))
        await seeded.commit()

        state = await get_turn_state(10, session_factory=session_factory, now=NOW)

        assert state.turn == Turn.MAINTAINER
        assert state.stalled is True
