"""Next-work-item recommendation for one maintainer.

Loads every open item with its turn inputs in a handful of batched
queries, filters to eligible items, scores them and returns the single
best one with an explanation.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintainer_inbox.config import settings
from maintainer_inbox.db.database import async_session_maker
from maintainer_inbox.db.models import (
    ITEM_TYPE_PR,
    Company,
    CompanyOverride,
    GitHubUser,
    MaintainerAssertion,
    Reaction,
    RepoStar,
    Repository,
    WorkItem,
    ensure_utc,
    utcnow,
)
from maintainer_inbox.db.preferences import WorkItemPreferences
from maintainer_inbox.triage.scoring import (
    Explanation,
    ItemSignals,
    ScoreBreakdown,
    ScoringWeights,
    explain,
    score_item,
)
from maintainer_inbox.triage.turns import (
    CommentRecord,
    Turn,
    TurnState,
    load_comments,
    load_maintainer_logins,
    resolve_turn,
)

logger = logging.getLogger(__name__)

CUSTOMER_CLASSIFICATION = "CUSTOMER"
QUICK_WIN_MAX_COMMENTS = settings.QUICK_WIN_MAX_COMMENTS
MAX_UNIQUE_COMMENTERS = settings.MAX_UNIQUE_COMMENTERS
MAX_REACTION_SCORE = settings.MAX_REACTION_SCORE


@dataclass(frozen=True)
class SnoozedItem:
    """An item the user asked not to see for now."""

    type: str  # "issue" or "pr"
    id: int  # work item github id
    snoozed_until: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.snoozed_until is None or ensure_utc(self.snoozed_until) >= now


@dataclass
class NextWorkItem:
    """The recommended item."""

    github_id: int
    item_type: str
    repo_full_name: str
    number: int
    title: str
    turn: Turn
    stalled: bool
    updated_at: datetime
    last_activity_at: datetime
    explanation: Explanation
    scoring: ScoreBreakdown | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "github_id": self.github_id,
            "item_type": self.item_type,
            "repo_full_name": self.repo_full_name,
            "number": self.number,
            "title": self.title,
            "turn": self.turn.value,
            "stalled": self.stalled,
            "updated_at": ensure_utc(self.updated_at).isoformat(),
            "last_activity_at": ensure_utc(self.last_activity_at).isoformat(),
            "explanation": self.explanation.to_dict(),
        }
        if self.scoring is not None:
            data["scoring"] = self.scoring.to_dict()
        return data


@dataclass
class _Candidate:
    item: WorkItem
    repo_full_name: str
    turn_state: TurnState
    breakdown: ScoreBreakdown


def normalize_company(name: str | None) -> str | None:
    if not name:
        return None
    normalized = name.strip().lower()
    return normalized or None


class RecommendationEngine:
    """Picks the best next item to work on."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        weights: ScoringWeights | None = None,
        stall_interval: timedelta | None = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.weights = weights or ScoringWeights.from_settings()
        self.stall_interval = stall_interval

    async def get_next_work_item(
        self,
        user_id: int,
        preferences: WorkItemPreferences | None = None,
        snoozed_items: Iterable[SnoozedItem] = (),
        include_scoring: bool = False,
        now: datetime | None = None,
    ) -> NextWorkItem | None:
        """Return the top-scoring eligible item for `user_id`, or None."""
        prefs = preferences or WorkItemPreferences()
        now = ensure_utc(now) if now else utcnow()
        snoozed = {(s.type, s.id) for s in snoozed_items if s.is_active(now)}

        async with self.session_factory() as session:
            candidates = await self._score_candidates(session, user_id, prefs, snoozed, now)

        if not candidates:
            logger.info(f"No eligible work item for user {user_id}")
            return None

        best = max(
            candidates,
            key=lambda c: (
                c.breakdown.total_score,
                ensure_utc(c.breakdown.signals.last_activity_at),
            ),
        )
        logger.debug(
            f"Recommending {best.repo_full_name}#{best.item.number} for user {user_id} "
            f"(score {best.breakdown.total_score}, {len(candidates)} candidates)"
        )
        return NextWorkItem(
            github_id=best.item.github_id,
            item_type=best.item.item_type,
            repo_full_name=best.repo_full_name,
            number=best.item.number,
            title=best.item.title,
            turn=best.turn_state.turn,
            stalled=best.turn_state.stalled,
            updated_at=ensure_utc(best.item.updated_at),
            last_activity_at=best.breakdown.signals.last_activity_at,
            explanation=explain(best.breakdown),
            scoring=best.breakdown if include_scoring else None,
        )

    async def _score_candidates(
        self,
        session: AsyncSession,
        user_id: int,
        prefs: WorkItemPreferences,
        snoozed: set[tuple[str, int]],
        now: datetime,
    ) -> list[_Candidate]:
        user_login = await self._get_login(session, user_id)

        result = await session.execute(
            select(WorkItem, Repository.full_name)
            .join(Repository, Repository.github_id == WorkItem.repo_github_id)
            .where(WorkItem.state == "open")
        )
        rows = [
            (item, full_name)
            for item, full_name in result.all()
            if not (item.item_type == ITEM_TYPE_PR and item.draft)
            and (item.item_type, item.github_id) not in snoozed
        ]
        if not rows:
            return []

        item_ids = [item.github_id for item, _ in rows]
        repo_ids = {item.repo_github_id for item, _ in rows}
        maintainers = await load_maintainer_logins(session, repo_ids)
        comments = await load_comments(session, item_ids)
        user_repos = await self._get_user_repo_ids(session, user_id)
        maintained = user_repos["maintained"]
        related = maintained | user_repos["starred"]

        eligible: list[tuple[WorkItem, str, TurnState, bool]] = []
        for item, full_name in rows:
            if prefs.starred_only and item.repo_github_id not in related:
                continue
            state = resolve_turn(
                item,
                comments.get(item.github_id, []),
                maintainers.get(item.repo_github_id, set()),
                now,
                self.stall_interval,
            )
            assigned = bool(user_login) and user_login.lower() in {
                a.lower() for a in item.assignee_list
            }
            if state.turn == Turn.AUTHOR:
                continue
            if state.turn != Turn.MAINTAINER and not assigned:
                continue
            eligible.append((item, full_name, state, assigned))

        if not eligible:
            return []

        eligible_ids = [item.github_id for item, _, _, _ in eligible]
        reaction_counts = await self._count_reactions(session, eligible_ids)
        customer_authors = await self._customer_authors(
            session, {item.author_login for item, _, _, _ in eligible if item.author_login}
        )

        candidates = []
        for item, full_name, state, assigned in eligible:
            item_comments = comments.get(item.github_id, [])
            author = (item.author_login or "").lower()
            signals = ItemSignals(
                waiting_on_me=(state.turn == Turn.MAINTAINER and item.repo_github_id in maintained)
                or assigned,
                is_known_customer_author=author in customer_authors,
                author_is_maintainer=author in maintainers.get(item.repo_github_id, set()),
                is_repo_maintained_or_starred=item.repo_github_id in related,
                quick_win=len(item_comments) <= QUICK_WIN_MAX_COMMENTS,
                reaction_score=min(reaction_counts.get(item.github_id, 0), MAX_REACTION_SCORE),
                unique_commenter_count=min(
                    _unique_commenters(item_comments), MAX_UNIQUE_COMMENTERS
                ),
                last_activity_at=_last_activity(item, item_comments),
            )
            breakdown = score_item(signals, prefs, now, self.weights)
            candidates.append(_Candidate(item, full_name, state, breakdown))
        return candidates

    async def _get_login(self, session: AsyncSession, user_id: int) -> str | None:
        result = await session.execute(
            select(GitHubUser.login).where(GitHubUser.github_id == user_id)
        )
        return result.scalar_one_or_none()

    async def _get_user_repo_ids(self, session: AsyncSession, user_id: int) -> dict[str, set[int]]:
        maintained = await session.execute(
            select(MaintainerAssertion.repo_github_id).where(
                MaintainerAssertion.user_github_id == user_id
            )
        )
        starred = await session.execute(
            select(RepoStar.repo_github_id).where(RepoStar.user_github_id == user_id)
        )
        return {
            "maintained": set(maintained.scalars().all()),
            "starred": set(starred.scalars().all()),
        }

    async def _count_reactions(self, session: AsyncSession, item_ids: list[int]) -> dict[int, int]:
        result = await session.execute(
            select(Reaction.item_github_id, func.count(Reaction.id))
            .where(Reaction.item_github_id.in_(item_ids))
            .group_by(Reaction.item_github_id)
        )
        return {item_id: count for item_id, count in result.all()}

    async def _customer_authors(self, session: AsyncSession, logins: set[str]) -> set[str]:
        """Lowercased logins whose effective company is a known customer.

        Effective company: manual override, else GitHub profile company,
        else the enrichment source.
        """
        if not logins:
            return set()

        customers_result = await session.execute(
            select(Company.name).where(Company.classification == CUSTOMER_CLASSIFICATION)
        )
        customers = {normalize_company(n) for n in customers_result.scalars().all()}
        customers.discard(None)
        if not customers:
            return set()

        result = await session.execute(
            select(
                GitHubUser.login,
                GitHubUser.company,
                GitHubUser.enriched_company,
                CompanyOverride.override_company_name,
            )
            .outerjoin(CompanyOverride, CompanyOverride.github_user_id == GitHubUser.github_id)
            .where(func.lower(GitHubUser.login).in_([login.lower() for login in logins]))
        )
        matched: set[str] = set()
        for login, profile_company, enriched_company, override in result.all():
            company = (
                normalize_company(override)
                or normalize_company(profile_company)
                or normalize_company(enriched_company)
            )
            if company in customers:
                matched.add(login.lower())
        return matched


def _unique_commenters(comments: list[CommentRecord]) -> int:
    return len({c.author_login.lower() for c in comments if c.author_login})


def _last_activity(item: WorkItem, comments: list[CommentRecord]) -> datetime:
    if comments:
        return max(ensure_utc(c.created_at) for c in comments)
    return ensure_utc(item.updated_at)


async def get_next_work_item(
    user_id: int,
    preferences: WorkItemPreferences | None = None,
    snoozed_items: Iterable[SnoozedItem] = (),
    include_scoring: bool = False,
) -> NextWorkItem | None:
    """Recommend the next item for `user_id` using the default store."""
    return await RecommendationEngine().get_next_work_item(
        user_id, preferences, snoozed_items, include_scoring
    )
