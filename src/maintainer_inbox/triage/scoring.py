"""Next-work-item scoring and explanations.

An item's total score is a preference-independent base score plus a boost
driven by the user's preference toggles. All arithmetic is on integers so
ties are exact; the caller breaks them on last activity.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from maintainer_inbox.config import settings
from maintainer_inbox.db.models import ensure_utc
from maintainer_inbox.db.preferences import WorkItemPreferences

REASON_WAITING_ON_ME = "Waiting on you"
REASON_KNOWN_CUSTOMER = "Known customer"
REASON_RECENT_ACTIVITY = "Recently active"
REASON_QUICK_WIN = "Quick win"
REASON_COMMUNITY_INTEREST = "Strong community interest"
REASON_AVAILABLE = "Available"

# Secondary reasons must contribute at least this much
SECONDARY_REASON_MIN_SCORE = 5
MAX_SECONDARY_REASONS = 2


@dataclass(frozen=True)
class ScoringWeights:
    """Scoring coefficients; defaults come from settings."""

    waiting_on_me: int = 15
    recent_24h: int = 15
    recent_3d: int = 10
    recent_7d: int = 5
    per_commenter: int = 3
    per_reaction: int = 1
    unrelated_repo_penalty: int = 20
    boost_waiting_on_me: int = 25
    boost_known_customer: int = 30
    boost_recent_24h: int = 10
    boost_recent_3d: int = 5
    boost_quick_win: int = 15

    @classmethod
    def from_settings(cls) -> "ScoringWeights":
        return cls(
            waiting_on_me=settings.SCORE_WAITING_ON_ME,
            recent_24h=settings.SCORE_RECENT_24H,
            recent_3d=settings.SCORE_RECENT_3D,
            recent_7d=settings.SCORE_RECENT_7D,
            per_commenter=settings.SCORE_PER_COMMENTER,
            per_reaction=settings.SCORE_PER_REACTION,
            unrelated_repo_penalty=settings.SCORE_UNRELATED_REPO_PENALTY,
            boost_waiting_on_me=settings.BOOST_WAITING_ON_ME,
            boost_known_customer=settings.BOOST_KNOWN_CUSTOMER,
            boost_recent_24h=settings.BOOST_RECENT_24H,
            boost_recent_3d=settings.BOOST_RECENT_3D,
            boost_quick_win=settings.BOOST_QUICK_WIN,
        )


@dataclass(frozen=True)
class ItemSignals:
    """Per-item facts the score is computed from."""

    waiting_on_me: bool
    is_known_customer_author: bool
    author_is_maintainer: bool
    is_repo_maintained_or_starred: bool
    quick_win: bool
    reaction_score: int  # capped reaction count
    unique_commenter_count: int  # capped distinct commenters
    last_activity_at: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_activity_at"] = ensure_utc(self.last_activity_at).isoformat()
        return data


@dataclass(frozen=True)
class ScoreBreakdown:
    """Score of one item, with per-reason contributions."""

    base_score: int
    preference_boost: int
    waiting_on_me_contribution: int
    known_customer_contribution: int
    recent_activity_contribution: int
    quick_win_contribution: int
    community_interest_contribution: int
    signals: ItemSignals

    @property
    def total_score(self) -> int:
        return self.base_score + self.preference_boost

    def to_dict(self) -> dict:
        return {
            "base_score": self.base_score,
            "preference_boost": self.preference_boost,
            "total_score": self.total_score,
            "waiting_on_me_contribution": self.waiting_on_me_contribution,
            "known_customer_contribution": self.known_customer_contribution,
            "recent_activity_contribution": self.recent_activity_contribution,
            "quick_win_contribution": self.quick_win_contribution,
            "community_interest_contribution": self.community_interest_contribution,
            "signals": self.signals.to_dict(),
        }


@dataclass(frozen=True)
class Explanation:
    """Human-readable reasons an item was picked."""

    primary: str
    secondary: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"primary": self.primary, "secondary": list(self.secondary)}


def calc_recency_score(age: timedelta, weights: ScoringWeights) -> int:
    """Base recency tier: <24h, <3d, <7d, else nothing."""
    if age < timedelta(hours=24):
        return weights.recent_24h
    if age < timedelta(days=3):
        return weights.recent_3d
    if age < timedelta(days=7):
        return weights.recent_7d
    return 0


def calc_recency_boost(age: timedelta, weights: ScoringWeights) -> int:
    """Preference recency tier: <24h, <3d, else nothing."""
    if age < timedelta(hours=24):
        return weights.boost_recent_24h
    if age < timedelta(days=3):
        return weights.boost_recent_3d
    return 0


def score_item(
    signals: ItemSignals,
    preferences: WorkItemPreferences,
    now: datetime,
    weights: ScoringWeights | None = None,
) -> ScoreBreakdown:
    """Score one eligible item for one user."""
    w = weights or ScoringWeights.from_settings()
    age = ensure_utc(now) - ensure_utc(signals.last_activity_at)

    waiting_base = w.waiting_on_me if signals.waiting_on_me else 0
    recency_base = calc_recency_score(age, w)
    community = (
        signals.unique_commenter_count * w.per_commenter
        + signals.reaction_score * w.per_reaction
    )
    penalty = 0 if signals.is_repo_maintained_or_starred else w.unrelated_repo_penalty
    base = waiting_base + recency_base + community - penalty

    waiting_boost = (
        w.boost_waiting_on_me if preferences.prefer_waiting_on_me and signals.waiting_on_me else 0
    )
    customer_boost = (
        w.boost_known_customer
        if preferences.prefer_known_customers
        and signals.is_known_customer_author
        and not signals.author_is_maintainer
        else 0
    )
    recency_boost = calc_recency_boost(age, w) if preferences.prefer_recent_activity else 0
    quick_boost = w.boost_quick_win if preferences.prefer_quick_wins and signals.quick_win else 0
    boost = waiting_boost + customer_boost + recency_boost + quick_boost

    return ScoreBreakdown(
        base_score=base,
        preference_boost=boost,
        waiting_on_me_contribution=waiting_base + waiting_boost,
        known_customer_contribution=customer_boost,
        recent_activity_contribution=recency_base + recency_boost,
        quick_win_contribution=quick_boost,
        community_interest_contribution=community,
        signals=signals,
    )


def explain(breakdown: ScoreBreakdown) -> Explanation:
    """Pick the primary reason and up to two notable secondary ones."""
    reasons = [
        (REASON_WAITING_ON_ME, breakdown.waiting_on_me_contribution),
        (REASON_KNOWN_CUSTOMER, breakdown.known_customer_contribution),
        (REASON_RECENT_ACTIVITY, breakdown.recent_activity_contribution),
        (REASON_QUICK_WIN, breakdown.quick_win_contribution),
        (REASON_COMMUNITY_INTEREST, breakdown.community_interest_contribution),
    ]
    # sorted() is stable, so equal scores keep the order above
    ranked = sorted(reasons, key=lambda r: r[1], reverse=True)

    top_name, top_score = ranked[0]
    primary = top_name if top_score > 0 else REASON_AVAILABLE
    secondary = [
        name for name, score in ranked[1:] if score >= SECONDARY_REASON_MIN_SCORE
    ][:MAX_SECONDARY_REASONS]
    return Explanation(primary=primary, secondary=secondary)
