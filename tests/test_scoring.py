"""Tests for work item scoring and explanations."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from maintainer_inbox.db.preferences import WorkItemPreferences
from maintainer_inbox.triage.scoring import (
    REASON_AVAILABLE,
    REASON_COMMUNITY_INTEREST,
    REASON_KNOWN_CUSTOMER,
    REASON_QUICK_WIN,
    REASON_RECENT_ACTIVITY,
    REASON_WAITING_ON_ME,
    ItemSignals,
    ScoringWeights,
    explain,
    score_item,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
WEIGHTS = ScoringWeights()
NO_PREFS = WorkItemPreferences(
    prefer_known_customers=False,
    prefer_recent_activity=False,
    prefer_waiting_on_me=False,
    prefer_quick_wins=False,
)
ALL_PREFS = WorkItemPreferences(
    prefer_known_customers=True,
    prefer_recent_activity=True,
    prefer_waiting_on_me=True,
    prefer_quick_wins=True,
)


def signals(**overrides) -> ItemSignals:
    base = ItemSignals(
        waiting_on_me=False,
        is_known_customer_author=False,
        author_is_maintainer=False,
        is_repo_maintained_or_starred=True,
        quick_win=False,
        reaction_score=0,
        unique_commenter_count=0,
        last_activity_at=NOW - timedelta(days=30),
    )
    return replace(base, **overrides)


class TestBaseScore:
    """Tests for the preference-independent base score."""

    def test_idle_item_scores_zero(self):
        """Old, unpopular, not waiting: nothing adds up."""
        breakdown = score_item(signals(), NO_PREFS, NOW, WEIGHTS)
        assert breakdown.base_score == 0
        assert breakdown.total_score == 0

    def test_waiting_on_me(self):
        breakdown = score_item(signals(waiting_on_me=True), NO_PREFS, NOW, WEIGHTS)
        assert breakdown.base_score == 15

    @pytest.mark.parametrize(
        "age,expected",
        [
            (timedelta(hours=1), 15),
            (timedelta(hours=30), 10),
            (timedelta(days=5), 5),
            (timedelta(days=8), 0),
        ],
    )
    def test_recency_tiers(self, age, expected):
        """Recency adds 15/10/5/0 for <24h, <3d, <7d and older."""
        breakdown = score_item(signals(last_activity_at=NOW - age), NO_PREFS, NOW, WEIGHTS)
        assert breakdown.base_score == expected

    def test_community_interest(self):
        """3 per unique commenter plus 1 per reaction."""
        breakdown = score_item(
            signals(unique_commenter_count=5, reaction_score=10), NO_PREFS, NOW, WEIGHTS
        )
        assert breakdown.community_interest_contribution == 25
        assert breakdown.base_score == 25

    def test_unrelated_repo_penalty(self):
        """Repos the user neither maintains nor stars lose 20."""
        breakdown = score_item(
            signals(is_repo_maintained_or_starred=False), NO_PREFS, NOW, WEIGHTS
        )
        assert breakdown.base_score == -20


class TestPreferenceBoost:
    """Tests for preference-driven boosts."""

    def test_waiting_boost(self):
        breakdown = score_item(signals(waiting_on_me=True), ALL_PREFS, NOW, WEIGHTS)
        assert breakdown.preference_boost == 25
        assert breakdown.waiting_on_me_contribution == 40

    def test_customer_boost(self):
        """Known customer authors get 30 when preferred."""
        breakdown = score_item(signals(is_known_customer_author=True), ALL_PREFS, NOW, WEIGHTS)
        assert breakdown.known_customer_contribution == 30

    def test_customer_boost_not_for_maintainer_authors(self):
        """A customer who is also a maintainer gets no customer boost."""
        breakdown = score_item(
            signals(is_known_customer_author=True, author_is_maintainer=True), ALL_PREFS, NOW, WEIGHTS
        )
        assert breakdown.known_customer_contribution == 0

    @pytest.mark.parametrize(
        "age,expected",
        [(timedelta(hours=2), 10), (timedelta(days=2), 5), (timedelta(days=4), 0)],
    )
    def test_recency_boost_tiers(self, age, expected):
        breakdown = score_item(signals(last_activity_at=NOW - age), ALL_PREFS, NOW, WEIGHTS)
        assert breakdown.preference_boost == expected

    def test_quick_win_boost(self):
        breakdown = score_item(signals(quick_win=True), ALL_PREFS, NOW, WEIGHTS)
        assert breakdown.quick_win_contribution == 15

    def test_disabled_preferences_add_nothing(self):
        """With every toggle off the boost is zero."""
        everything = signals(
            waiting_on_me=True,
            is_known_customer_author=True,
            quick_win=True,
            last_activity_at=NOW - timedelta(hours=1),
        )
        assert score_item(everything, NO_PREFS, NOW, WEIGHTS).preference_boost == 0


class TestMonotonicity:
    """Raising any signal never lowers the total."""

    @pytest.mark.parametrize(
        "field,low,high",
        [
            ("waiting_on_me", False, True),
            ("is_known_customer_author", False, True),
            ("quick_win", False, True),
            ("is_repo_maintained_or_starred", False, True),
            ("reaction_score", 0, 10),
            ("unique_commenter_count", 0, 5),
            ("last_activity_at", NOW - timedelta(days=10), NOW - timedelta(hours=1)),
        ],
    )
    def test_signal_monotonic(self, field, low, high):
        for prefs in (NO_PREFS, ALL_PREFS):
            low_score = score_item(signals(**{field: low}), prefs, NOW, WEIGHTS).total_score
            high_score = score_item(signals(**{field: high}), prefs, NOW, WEIGHTS).total_score
            assert high_score >= low_score

    @pytest.mark.parametrize("others", [NO_PREFS, ALL_PREFS], ids=["others-off", "others-on"])
    @pytest.mark.parametrize(
        "item,gain",
        [
            (signals(waiting_on_me=True), 25),
            (signals(), 0),
        ],
        ids=["waiting-on-me", "all-false"],
    )
    def test_waiting_on_me_toggle(self, others, item, gain):
        """Turning on prefer_waiting_on_me adds exactly its boost, and only to items waiting on the user."""
        off = replace(others, prefer_waiting_on_me=False)
        on = replace(others, prefer_waiting_on_me=True)

        off_score = score_item(item, off, NOW, WEIGHTS).total_score
        on_score = score_item(item, on, NOW, WEIGHTS).total_score

        assert on_score - off_score == gain


class TestExplain:
    """Tests for explanation selection."""

    def test_available_when_nothing_scores(self):
        explanation = explain(score_item(signals(), NO_PREFS, NOW, WEIGHTS))
        assert explanation.primary == REASON_AVAILABLE
        assert explanation.secondary == []

    def test_primary_is_top_contribution(self):
        breakdown = score_item(
            signals(waiting_on_me=True, last_activity_at=NOW - timedelta(hours=1)),
            ALL_PREFS,
            NOW,
            WEIGHTS,
        )
        explanation = explain(breakdown)
        assert explanation.primary == REASON_WAITING_ON_ME
        assert explanation.secondary == [REASON_RECENT_ACTIVITY]

    def test_secondary_needs_five_points_and_caps_at_two(self):
        """Contributions under 5 are dropped; at most two are kept."""
        breakdown = score_item(
            signals(
                is_known_customer_author=True,
                quick_win=True,
                waiting_on_me=True,
                unique_commenter_count=1,
                last_activity_at=NOW - timedelta(hours=1),
            ),
            ALL_PREFS,
            NOW,
            WEIGHTS,
        )
        explanation = explain(breakdown)

        assert explanation.primary == REASON_WAITING_ON_ME
        assert explanation.secondary == [REASON_KNOWN_CUSTOMER, REASON_RECENT_ACTIVITY]
        assert REASON_COMMUNITY_INTEREST not in explanation.secondary

    def test_ties_keep_declared_order(self):
        """Equal contributions rank in the fixed reason order."""
        breakdown = score_item(
            signals(quick_win=True, unique_commenter_count=5),
            ALL_PREFS,
            NOW,
            WEIGHTS,
        )
        explanation = explain(breakdown)
        assert explanation.primary == REASON_QUICK_WIN
        assert explanation.secondary == [REASON_COMMUNITY_INTEREST]

    def test_explanation_is_deterministic(self):
        breakdown = score_item(signals(waiting_on_me=True), ALL_PREFS, NOW, WEIGHTS)
        assert explain(breakdown) == explain(breakdown)
