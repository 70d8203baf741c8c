"""Turn-state resolution and next-work-item recommendation."""

from maintainer_inbox.triage.identity import is_bot_login
from maintainer_inbox.triage.recommend import (
    NextWorkItem,
    RecommendationEngine,
    SnoozedItem,
    get_next_work_item,
)
from maintainer_inbox.triage.scoring import Explanation, ScoreBreakdown, ScoringWeights
from maintainer_inbox.triage.turns import Turn, TurnState, get_turn_state, resolve_turn

__all__ = [
    "Explanation",
    "NextWorkItem",
    "RecommendationEngine",
    "ScoreBreakdown",
    "ScoringWeights",
    "SnoozedItem",
    "Turn",
    "TurnState",
    "get_next_work_item",
    "get_turn_state",
    "is_bot_login",
    "resolve_turn",
]
