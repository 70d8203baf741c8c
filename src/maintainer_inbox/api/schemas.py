"""API request and response schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class SnoozedItemSchema(BaseModel):
    """A client-side snooze entry."""

    type: Literal["issue", "pr"] = Field(..., description="Work item type")
    id: int = Field(..., description="GitHub id of the issue or pull request")
    snoozed_until: datetime | None = Field(
        default=None, description="Snooze expiry; expired entries are ignored"
    )


class ExplanationSchema(BaseModel):
    """Why an item was recommended."""

    primary: str
    secondary: list[str] = Field(default_factory=list)


class ScoringSignalsSchema(BaseModel):
    """Raw signals behind a score."""

    waiting_on_me: bool
    is_known_customer_author: bool
    author_is_maintainer: bool
    is_repo_maintained_or_starred: bool
    quick_win: bool
    reaction_score: int
    unique_commenter_count: int
    last_activity_at: datetime


class ScoringSchema(BaseModel):
    """Full score breakdown of a recommendation."""

    base_score: int
    preference_boost: int
    total_score: int
    waiting_on_me_contribution: int
    known_customer_contribution: int
    recent_activity_contribution: int
    quick_win_contribution: int
    community_interest_contribution: int
    signals: ScoringSignalsSchema


class NextWorkItemSchema(BaseModel):
    """The recommended item."""

    github_id: int
    item_type: Literal["issue", "pr"]
    repo_full_name: str
    number: int
    title: str
    turn: Literal["maintainer", "author"]
    stalled: bool
    updated_at: datetime
    last_activity_at: datetime
    explanation: ExplanationSchema
    scoring: ScoringSchema | None = None

    model_config = {"json_schema_extra": {
        "example": {
            "github_id": 2154879632,
            "item_type": "pr",
            "repo_full_name": "aspect-build/rules_js",
            "number": 1742,
            "title": "fix: honor npmrc auth tokens for scoped registries",
            "turn": "maintainer",
            "stalled": False,
            "updated_at": "2024-03-01T12:00:00+00:00",
            "last_activity_at": "2024-03-01T12:00:00+00:00",
            "explanation": {"primary": "Waiting on you", "secondary": ["Recently active"]},
        }
    }}


class NextWorkItemResponse(BaseModel):
    """Response of the next-work-item endpoint; `item` is null when nothing is eligible."""

    item: NextWorkItemSchema | None = None


class TurnStateResponse(BaseModel):
    """Turn state of one open item."""

    item_id: int
    turn: Literal["maintainer", "author"]
    stalled: bool
    last_maintainer_action_at: datetime


class PreferencesSchema(BaseModel):
    """Stored recommendation preferences."""

    prefer_known_customers: bool = False
    prefer_recent_activity: bool = True
    prefer_waiting_on_me: bool = True
    prefer_quick_wins: bool = True
    starred_only: bool = False


class PreferencesPatchRequest(BaseModel):
    """Partial preferences update; omitted fields are left unchanged."""

    prefer_known_customers: bool | None = None
    prefer_recent_activity: bool | None = None
    prefer_waiting_on_me: bool | None = None
    prefer_quick_wins: bool | None = None
    starred_only: bool | None = None

    model_config = {"json_schema_extra": {
        "example": {"prefer_known_customers": True, "starred_only": False}
    }}


class CompanyOverrideRequest(BaseModel):
    """Manual company assignment for a GitHub user."""

    github_user_id: int = Field(..., description="GitHub id of the user")
    company_name: str = Field(..., min_length=1, max_length=256)


class CompanyOverrideResponse(BaseModel):
    github_user_id: int
    company_name: str | None
