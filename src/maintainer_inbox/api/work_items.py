"""Work item recommendation and preferences endpoints.

Authentication is terminated upstream; the proxy forwards the signed-in
GitHub user as `X-User-Id` (and optionally `X-User-Login`) and sets
`X-Org-Member: false` for users outside the organization.
"""

import json
import logging
from dataclasses import asdict, dataclass

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintainer_inbox.api.schemas import (
    CompanyOverrideRequest,
    CompanyOverrideResponse,
    NextWorkItemResponse,
    NextWorkItemSchema,
    PreferencesPatchRequest,
    PreferencesSchema,
    SnoozedItemSchema,
    TurnStateResponse,
)
from maintainer_inbox.config import settings
from maintainer_inbox.db.companies import clear_company_override, set_company_override
from maintainer_inbox.db.database import get_session_factory
from maintainer_inbox.db.preferences import PreferencesPatch, get_preferences, update_preferences
from maintainer_inbox.triage.recommend import RecommendationEngine, SnoozedItem
from maintainer_inbox.triage.turns import get_turn_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["work-items"])

_snoozed_adapter = TypeAdapter(list[SnoozedItemSchema])


@dataclass(frozen=True)
class CurrentUser:
    id: int
    login: str | None = None


async def get_current_user(
    x_user_id: int | None = Header(default=None),
    x_user_login: str | None = Header(default=None),
    x_org_member: str | None = Header(default=None),
) -> CurrentUser:
    """Resolve the signed-in user from proxy headers."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if x_org_member is not None and x_org_member.strip().lower() in ("false", "0", "no"):
        raise HTTPException(status_code=403, detail="Organization membership required")
    return CurrentUser(id=x_user_id, login=x_user_login)


def parse_snoozed_items(raw: str | None) -> list[SnoozedItem]:
    """Parse the `snoozed_items` JSON query parameter.

    Malformed input is logged and ignored so a stale client cache never
    blocks recommendations.
    """
    if not raw:
        return []
    try:
        parsed = _snoozed_adapter.validate_python(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Ignoring invalid snoozed_items parameter: {e}")
        return []
    return [SnoozedItem(type=s.type, id=s.id, snoozed_until=s.snoozed_until) for s in parsed]


@router.get("/next-work-item", response_model=NextWorkItemResponse)
async def next_work_item(
    include_scoring: bool = Query(default=False, description="Include the score breakdown"),
    snoozed_items: str | None = Query(default=None, description="JSON list of snoozed items"),
    user: CurrentUser = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> NextWorkItemResponse:
    """Recommend the single best item for the signed-in maintainer."""
    snoozed = parse_snoozed_items(snoozed_items)

    try:
        async with session_factory() as session:
            preferences = await get_preferences(session, user.id)

        engine = RecommendationEngine(session_factory=session_factory)
        item = await engine.get_next_work_item(
            user.id,
            preferences=preferences,
            snoozed_items=snoozed,
            include_scoring=include_scoring,
        )
    except Exception as e:
        logger.error(f"Recommendation failed for user {user.id}: {e}", exc_info=True)
        detail = f"Recommendation failed: {e}" if settings.DEBUG else "Recommendation failed"
        raise HTTPException(status_code=500, detail=detail)

    if item is None:
        return NextWorkItemResponse(item=None)
    return NextWorkItemResponse(item=NextWorkItemSchema.model_validate(item.to_dict()))


@router.get("/work-items/{item_id}/turn", response_model=TurnStateResponse)
async def work_item_turn(
    item_id: int,
    user: CurrentUser = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> TurnStateResponse:
    """Turn state of one open issue or pull request."""
    state = await get_turn_state(item_id, session_factory=session_factory)
    if state is None:
        raise HTTPException(status_code=404, detail=f"No open work item {item_id}")
    return TurnStateResponse(item_id=item_id, **state.to_dict())


@router.get("/preferences", response_model=PreferencesSchema)
async def read_preferences(
    user: CurrentUser = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PreferencesSchema:
    """Stored preferences of the signed-in user (defaults if never saved)."""
    async with session_factory() as session:
        prefs = await get_preferences(session, user.id)
    return PreferencesSchema(**asdict(prefs))


@router.patch("/preferences", response_model=PreferencesSchema)
async def patch_preferences(
    request: PreferencesPatchRequest,
    user: CurrentUser = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PreferencesSchema:
    """Update some preferences; omitted fields keep their stored value."""
    patch = PreferencesPatch(**request.model_dump())
    if patch.is_empty():
        raise HTTPException(status_code=400, detail="No preference fields provided")

    async with session_factory() as session:
        prefs = await update_preferences(session, user.id, patch)
    logger.info(f"User {user.id} updated preferences: {patch.changes()}")
    return PreferencesSchema(**asdict(prefs))


@router.put("/company-overrides", response_model=CompanyOverrideResponse)
async def put_company_override(
    request: CompanyOverrideRequest,
    user: CurrentUser = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CompanyOverrideResponse:
    """Manually assign a company to a GitHub user."""
    try:
        async with session_factory() as session:
            row = await set_company_override(session, request.github_user_id, request.company_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CompanyOverrideResponse(
        github_user_id=row.github_user_id, company_name=row.override_company_name
    )


@router.delete("/company-overrides/{github_user_id}", response_model=CompanyOverrideResponse)
async def delete_company_override(
    github_user_id: int,
    user: CurrentUser = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CompanyOverrideResponse:
    """Remove a manual company assignment."""
    async with session_factory() as session:
        removed = await clear_company_override(session, github_user_id)
    if not removed:
        raise HTTPException(status_code=404, detail=f"No override for user {github_user_id}")
    return CompanyOverrideResponse(github_user_id=github_user_id, company_name=None)
