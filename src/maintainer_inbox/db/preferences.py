"""Per-user recommendation preferences."""

import logging
from dataclasses import dataclass, fields

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from maintainer_inbox.db.models import UserPreferences, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkItemPreferences:
    """The toggles that shape scoring and eligibility."""

    prefer_known_customers: bool = False
    prefer_recent_activity: bool = True
    prefer_waiting_on_me: bool = True
    prefer_quick_wins: bool = True
    starred_only: bool = False


@dataclass(frozen=True)
class PreferencesPatch:
    """A partial update; None leaves the stored value untouched."""

    prefer_known_customers: bool | None = None
    prefer_recent_activity: bool | None = None
    prefer_waiting_on_me: bool | None = None
    prefer_quick_wins: bool | None = None
    starred_only: bool | None = None

    def changes(self) -> dict[str, bool]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def is_empty(self) -> bool:
        return not self.changes()


def _to_preferences(row: UserPreferences | None) -> WorkItemPreferences:
    if row is None:
        return WorkItemPreferences()
    return WorkItemPreferences(
        prefer_known_customers=row.prefer_known_customers,
        prefer_recent_activity=row.prefer_recent_activity,
        prefer_waiting_on_me=row.prefer_waiting_on_me,
        prefer_quick_wins=row.prefer_quick_wins,
        starred_only=row.starred_only,
    )


async def get_preferences(session: AsyncSession, user_id: int) -> WorkItemPreferences:
    """Stored preferences for a user, or defaults when none are saved."""
    result = await session.execute(
        select(UserPreferences).where(UserPreferences.user_github_id == user_id)
    )
    return _to_preferences(result.scalar_one_or_none())


async def update_preferences(
    session: AsyncSession, user_id: int, patch: PreferencesPatch
) -> WorkItemPreferences:
    """Apply a patch field by field and return the resulting preferences."""
    result = await session.execute(
        select(UserPreferences).where(UserPreferences.user_github_id == user_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        defaults = WorkItemPreferences()
        row = UserPreferences(
            user_github_id=user_id,
            **{f.name: getattr(defaults, f.name) for f in fields(defaults)},
        )
        session.add(row)

    for name, value in patch.changes().items():
        setattr(row, name, value)
    row.updated_at = utcnow()
    await session.commit()

    logger.info(f"Updated preferences for user {user_id}: {patch.changes()}")
    return _to_preferences(row)
