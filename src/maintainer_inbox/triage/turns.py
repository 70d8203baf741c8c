"""Turn-state resolution: whose move is it on an open item.

Turn state is derived on read from the stored comments and maintainer
assertions; nothing here is persisted.

Rules, in order:
1. No comment by a (non-bot) maintainer -> maintainer's turn.
2. Otherwise look at the latest comment (ties broken by comment id):
   a. written by a non-bot maintainer -> author's turn
   b. written by the item author -> maintainer's turn
   c. anyone else -> maintainer's turn
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintainer_inbox.config import settings
from maintainer_inbox.db.database import async_session_maker
from maintainer_inbox.db.models import (
    Comment,
    GitHubUser,
    MaintainerAssertion,
    WorkItem,
    ensure_utc,
    utcnow,
)
from maintainer_inbox.triage.identity import is_bot_login

logger = logging.getLogger(__name__)


class Turn(str, Enum):
    MAINTAINER = "maintainer"
    AUTHOR = "author"


@dataclass(frozen=True)
class TurnState:
    """Derived turn state of one open item."""

    turn: Turn
    last_maintainer_action_at: datetime
    stalled: bool

    def to_dict(self) -> dict:
        return {
            "turn": self.turn.value,
            "stalled": self.stalled,
            "last_maintainer_action_at": self.last_maintainer_action_at.isoformat(),
        }


@dataclass(frozen=True)
class CommentRecord:
    """The parts of a comment that matter for turn resolution."""

    id: int
    author_login: str | None
    created_at: datetime
    author_type: str | None = None


class TurnSubject(Protocol):
    author_login: str | None
    created_at: datetime


def default_stall_interval() -> timedelta:
    return timedelta(days=settings.STALL_INTERVAL_DAYS)


def _is_maintainer_comment(comment: CommentRecord, maintainer_logins: set[str]) -> bool:
    if not comment.author_login:
        return False
    if is_bot_login(comment.author_login, comment.author_type):
        return False
    return comment.author_login.lower() in maintainer_logins


def resolve_turn(
    item: TurnSubject,
    comments: Sequence[CommentRecord],
    maintainer_logins: Iterable[str],
    now: datetime,
    stall_interval: timedelta | None = None,
) -> TurnState:
    """Resolve whose turn it is on `item`.

    `maintainer_logins` are the logins holding a maintainer assertion on
    the item's repository; matching is case-insensitive.
    """
    maintainers = {login.lower() for login in maintainer_logins}
    interval = stall_interval if stall_interval is not None else default_stall_interval()
    created_at = ensure_utc(item.created_at)

    maintainer_comments = [c for c in comments if _is_maintainer_comment(c, maintainers)]

    if not maintainer_comments:
        turn = Turn.MAINTAINER
        last_action = created_at
    else:
        latest = max(comments, key=lambda c: (ensure_utc(c.created_at), c.id))
        if _is_maintainer_comment(latest, maintainers):
            turn = Turn.AUTHOR
        else:
            # The item author replying and third-party chatter both hand the turn back
            turn = Turn.MAINTAINER
        last_action = max(ensure_utc(c.created_at) for c in maintainer_comments)

    stalled = turn == Turn.MAINTAINER and ensure_utc(now) - last_action > interval
    return TurnState(turn=turn, last_maintainer_action_at=last_action, stalled=stalled)


# =============================================================================
# Store-backed loaders
# =============================================================================


async def load_maintainer_logins(
    session: AsyncSession, repo_ids: Iterable[int]
) -> dict[int, set[str]]:
    """Lowercased non-bot maintainer logins per repository."""
    repo_ids = list(set(repo_ids))
    logins: dict[int, set[str]] = defaultdict(set)
    if not repo_ids:
        return logins

    result = await session.execute(
        select(MaintainerAssertion.repo_github_id, GitHubUser.login, GitHubUser.type)
        .join(GitHubUser, GitHubUser.github_id == MaintainerAssertion.user_github_id)
        .where(MaintainerAssertion.repo_github_id.in_(repo_ids))
    )
    for repo_id, login, user_type in result.all():
        if not is_bot_login(login, user_type):
            logins[repo_id].add(login.lower())
    return logins


async def load_comments(
    session: AsyncSession, item_ids: Iterable[int]
) -> dict[int, list[CommentRecord]]:
    """Comments per work item, with the author's stored user type."""
    item_ids = list(set(item_ids))
    comments: dict[int, list[CommentRecord]] = defaultdict(list)
    if not item_ids:
        return comments

    result = await session.execute(
        select(
            Comment.item_github_id,
            Comment.github_id,
            Comment.author_login,
            Comment.created_at,
            Comment.author_type,
            GitHubUser.type,
        )
        .outerjoin(GitHubUser, GitHubUser.login == Comment.author_login)
        .where(Comment.item_github_id.in_(item_ids))
    )
    seen: set[int] = set()
    for item_id, comment_id, login, created_at, comment_type, user_type in result.all():
        # A login can map to more than one user row after account renames
        if comment_id in seen:
            continue
        seen.add(comment_id)
        comments[item_id].append(
            CommentRecord(
                id=comment_id,
                author_login=login,
                created_at=ensure_utc(created_at),
                author_type=comment_type or user_type,
            )
        )
    return comments


async def get_turn_state(
    item_id: int,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    now: datetime | None = None,
    stall_interval: timedelta | None = None,
) -> TurnState | None:
    """Turn state for the work item with GitHub id `item_id`.

    Returns None for unknown or closed items.
    """
    factory = session_factory or async_session_maker
    async with factory() as session:
        result = await session.execute(select(WorkItem).where(WorkItem.github_id == item_id))
        item = result.scalar_one_or_none()
        if item is None or item.state != "open":
            return None

        maintainers = await load_maintainer_logins(session, [item.repo_github_id])
        comments = await load_comments(session, [item.github_id])

    return resolve_turn(
        item,
        comments.get(item.github_id, []),
        maintainers.get(item.repo_github_id, set()),
        now or utcnow(),
        stall_interval,
    )
