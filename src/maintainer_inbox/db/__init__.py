"""Database module: engine, session factory and ORM models."""

from maintainer_inbox.db.database import async_session_maker, engine, init_db
from maintainer_inbox.db.models import (
    Base,
    Comment,
    GitHubUser,
    MaintainerAssertion,
    Reaction,
    Repository,
    SyncWatermark,
    WorkItem,
)

__all__ = [
    "Base",
    "Comment",
    "GitHubUser",
    "MaintainerAssertion",
    "Reaction",
    "Repository",
    "SyncWatermark",
    "WorkItem",
    "engine",
    "async_session_maker",
    "init_db",
]
