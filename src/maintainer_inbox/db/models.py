"""SQLAlchemy models for the mirrored GitHub data and triage state.

Sync-owned tables (upserted on every pass, never deleted):
- Repository, GitHubUser, WorkItem, PullRequestReview, Comment, Reaction
- SyncWatermark, MaintainerAssertion, RepoStar

User/operator-owned tables:
- UserPreferences, CompanyOverride, Company
"""

import json
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (as SQLite returns them) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Reaction kinds GitHub exposes; anything else is dropped on ingest
ALLOWED_REACTIONS = frozenset(
    ["+1", "-1", "laugh", "confused", "heart", "hooray", "rocket", "eyes"]
)

ITEM_TYPE_ISSUE = "issue"
ITEM_TYPE_PR = "pr"


class Repository(Base):
    """A GitHub repository belonging to a synced organization."""

    __tablename__ = "repositories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    github_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(256))
    full_name: Mapped[str] = mapped_column(String(512), index=True)
    owner_login: Mapped[str] = mapped_column(String(256), index=True)
    private: Mapped[bool] = mapped_column(Boolean, default=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False)

    pushed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<Repository(github_id={self.github_id}, full_name='{self.full_name}')>"


class GitHubUser(Base):
    """A GitHub account seen as author, assignee, reviewer, commenter or maintainer."""

    __tablename__ = "github_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    github_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    login: Mapped[str] = mapped_column(String(256), index=True)
    type: Mapped[str] = mapped_column(String(32), default="User")  # "User" or "Bot"
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)

    # Company as written on the GitHub profile
    company: Mapped[str | None] = mapped_column(String(256), nullable=True)
    # Company from a third-party enrichment source
    enriched_company: Mapped[str | None] = mapped_column(String(256), nullable=True)
    profile_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<GitHubUser(github_id={self.github_id}, login='{self.login}')>"


class WorkItem(Base):
    """An issue or pull request."""

    __tablename__ = "work_items"
    __table_args__ = (
        UniqueConstraint("repo_github_id", "item_type", "number", name="uq_work_item_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    github_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    item_type: Mapped[str] = mapped_column(String(8), index=True)  # "issue" or "pr"
    repo_github_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("repositories.github_id"), index=True
    )
    number: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(1024))
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str] = mapped_column(String(16), index=True)  # "open" or "closed"
    author_login: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)

    # JSON fields stored as text
    labels: Mapped[str] = mapped_column(Text, default="[]")
    assignees: Mapped[str] = mapped_column(Text, default="[]")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Pull request only
    draft: Mapped[bool] = mapped_column(Boolean, default=False)
    merged: Mapped[bool] = mapped_column(Boolean, default=False)
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    merge_commit_sha: Mapped[str | None] = mapped_column(String(64), nullable=True)
    additions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deletions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    changed_files: Mapped[int | None] = mapped_column(Integer, nullable=True)

    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def assignee_list(self) -> list[str]:
        return json.loads(self.assignees or "[]")

    def __repr__(self) -> str:
        return f"<WorkItem({self.item_type} #{self.number}, github_id={self.github_id})>"


class PullRequestReview(Base):
    """A submitted review on a pull request."""

    __tablename__ = "pull_request_reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    github_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    pr_github_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("work_items.github_id"), index=True
    )
    reviewer_login: Mapped[str | None] = mapped_column(String(256), nullable=True)
    state: Mapped[str] = mapped_column(String(32))  # APPROVED, CHANGES_REQUESTED, COMMENTED
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Comment(Base):
    """A comment on an issue or pull request conversation."""

    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    github_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    item_github_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("work_items.github_id"), index=True
    )
    author_login: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    author_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Reaction(Base):
    """A reaction on an issue or pull request body."""

    __tablename__ = "reactions"
    __table_args__ = (
        UniqueConstraint("item_github_id", "user_github_id", "content", name="uq_reaction"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_github_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("work_items.github_id"), index=True
    )
    user_github_id: Mapped[int] = mapped_column(BigInteger, index=True)
    content: Mapped[str] = mapped_column(String(16))
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SyncWatermark(Base):
    """Timestamp through which a (repository, resource) pair has been synced."""

    __tablename__ = "sync_watermarks"
    __table_args__ = (
        UniqueConstraint("repo_github_id", "resource", name="uq_sync_watermark"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_github_id: Mapped[int] = mapped_column(BigInteger, index=True)
    resource: Mapped[str] = mapped_column(String(32))  # "issues" or "pull_requests"
    synced_through: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class MaintainerAssertion(Base):
    """Evidence from one source that a user maintains a repository."""

    __tablename__ = "maintainer_assertions"
    __table_args__ = (
        UniqueConstraint("repo_github_id", "user_github_id", "source", name="uq_maintainer_source"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repo_github_id: Mapped[int] = mapped_column(BigInteger, index=True)
    user_github_id: Mapped[int] = mapped_column(BigInteger, index=True)
    source: Mapped[str] = mapped_column(String(32))  # github-permissions, codeowners, bcr-metadata
    confidence: Mapped[int] = mapped_column(Integer, default=100)  # 0-100
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<MaintainerAssertion(repo={self.repo_github_id}, "
            f"user={self.user_github_id}, source='{self.source}')>"
        )


class RepoStar(Base):
    """A repository starred by a user."""

    __tablename__ = "repo_stars"
    __table_args__ = (
        UniqueConstraint("user_github_id", "repo_github_id", name="uq_repo_star"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_github_id: Mapped[int] = mapped_column(BigInteger, index=True)
    repo_github_id: Mapped[int] = mapped_column(BigInteger, index=True)
    starred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class CompanyOverride(Base):
    """Manual company assignment that wins over profile and enrichment data."""

    __tablename__ = "company_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    github_user_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    override_company_name: Mapped[str] = mapped_column(String(256))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Company(Base):
    """A classified company (INTERNAL, COMPETITOR, CUSTOMER, PROSPECT, OTHER)."""

    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), unique=True, index=True)
    classification: Mapped[str] = mapped_column(String(32), default="OTHER")


class UserPreferences(Base):
    """Per-user recommendation toggles."""

    __tablename__ = "user_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_github_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    prefer_known_customers: Mapped[bool] = mapped_column(Boolean, default=False)
    prefer_recent_activity: Mapped[bool] = mapped_column(Boolean, default=True)
    prefer_waiting_on_me: Mapped[bool] = mapped_column(Boolean, default=True)
    prefer_quick_wins: Mapped[bool] = mapped_column(Boolean, default=True)
    starred_only: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
