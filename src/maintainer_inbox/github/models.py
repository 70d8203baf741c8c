"""Data models for GitHub REST API responses."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def parse_datetime(value: str | None) -> datetime | None:
    """Parse a GitHub ISO-8601 timestamp into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class UserRef:
    """A user as embedded in other API objects."""

    id: int
    login: str
    type: str = "User"  # "User", "Bot" or "Organization"
    avatar_url: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> "UserRef | None":
        if not data or data.get("id") is None:
            return None
        return cls(
            id=data["id"],
            login=data.get("login", ""),
            type=data.get("type") or "User",
            avatar_url=data.get("avatar_url"),
        )


@dataclass
class Repo:
    """Repository metadata from the repos list endpoints."""

    id: int
    name: str
    full_name: str
    owner_login: str
    private: bool = False
    archived: bool = False
    pushed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Repo":
        owner = data.get("owner") or {}
        full_name = data.get("full_name") or f"{owner.get('login', '')}/{data['name']}"
        return cls(
            id=data["id"],
            name=data["name"],
            full_name=full_name,
            owner_login=owner.get("login") or full_name.split("/")[0],
            private=bool(data.get("private", False)),
            archived=bool(data.get("archived", False)),
            pushed_at=parse_datetime(data.get("pushed_at")),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class Issue:
    """An issue from the issues endpoint."""

    id: int
    number: int
    title: str
    state: str
    created_at: datetime
    updated_at: datetime
    body: str | None = None
    user: UserRef | None = None
    assignees: list[UserRef] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    closed_at: datetime | None = None
    is_pull_request: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Issue":
        return cls(
            id=data["id"],
            number=data["number"],
            title=data.get("title") or "",
            state=data.get("state") or "open",
            created_at=parse_datetime(data["created_at"]),
            updated_at=parse_datetime(data.get("updated_at") or data["created_at"]),
            body=data.get("body"),
            user=UserRef.from_api(data.get("user")),
            assignees=_parse_assignees(data),
            labels=_parse_labels(data),
            closed_at=parse_datetime(data.get("closed_at")),
            is_pull_request="pull_request" in data,
        )


@dataclass
class PullRequest:
    """A pull request from the pulls endpoint.

    The list endpoint omits diff-size stats; they stay None unless filled
    in from the file-stats fetch.
    """

    id: int
    number: int
    title: str
    state: str
    created_at: datetime
    updated_at: datetime
    body: str | None = None
    user: UserRef | None = None
    assignees: list[UserRef] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    closed_at: datetime | None = None
    draft: bool = False
    merged: bool = False
    merged_at: datetime | None = None
    merge_commit_sha: str | None = None
    additions: int | None = None
    deletions: int | None = None
    changed_files: int | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PullRequest":
        merged_at = parse_datetime(data.get("merged_at"))
        return cls(
            id=data["id"],
            number=data["number"],
            title=data.get("title") or "",
            state=data.get("state") or "open",
            created_at=parse_datetime(data["created_at"]),
            updated_at=parse_datetime(data.get("updated_at") or data["created_at"]),
            body=data.get("body"),
            user=UserRef.from_api(data.get("user")),
            assignees=_parse_assignees(data),
            labels=_parse_labels(data),
            closed_at=parse_datetime(data.get("closed_at")),
            draft=bool(data.get("draft", False)),
            merged=bool(data.get("merged", merged_at is not None)),
            merged_at=merged_at,
            merge_commit_sha=data.get("merge_commit_sha"),
            additions=data.get("additions"),
            deletions=data.get("deletions"),
            changed_files=data.get("changed_files"),
        )


@dataclass
class FileStats:
    """Diff-size totals for a pull request."""

    additions: int
    deletions: int
    changed_files: int


@dataclass
class Review:
    """A pull request review."""

    id: int
    state: str
    user: UserRef | None = None
    submitted_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Review":
        return cls(
            id=data["id"],
            state=data.get("state") or "COMMENTED",
            user=UserRef.from_api(data.get("user")),
            submitted_at=parse_datetime(data.get("submitted_at")),
        )


@dataclass
class IssueComment:
    """A conversation comment on an issue or pull request."""

    id: int
    created_at: datetime
    user: UserRef | None = None
    body: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "IssueComment":
        return cls(
            id=data["id"],
            created_at=parse_datetime(data["created_at"]),
            user=UserRef.from_api(data.get("user")),
            body=data.get("body"),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class IssueReaction:
    """A reaction on an issue or pull request body."""

    content: str
    user: UserRef | None = None
    created_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "IssueReaction":
        return cls(
            content=data.get("content", ""),
            user=UserRef.from_api(data.get("user")),
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class Collaborator:
    """A repository collaborator and their effective permission."""

    user: UserRef
    role_name: str  # admin, maintain, write, triage, read

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Collaborator | None":
        user = UserRef.from_api(data)
        if user is None:
            return None
        role = data.get("role_name")
        if not role:
            permissions = data.get("permissions") or {}
            for candidate in ("admin", "maintain", "push", "triage", "pull"):
                if permissions.get(candidate):
                    role = {"push": "write", "pull": "read"}.get(candidate, candidate)
                    break
        return cls(user=user, role_name=role or "read")


@dataclass
class UserProfile:
    """A full user profile from /users/{login}."""

    id: int
    login: str
    type: str = "User"
    name: str | None = None
    company: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "UserProfile":
        return cls(
            id=data["id"],
            login=data.get("login", ""),
            type=data.get("type") or "User",
            name=data.get("name"),
            company=data.get("company"),
            avatar_url=data.get("avatar_url"),
        )


@dataclass
class StarredRepo:
    """A starred repository with the time it was starred."""

    repo: Repo
    starred_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "StarredRepo":
        # The star+json media type wraps the repo; the default one does not
        if "repo" in data:
            return cls(repo=Repo.from_api(data["repo"]), starred_at=parse_datetime(data.get("starred_at")))
        return cls(repo=Repo.from_api(data))


def _parse_assignees(data: dict[str, Any]) -> list[UserRef]:
    refs = [UserRef.from_api(a) for a in data.get("assignees") or []]
    return [r for r in refs if r is not None]


def _parse_labels(data: dict[str, Any]) -> list[str]:
    labels = []
    for label in data.get("labels") or []:
        if isinstance(label, dict):
            if label.get("name"):
                labels.append(label["name"])
        elif label:
            labels.append(str(label))
    return labels
