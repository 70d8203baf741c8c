"""GitHub REST API client and resource fetchers."""

from maintainer_inbox.github.client import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubClient,
    GitHubConnectionError,
    GitHubForbiddenError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubServerError,
)
from maintainer_inbox.github.models import Issue, PullRequest, Repo, UserRef

__all__ = [
    "GitHubClient",
    "GitHubAPIError",
    "GitHubAuthError",
    "GitHubConnectionError",
    "GitHubForbiddenError",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "GitHubServerError",
    "Issue",
    "PullRequest",
    "Repo",
    "UserRef",
]
