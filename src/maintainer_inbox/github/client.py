"""GitHub REST API client with rate-limit handling and retry logic."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from maintainer_inbox.config import ConfigurationError, settings
from maintainer_inbox.github.auth import GitHubAppAuth

logger = logging.getLogger(__name__)

DEFAULT_ACCEPT = "application/vnd.github+json"
API_VERSION = "2022-11-28"


class GitHubAPIError(Exception):
    """Base exception for GitHub API failures."""

    def __init__(self, message: str, status_code: int | None = None, path: str | None = None):
        self.status_code = status_code
        self.path = path
        super().__init__(message)


class GitHubAuthError(GitHubAPIError):
    """Credentials were rejected (401)."""

    pass


class GitHubForbiddenError(GitHubAPIError):
    """The token lacks permission for the resource (403)."""

    pass


class GitHubNotFoundError(GitHubAPIError):
    """The resource does not exist or is not visible (404)."""

    pass


class GitHubRateLimitError(GitHubAPIError):
    """Rate limit hit (429)."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        reset_at: float | None = None,
        retry_after: float | None = None,
    ):
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__(message, status_code=429, path=path)


class GitHubServerError(GitHubAPIError):
    """GitHub returned a 5xx response."""

    pass


class GitHubConnectionError(GitHubAPIError):
    """GitHub could not be reached (connection reset, timeout)."""

    pass


@dataclass
class TokenCache:
    """An installation token and the epoch second it expires at."""

    token: str
    expires_at: float

    def is_fresh(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


class _RateLimitAwareWait(wait_base):
    """Wait strategy for one logical request.

    Rate limits sleep until the advertised reset; server errors back off
    exponentially on their own failure count, so a rate-limit wait never
    inflates a later 5xx backoff.
    """

    def __init__(self, client: "GitHubClient"):
        self.client = client
        self.server_failures = 0

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, GitHubRateLimitError):
            return self.client.rate_limit_wait(exc)
        if isinstance(exc, GitHubServerError):
            self.server_failures += 1
            return self.client.server_error_wait(self.server_failures)
        return 0.0


class GitHubClient:
    """Async GitHub REST client.

    Each sync job owns one instance; the cached installation token lives
    on the instance, never in module state.
    """

    def __init__(
        self,
        token: str | None = None,
        app_auth: GitHubAppAuth | None = None,
        base_url: str | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.base_url = (base_url or settings.GITHUB_API_URL).rstrip("/")
        self.max_attempts = max_attempts or settings.GITHUB_MAX_ATTEMPTS
        self.backoff_base = settings.GITHUB_BACKOFF_BASE_SECONDS
        self.backoff_max = settings.GITHUB_BACKOFF_MAX_SECONDS
        self.rate_limit_buffer = settings.GITHUB_RATE_LIMIT_BUFFER_SECONDS
        self.refresh_margin = settings.TOKEN_REFRESH_MARGIN_SECONDS

        self._static_token = token
        self._app_auth = app_auth
        self._token_cache: TokenCache | None = None
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.time
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.GITHUB_TIMEOUT,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "GitHubClient":
        """Build a client from configured credentials.

        A personal token wins over GitHub App credentials.
        """
        settings.require_github_credentials()
        if settings.GITHUB_TOKEN:
            return cls(token=settings.GITHUB_TOKEN, **kwargs)
        app_auth = GitHubAppAuth(
            app_id=settings.GITHUB_APP_ID,
            private_key=settings.github_private_key_pem,
            installation_id=settings.GITHUB_INSTALLATION_ID,
        )
        return cls(app_auth=app_auth, **kwargs)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _get_token(self) -> str:
        """Return a bearer token, refreshing the installation token when near expiry."""
        if self._static_token:
            return self._static_token
        if self._app_auth is None:
            raise ConfigurationError("GitHubClient has neither a token nor App credentials")

        now = self._clock()
        if self._token_cache and self._token_cache.is_fresh(now, self.refresh_margin):
            return self._token_cache.token

        logger.info("Requesting new GitHub App installation token")
        try:
            token, expires_at = await self._app_auth.create_installation_token(self._http)
        except httpx.HTTPStatusError as e:
            raise GitHubAuthError(
                f"Installation token exchange failed: {e.response.status_code}",
                status_code=e.response.status_code,
                path=str(e.request.url.path),
            ) from e
        except httpx.TransportError as e:
            raise GitHubConnectionError(f"Installation token exchange failed: {e}") from e
        self._token_cache = TokenCache(token=token, expires_at=expires_at)
        return token

    def rate_limit_wait(self, exc: GitHubRateLimitError) -> float:
        """Seconds to sleep after a 429."""
        if exc.reset_at is not None:
            return max(0.0, exc.reset_at - self._clock()) + self.rate_limit_buffer
        if exc.retry_after is not None:
            return exc.retry_after + self.rate_limit_buffer
        return settings.GITHUB_RATE_LIMIT_DEFAULT_WAIT_SECONDS

    def server_error_wait(self, failures: int) -> float:
        """Seconds to sleep after the n-th 5xx of a request."""
        return min(self.backoff_base * (2 ** (failures - 1)), self.backoff_max)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        if isinstance(exc, GitHubRateLimitError):
            logger.warning(f"Rate limited on {exc.path}. Sleeping {wait:.1f}s")
        else:
            logger.warning(
                f"{exc} - retrying in {wait:.1f}s "
                f"(attempt {retry_state.attempt_number}/{self.max_attempts})"
            )

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        """Make an authenticated request and return the decoded JSON body.

        Rate limits and 5xx responses are retried; other failures raise
        the matching GitHubAPIError subclass immediately.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((GitHubRateLimitError, GitHubServerError)),
            wait=_RateLimitAwareWait(self),
            stop=stop_after_attempt(self.max_attempts),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        result: Any = None
        async for attempt in retrying:
            with attempt:
                result = await self._send(method, path, params, headers, json)
        return result

    async def get(self, path: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        json: Any,
    ) -> Any:
        token = await self._get_token()
        request_headers = {
            "Accept": DEFAULT_ACCEPT,
            "X-GitHub-Api-Version": API_VERSION,
            "Authorization": f"Bearer {token}",
        }
        if headers:
            request_headers.update(headers)

        try:
            response = await self._http.request(
                method, path, params=params, headers=request_headers, json=json
            )
        except httpx.TransportError as e:
            raise GitHubConnectionError(f"Request to {path} failed: {e}", path=path) from e
        self._raise_for_status(response, path)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _raise_for_status(self, response: httpx.Response, path: str) -> None:
        status = response.status_code
        if status < 400:
            return

        message = f"GitHub API {status} for {path}"
        try:
            detail = response.json().get("message")
            if detail:
                message = f"{message}: {detail}"
        except (ValueError, AttributeError):
            pass

        if status == 429:
            reset = response.headers.get("x-ratelimit-reset")
            retry_after = response.headers.get("retry-after")
            raise GitHubRateLimitError(
                message,
                path=path,
                reset_at=float(reset) if reset else None,
                retry_after=float(retry_after) if retry_after else None,
            )
        if status >= 500:
            raise GitHubServerError(message, status_code=status, path=path)
        if status == 401:
            # Force a fresh installation token on the next call
            self._token_cache = None
            raise GitHubAuthError(message, status_code=status, path=path)
        if status == 403:
            raise GitHubForbiddenError(message, status_code=status, path=path)
        if status == 404:
            raise GitHubNotFoundError(message, status_code=status, path=path)
        raise GitHubAPIError(message, status_code=status, path=path)
