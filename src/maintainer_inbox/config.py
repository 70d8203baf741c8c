"""Configuration management using pydantic-settings."""

import logging

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when required configuration is missing at startup."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Maintainer Inbox"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./maintainer_inbox.db"

    # GitHub API
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TOKEN: str = ""  # Personal access token, takes priority over App auth
    GITHUB_APP_ID: str = ""
    GITHUB_PRIVATE_KEY: str = ""  # PEM contents, literal "\n" sequences allowed
    GITHUB_INSTALLATION_ID: str = ""
    GITHUB_ORGS: str = ""  # Comma-separated: "aspect-build,bazel-contrib"
    GITHUB_TIMEOUT: float = 30.0

    # Repository allow-list (comma-separated names, full names or glob patterns)
    SYNC_REPO_INCLUDE: str = "*"
    SYNC_REPO_EXCLUDE: str = ""

    # Retry policy
    GITHUB_MAX_ATTEMPTS: int = 5
    GITHUB_BACKOFF_BASE_SECONDS: float = 1.0
    GITHUB_BACKOFF_MAX_SECONDS: float = 30.0
    GITHUB_RATE_LIMIT_BUFFER_SECONDS: float = 1.0
    GITHUB_RATE_LIMIT_DEFAULT_WAIT_SECONDS: float = 60.0
    TOKEN_REFRESH_MARGIN_SECONDS: int = 300  # Refresh installation token 5 min early

    # Incremental sync
    RECENTLY_CLOSED_LOOKBACK_HOURS: int = 24
    SYNC_MAINTAINERS_DURING_SYNC: bool = True

    # Enrichment (fire-and-forget)
    ENRICHMENT_ENABLED: bool = True
    ENRICHMENT_CONCURRENCY: int = 4
    ENRICHMENT_DRAIN_TIMEOUT: float = 30.0

    # Turn state
    STALL_INTERVAL_DAYS: int = 14

    # Recommendation scoring
    SCORE_WAITING_ON_ME: int = 15
    SCORE_RECENT_24H: int = 15
    SCORE_RECENT_3D: int = 10
    SCORE_RECENT_7D: int = 5
    SCORE_PER_COMMENTER: int = 3
    SCORE_PER_REACTION: int = 1
    SCORE_UNRELATED_REPO_PENALTY: int = 20
    BOOST_WAITING_ON_ME: int = 25
    BOOST_KNOWN_CUSTOMER: int = 30
    BOOST_RECENT_24H: int = 10
    BOOST_RECENT_3D: int = 5
    BOOST_QUICK_WIN: int = 15
    QUICK_WIN_MAX_COMMENTS: int = 2
    MAX_UNIQUE_COMMENTERS: int = 5
    MAX_REACTION_SCORE: int = 10

    @property
    def github_org_list(self) -> list[str]:
        """Get GitHub organizations as a list."""
        return _split_csv(self.GITHUB_ORGS)

    @property
    def repo_include_list(self) -> list[str]:
        """Get repository include patterns as a list."""
        return _split_csv(self.SYNC_REPO_INCLUDE)

    @property
    def repo_exclude_list(self) -> list[str]:
        """Get repository exclude patterns as a list."""
        return _split_csv(self.SYNC_REPO_EXCLUDE)

    @property
    def has_github_app_credentials(self) -> bool:
        """Check if all GitHub App credentials are present."""
        return bool(self.GITHUB_APP_ID and self.GITHUB_PRIVATE_KEY and self.GITHUB_INSTALLATION_ID)

    @property
    def github_private_key_pem(self) -> str:
        """Private key with escaped newlines restored (env files often flatten it)."""
        return self.GITHUB_PRIVATE_KEY.replace("\\n", "\n")

    def require_github_credentials(self) -> None:
        """Fail fast when no GitHub credentials are configured."""
        if not self.GITHUB_TOKEN and not self.has_github_app_credentials:
            raise ConfigurationError(
                "GitHub credentials missing: set GITHUB_TOKEN or "
                "GITHUB_APP_ID, GITHUB_PRIVATE_KEY and GITHUB_INSTALLATION_ID"
            )

    def require_database(self) -> None:
        """Fail fast when the connection string is missing."""
        if not self.DATABASE_URL:
            raise ConfigurationError("DATABASE_URL is not set")

    @model_validator(mode="after")
    def check_github_settings(self) -> "Settings":
        """Warn about partially configured GitHub App credentials."""
        app_fields = [self.GITHUB_APP_ID, self.GITHUB_PRIVATE_KEY, self.GITHUB_INSTALLATION_ID]
        if any(app_fields) and not all(app_fields):
            logging.warning(
                "GitHub App credentials are incomplete; "
                "GITHUB_APP_ID, GITHUB_PRIVATE_KEY and GITHUB_INSTALLATION_ID must all be set"
            )
        if self.GITHUB_MAX_ATTEMPTS < 1:
            logging.warning("GITHUB_MAX_ATTEMPTS < 1, requests will never be attempted")
        return self


def _split_csv(value: str) -> list[str]:
    if not value:
        return []
    return [s.strip() for s in value.split(",") if s.strip()]


settings = Settings()
