"""Maintainer detection from permissions, CODEOWNERS and BCR metadata.

Each source writes its own assertion row, so several sources for the same
(repository, user) pair coexist. Re-detection refreshes `last_seen_at`.
"""

import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maintainer_inbox.db.database import async_session_maker
from maintainer_inbox.db.models import MaintainerAssertion, utcnow
from maintainer_inbox.db.writer import get_user_by_login, upsert_user
from maintainer_inbox.github.client import GitHubClient, GitHubForbiddenError, GitHubNotFoundError
from maintainer_inbox.github.fetchers import fetch_repo_collaborators, fetch_repo_file
from maintainer_inbox.github.models import Repo, UserRef
from maintainer_inbox.triage.identity import is_bot_login

logger = logging.getLogger(__name__)

SOURCE_PERMISSIONS = "github-permissions"
SOURCE_CODEOWNERS = "codeowners"
SOURCE_BCR_METADATA = "bcr-metadata"

CONFIDENCE = {
    SOURCE_PERMISSIONS: 100,
    SOURCE_CODEOWNERS: 90,  # ownership files over-include
    SOURCE_BCR_METADATA: 100,
}

MAINTAINER_ROLES = {"admin", "maintain"}
CODEOWNERS_PATHS = ("CODEOWNERS", ".github/CODEOWNERS", "docs/CODEOWNERS")
BCR_METADATA_PATH = ".bcr/metadata.template.json"

# "@user" but not "@org/team"
_HANDLE_RE = re.compile(r"(?<![\w.])@([A-Za-z0-9](?:[A-Za-z0-9-]{0,38}))(?![\w/-])")
# "12345+user@users.noreply.github.com" or "user@users.noreply.github.com"
_NOREPLY_RE = re.compile(r"(?:\d+\+)?([A-Za-z0-9-]+)@users\.noreply\.github\.com", re.IGNORECASE)


@dataclass(frozen=True)
class MaintainerSignal:
    """One source's claim that a user maintains a repository."""

    repo_id: int
    user_id: int
    source: str
    confidence: int


def parse_codeowners(text: str) -> list[str]:
    """Extract user logins from a CODEOWNERS file, in first-seen order."""
    logins: list[str] = []
    seen: set[str] = set()
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        for match in _NOREPLY_RE.finditer(line):
            _add_login(match.group(1), logins, seen)
        for match in _HANDLE_RE.finditer(line):
            _add_login(match.group(1), logins, seen)
    return logins


def _add_login(login: str, logins: list[str], seen: set[str]) -> None:
    key = login.lower()
    if key not in seen:
        seen.add(key)
        logins.append(login)


def parse_bcr_maintainers(text: str) -> list[tuple[int | None, str | None]]:
    """Extract (user id, login) pairs from a BCR metadata template.

    Entries may be plain login strings or objects with `github_user_id`
    and/or `github` keys.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid BCR metadata JSON: {e}")
        return []
    if not isinstance(data, dict):
        return []

    entries: list[tuple[int | None, str | None]] = []
    for entry in data.get("maintainers") or []:
        if isinstance(entry, str):
            entries.append((None, entry.lstrip("@")))
        elif isinstance(entry, dict):
            user_id = entry.get("github_user_id")
            login = entry.get("github")
            entries.append(
                (int(user_id) if user_id is not None else None, login.lstrip("@") if login else None)
            )
    return entries


def aggregate_maintainer_signals(signals: list[MaintainerSignal]) -> dict[int, list[str]]:
    """Group signals into {user_id: [sources]}."""
    grouped: dict[int, list[str]] = defaultdict(list)
    for signal in signals:
        if signal.source not in grouped[signal.user_id]:
            grouped[signal.user_id].append(signal.source)
    return dict(grouped)


class MaintainerDetector:
    """Runs the three detectors for a repository and records their assertions."""

    def __init__(
        self,
        client: GitHubClient,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.client = client
        self.session_factory = session_factory or async_session_maker

    async def detect_from_permissions(self, repo: Repo) -> list[MaintainerSignal]:
        """Collaborators with admin or maintain permission."""
        try:
            collaborators = await fetch_repo_collaborators(self.client, repo.full_name)
        except (GitHubForbiddenError, GitHubNotFoundError) as e:
            logger.warning(f"Cannot list collaborators of {repo.full_name}: {e}")
            return []

        maintainers: list[UserRef] = [
            c.user
            for c in collaborators
            if c.role_name.lower() in MAINTAINER_ROLES and not is_bot_login(c.user.login, c.user.type)
        ]
        if maintainers:
            # Make sure turn resolution can map these ids back to logins
            async with self.session_factory() as session:
                for user in maintainers:
                    await upsert_user(session, user)
                await session.commit()

        return [_signal(repo, u.id, SOURCE_PERMISSIONS) for u in maintainers]

    async def detect_from_codeowners(self, repo: Repo) -> list[MaintainerSignal]:
        """Users named in the first CODEOWNERS file found."""
        text = None
        for path in CODEOWNERS_PATHS:
            text = await fetch_repo_file(self.client, repo.full_name, path)
            if text is not None:
                break
        if text is None:
            return []

        signals = []
        async with self.session_factory() as session:
            for login in parse_codeowners(text):
                user = await get_user_by_login(session, login)
                if user is None or is_bot_login(user.login, user.type):
                    continue
                signals.append(_signal(repo, user.github_id, SOURCE_CODEOWNERS))
        return signals

    async def detect_from_bcr_metadata(self, repo: Repo) -> list[MaintainerSignal]:
        """Maintainers listed in the Bazel Central Registry metadata template."""
        text = await fetch_repo_file(self.client, repo.full_name, BCR_METADATA_PATH)
        if text is None:
            return []

        signals = []
        async with self.session_factory() as session:
            for user_id, login in parse_bcr_maintainers(text):
                if user_id is None and login:
                    user = await get_user_by_login(session, login)
                    user_id = user.github_id if user else None
                if user_id is None:
                    continue
                signals.append(_signal(repo, user_id, SOURCE_BCR_METADATA))
        return signals

    async def sync_repo(self, repo: Repo) -> dict[int, list[str]]:
        """Detect and persist maintainers of one repository.

        Each detector is best-effort; a failing source is logged and
        contributes nothing.
        """
        signals: list[MaintainerSignal] = []
        for detector in (
            self.detect_from_permissions,
            self.detect_from_codeowners,
            self.detect_from_bcr_metadata,
        ):
            try:
                signals.extend(await detector(repo))
            except Exception as e:
                logger.warning(f"{detector.__name__} failed for {repo.full_name}: {e}")

        await self.record(signals)
        grouped = aggregate_maintainer_signals(signals)
        if grouped:
            logger.info(f"{repo.full_name}: {len(grouped)} maintainers detected")
        return grouped

    async def record(self, signals: list[MaintainerSignal]) -> int:
        """Upsert one assertion per (repo, user, source)."""
        if not signals:
            return 0
        now = utcnow()
        async with self.session_factory() as session:
            for signal in signals:
                result = await session.execute(
                    select(MaintainerAssertion).where(
                        MaintainerAssertion.repo_github_id == signal.repo_id,
                        MaintainerAssertion.user_github_id == signal.user_id,
                        MaintainerAssertion.source == signal.source,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    session.add(
                        MaintainerAssertion(
                            repo_github_id=signal.repo_id,
                            user_github_id=signal.user_id,
                            source=signal.source,
                            confidence=signal.confidence,
                            first_seen_at=now,
                            last_seen_at=now,
                        )
                    )
                else:
                    row.confidence = signal.confidence
                    row.last_seen_at = now
            await session.commit()
        return len(signals)


def _signal(repo: Repo, user_id: int, source: str) -> MaintainerSignal:
    return MaintainerSignal(
        repo_id=repo.id, user_id=user_id, source=source, confidence=CONFIDENCE[source]
    )
