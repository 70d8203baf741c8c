"""Integration tests for maintainer detection against a fake GitHub."""

import base64
import json

import pytest
from sqlalchemy import select

from github_fakes import user_payload
from maintainer_inbox.db.models import GitHubUser, MaintainerAssertion
from maintainer_inbox.github.models import Repo
from maintainer_inbox.sync.maintainers import (
    SOURCE_BCR_METADATA,
    SOURCE_CODEOWNERS,
    SOURCE_PERMISSIONS,
    MaintainerDetector,
)

REPO = Repo(id=10, name="rules_js", full_name="acme/rules_js", owner_login="acme")


def file_payload(text: str) -> dict:
    return {"type": "file", "encoding": "base64", "content": base64.b64encode(text.encode()).decode()}


@pytest.fixture
def github(fake_github):
    fake_github.add("/repos/acme/rules_js/collaborators", [
        {**user_payload(42, "maria"), "role_name": "admin"},
        {**user_payload(43, "alice"), "role_name": "write"},
        {**user_payload(44, "deploy-bot", "Bot"), "role_name": "maintain"},
        {**user_payload(45, "bob"), "permissions": {"admin": False, "maintain": True, "push": True}},
    ])
    fake_github.add("/repos/acme/rules_js/contents/.github/CODEOWNERS",
                    file_payload("* @maria @carol @acme/owners\n"))
    fake_github.add("/repos/acme/rules_js/contents/.bcr/metadata.template.json", file_payload(json.dumps({
        "maintainers": [{"github": "maria", "github_user_id": 42}, {"github": "carol"}],
    })))
    return fake_github


async def assertions(session_factory) -> set[tuple[int, str]]:
    async with session_factory() as session:
        rows = (await session.execute(select(MaintainerAssertion))).scalars().all()
    return {(row.user_github_id, row.source) for row in rows}


class TestMaintainerDetector:
    """Tests for MaintainerDetector.sync_repo()."""

    async def test_all_sources_recorded(self, github, session_factory, test_db_session):
        """Each source writes its own assertion; unknown CODEOWNERS users are skipped."""
        test_db_session.add(GitHubUser(github_id=46, login="Carol"))
        await test_db_session.commit()
        detector = MaintainerDetector(github.client(), session_factory)

        grouped = await detector.sync_repo(REPO)

        assert grouped == {
            42: [SOURCE_PERMISSIONS, SOURCE_CODEOWNERS, SOURCE_BCR_METADATA],
            45: [SOURCE_PERMISSIONS],
            46: [SOURCE_CODEOWNERS, SOURCE_BCR_METADATA],
        }
        assert (44, SOURCE_PERMISSIONS) not in await assertions(session_factory)

    async def test_redetection_is_idempotent(self, github, session_factory):
        """Running twice keeps one row per (repo, user, source)."""
        detector = MaintainerDetector(github.client(), session_factory)

        await detector.sync_repo(REPO)
        first = await assertions(session_factory)
        await detector.sync_repo(REPO)

        async with session_factory() as session:
            rows = (await session.execute(select(MaintainerAssertion))).scalars().all()
        assert len(rows) == len(first)
        assert await assertions(session_factory) == first

    async def test_permission_maintainers_stored_as_users(self, github, session_factory):
        """Collaborator maintainers become known users so turns can match them."""
        await MaintainerDetector(github.client(), session_factory).detect_from_permissions(REPO)

        async with session_factory() as session:
            logins = set((await session.execute(select(GitHubUser.login))).scalars().all())
        assert logins == {"maria", "bob"}

    async def test_forbidden_collaborators_tolerated(self, fake_github, session_factory):
        """Without admin rights the permission source yields nothing."""
        fake_github.add("/repos/acme/rules_js/collaborators", {"message": "Must have push access"}, status=403)

        signals = await MaintainerDetector(fake_github.client(), session_factory).detect_from_permissions(REPO)

        assert signals == []

    async def test_failing_source_does_not_block_others(self, github, session_factory):
        """A broken source is skipped while the rest still record."""
        github.add("/repos/acme/rules_js/contents/.bcr/metadata.template.json",
                   {"message": "boom"}, status=400)
        detector = MaintainerDetector(github.client(), session_factory)

        grouped = await detector.sync_repo(REPO)

        assert SOURCE_PERMISSIONS in grouped[42]
        assert SOURCE_BCR_METADATA not in grouped[42]
