"""Shared test fixtures."""

import os

# Keep the module-level engine off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENRICHMENT_ENABLED", "false")

import pytest

from github_fakes import FakeGitHub


@pytest.fixture
def fake_github():
    """Fake GitHub API backed by httpx.MockTransport."""
    return FakeGitHub()
