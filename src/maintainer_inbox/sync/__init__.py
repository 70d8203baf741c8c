"""GitHub synchronization: incremental pass, maintainers, enrichment, backfills."""

from maintainer_inbox.sync.backfill import Backfill
from maintainer_inbox.sync.enrichment import EnrichmentQueue, GitHubProfileEnricher
from maintainer_inbox.sync.maintainers import MaintainerDetector, aggregate_maintainer_signals
from maintainer_inbox.sync.orchestrator import (
    IncrementalSync,
    SyncError,
    SyncSummary,
    sync_all_organizations,
)
from maintainer_inbox.sync.repo_filter import RepoFilter

__all__ = [
    "Backfill",
    "EnrichmentQueue",
    "GitHubProfileEnricher",
    "IncrementalSync",
    "MaintainerDetector",
    "RepoFilter",
    "SyncError",
    "SyncSummary",
    "aggregate_maintainer_signals",
    "sync_all_organizations",
]
