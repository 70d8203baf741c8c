"""CLI commands for the maintainer inbox."""

import asyncio
import json
import logging
import re
import sys

import click

from maintainer_inbox.config import ConfigurationError, settings


class SecretRedactingFilter(logging.Filter):
    """Filter to redact sensitive information from logs."""

    SECRET_PATTERNS = [
        (re.compile(r"\b(gh[pousr]_)[A-Za-z0-9]{20,}"), r"\1[REDACTED]"),
        (re.compile(r"\b(github_pat_)[A-Za-z0-9_]{20,}"), r"\1[REDACTED]"),
        (re.compile(r"(token[\s:=]+)[\w-]{20,}", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(bearer\s+)[\w.-]+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----", re.DOTALL),
         "[REDACTED PRIVATE KEY]"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact secrets from log messages."""
        if isinstance(record.msg, str):
            for pattern, replacement in self.SECRET_PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        return True


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger().addFilter(SecretRedactingFilter())
logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """Maintainer Inbox CLI."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _parse_orgs(orgs: tuple[str, ...]) -> list[str]:
    org_list = list(orgs) or settings.github_org_list
    if not org_list:
        _fail("No organizations specified. Pass ORG arguments or set GITHUB_ORGS.")
    return org_list


# =============================================================================
# DATABASE
# =============================================================================


@cli.command()
def init_database() -> None:
    """Initialize the database schema."""
    asyncio.run(_init_database())


async def _init_database() -> None:
    """Async implementation of init-database command."""
    from maintainer_inbox.db.database import init_db

    try:
        settings.require_database()
    except ConfigurationError as e:
        _fail(str(e))
    await init_db()
    click.echo("Database initialized successfully!")


# =============================================================================
# SYNC COMMANDS
# =============================================================================


@cli.command()
@click.argument("orgs", nargs=-1)
@click.option("--full", is_flag=True, help="Reset watermarks and re-fetch everything")
def sync(orgs: tuple[str, ...], full: bool) -> None:
    """Incrementally sync repositories, issues and pull requests of ORGS."""
    asyncio.run(_sync(orgs, full))


async def _sync(orgs: tuple[str, ...], full: bool) -> None:
    """Async implementation of sync command."""
    from maintainer_inbox.db.database import init_db
    from maintainer_inbox.db.watermarks import WatermarkStore
    from maintainer_inbox.github.client import GitHubClient
    from maintainer_inbox.sync.orchestrator import IncrementalSync

    org_list = _parse_orgs(orgs)
    try:
        client = GitHubClient.from_settings()
    except ConfigurationError as e:
        _fail(str(e))

    await init_db()

    failed = False
    async with client:
        if full:
            removed = await WatermarkStore().reset()
            click.echo(f"Full sync: cleared {removed} watermarks")

        syncer = IncrementalSync(client)
        for org in org_list:
            summary = await syncer.sync_organization(org)
            click.echo(f"\nSync of {org} complete!")
            click.echo(f"  Repositories processed: {summary.repos_processed}")
            click.echo(f"  Repositories skipped: {summary.repos_skipped}")
            click.echo(f"  Issues synced: {summary.issues_synced}")
            click.echo(f"  Pull requests synced: {summary.prs_synced}")
            click.echo(f"  Errors: {len(summary.errors)}")
            for error in summary.errors[:20]:
                where = f"{error.repo} {error.item}" if error.item else error.repo
                click.echo(f"    - {where}: {error.error}")
            if len(summary.errors) > 20:
                click.echo(f"    ... and {len(summary.errors) - 20} more")
            failed = failed or (summary.repos_processed == 0 and bool(summary.errors))

    if failed:
        sys.exit(1)


@cli.command()
@click.argument("orgs", nargs=-1)
def sync_maintainers(orgs: tuple[str, ...]) -> None:
    """Detect maintainers of every allowed repository of ORGS."""
    asyncio.run(_sync_maintainers(orgs))


async def _sync_maintainers(orgs: tuple[str, ...]) -> None:
    """Async implementation of sync-maintainers command."""
    from maintainer_inbox.db.database import async_session_maker, init_db
    from maintainer_inbox.db.writer import upsert_repository
    from maintainer_inbox.github.client import GitHubClient
    from maintainer_inbox.github.fetchers import fetch_org_repos
    from maintainer_inbox.sync.maintainers import MaintainerDetector
    from maintainer_inbox.sync.repo_filter import RepoFilter

    org_list = _parse_orgs(orgs)
    try:
        client = GitHubClient.from_settings()
    except ConfigurationError as e:
        _fail(str(e))

    await init_db()
    repo_filter = RepoFilter(settings.repo_include_list, settings.repo_exclude_list)

    async with client:
        detector = MaintainerDetector(client)
        for org in org_list:
            repos = maintainers = 0
            async for batch in fetch_org_repos(client, org):
                for repo in batch.items:
                    if not repo_filter.allows(repo):
                        continue
                    async with async_session_maker() as session:
                        await upsert_repository(session, repo)
                        await session.commit()
                    detected = await detector.sync_repo(repo)
                    repos += 1
                    maintainers += len(detected)
                    click.echo(f"  {repo.full_name}: {len(detected)} maintainers")
            click.echo(f"{org}: {repos} repositories, {maintainers} maintainer assertions")


@cli.command()
@click.option("--repo", "-r", help="Restrict to one repository (owner/name)")
def sync_comments(repo: str | None) -> None:
    """Backfill comments of all open items."""
    asyncio.run(_backfill("comments", repo))


@cli.command()
@click.option("--repo", "-r", help="Restrict to one repository (owner/name)")
def sync_reactions(repo: str | None) -> None:
    """Backfill reactions of all open items."""
    asyncio.run(_backfill("reactions", repo))


async def _backfill(kind: str, repo: str | None) -> None:
    """Async implementation of the backfill commands."""
    from maintainer_inbox.db.database import init_db
    from maintainer_inbox.github.client import GitHubClient
    from maintainer_inbox.sync.backfill import Backfill

    try:
        client = GitHubClient.from_settings()
    except ConfigurationError as e:
        _fail(str(e))

    await init_db()
    async with client:
        backfill = Backfill(client)
        if kind == "comments":
            stats = await backfill.sync_comments(repo)
        else:
            stats = await backfill.sync_reactions(repo)

    click.echo(f"\nBackfill of {kind} complete!")
    for key, value in stats.items():
        click.echo(f"  {key.capitalize()}: {value}")


@cli.command()
@click.argument("login")
def sync_stars(login: str) -> None:
    """Store the repositories LOGIN has starred."""
    asyncio.run(_sync_stars(login))


async def _sync_stars(login: str) -> None:
    """Async implementation of sync-stars command."""
    from maintainer_inbox.db.database import init_db
    from maintainer_inbox.github.client import GitHubAPIError, GitHubClient
    from maintainer_inbox.sync.backfill import Backfill

    try:
        client = GitHubClient.from_settings()
    except ConfigurationError as e:
        _fail(str(e))

    await init_db()
    async with client:
        try:
            count = await Backfill(client).sync_starred_repos(login)
        except GitHubAPIError as e:
            _fail(f"Fetching stars of {login} failed: {e}")
    click.echo(f"Stored {count} starred repositories for {login}")


# =============================================================================
# TRIAGE COMMANDS
# =============================================================================


@cli.command(name="next")
@click.argument("user_id", type=int)
@click.option("--include-scoring", is_flag=True, help="Show the score breakdown")
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON result")
def next_item(user_id: int, include_scoring: bool, as_json: bool) -> None:
    """Show the next work item for the GitHub user USER_ID."""
    asyncio.run(_next(user_id, include_scoring, as_json))


async def _next(user_id: int, include_scoring: bool, as_json: bool) -> None:
    """Async implementation of next command."""
    from maintainer_inbox.db.database import async_session_maker, init_db
    from maintainer_inbox.db.preferences import get_preferences
    from maintainer_inbox.triage.recommend import RecommendationEngine

    await init_db()
    async with async_session_maker() as session:
        preferences = await get_preferences(session, user_id)

    item = await RecommendationEngine().get_next_work_item(
        user_id, preferences=preferences, include_scoring=include_scoring
    )

    if as_json:
        click.echo(json.dumps({"item": item.to_dict() if item else None}, indent=2))
        return
    if item is None:
        click.echo("Nothing to work on right now.")
        return

    kind = "PR" if item.item_type == "pr" else "Issue"
    click.echo(f"{kind} {item.repo_full_name}#{item.number}: {item.title}")
    click.echo(f"  Why: {item.explanation.primary}")
    for reason in item.explanation.secondary:
        click.echo(f"       {reason}")
    if item.stalled:
        click.echo("  Stalled: no maintainer action for a while")
    if item.scoring is not None:
        s = item.scoring
        click.echo(f"  Score: {s.total_score} (base {s.base_score} + boost {s.preference_boost})")


@cli.command()
@click.argument("item_id", type=int)
def turn(item_id: int) -> None:
    """Show whose turn it is on the open item ITEM_ID (GitHub id)."""
    asyncio.run(_turn(item_id))


async def _turn(item_id: int) -> None:
    """Async implementation of turn command."""
    from maintainer_inbox.db.database import init_db
    from maintainer_inbox.triage.turns import get_turn_state

    await init_db()
    state = await get_turn_state(item_id)
    if state is None:
        _fail(f"No open work item with id {item_id}")

    click.echo(f"Turn: {state.turn.value}")
    click.echo(f"Last maintainer action: {state.last_maintainer_action_at.isoformat()}")
    click.echo(f"Stalled: {'yes' if state.stalled else 'no'}")


# =============================================================================
# COMPANIES
# =============================================================================


@cli.command()
@click.argument("github_user_id", type=int)
@click.argument("company", required=False)
@click.option("--clear", is_flag=True, help="Remove the override instead of setting it")
def set_company_override(github_user_id: int, company: str | None, clear: bool) -> None:
    """Assign COMPANY to the GitHub user GITHUB_USER_ID."""
    asyncio.run(_set_company_override(github_user_id, company, clear))


async def _set_company_override(github_user_id: int, company: str | None, clear: bool) -> None:
    """Async implementation of set-company-override command."""
    from maintainer_inbox.db import companies
    from maintainer_inbox.db.database import async_session_maker, init_db

    await init_db()
    async with async_session_maker() as session:
        if clear:
            removed = await companies.clear_company_override(session, github_user_id)
            click.echo("Override removed" if removed else "No override to remove")
            return
        if not company:
            _fail("COMPANY is required unless --clear is given")
        try:
            await companies.set_company_override(session, github_user_id, company)
        except ValueError as e:
            _fail(str(e))
    click.echo(f"User {github_user_id} now belongs to {company.strip()}")


@cli.command()
@click.argument("name")
@click.argument(
    "classification",
    type=click.Choice(["INTERNAL", "COMPETITOR", "CUSTOMER", "PROSPECT", "OTHER"], case_sensitive=False),
)
def classify_company(name: str, classification: str) -> None:
    """Classify company NAME (e.g. as CUSTOMER)."""
    asyncio.run(_classify_company(name, classification))


async def _classify_company(name: str, classification: str) -> None:
    """Async implementation of classify-company command."""
    from maintainer_inbox.db import companies
    from maintainer_inbox.db.database import async_session_maker, init_db

    await init_db()
    async with async_session_maker() as session:
        try:
            company = await companies.classify_company(session, name, classification)
        except ValueError as e:
            _fail(str(e))
    click.echo(f"{company.name}: {company.classification}")


# =============================================================================
# CONNECTIVITY
# =============================================================================


@cli.command()
def check_connection() -> None:
    """Check connection to GitHub and show the remaining rate limit."""
    asyncio.run(_check_connection())


async def _check_connection() -> None:
    """Async implementation of check-connection command."""
    from maintainer_inbox.github.client import GitHubClient

    try:
        client = GitHubClient.from_settings()
    except ConfigurationError as e:
        _fail(str(e))

    async with client:
        try:
            data = await client.get("/rate_limit")
        except Exception as e:
            click.echo(f"Connection failed: {e}", err=True)
            sys.exit(1)

    core = (data or {}).get("resources", {}).get("core", {})
    click.echo("Connected to GitHub successfully!")
    click.echo(f"  Rate limit: {core.get('remaining', '?')}/{core.get('limit', '?')} remaining")


@cli.command()
@click.option("--host", default="0.0.0.0", help="Interface to bind")
@click.option("--port", default=8000, type=int, help="Port to listen on")
def serve(host: str, port: int) -> None:
    """Run the recommendation HTTP API."""
    import uvicorn

    from maintainer_inbox.main import app

    logger.info(f"Starting API on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
