"""Health check endpoints for the maintainer inbox API."""

from typing import Any

from fastapi import APIRouter
from sqlalchemy import text

from maintainer_inbox.config import ConfigurationError, settings
from maintainer_inbox.db.database import async_session_maker

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Basic health check - returns ok if the service is running."""
    return {"status": "ok"}


@router.get("/health/ready")
async def ready() -> dict[str, Any]:
    """
    Readiness check - verifies the service can answer recommendations.

    Checks:
    - Database: the store can be queried
    - GitHub: credentials are configured for sync
    """
    services: dict[str, str] = {}
    all_ok = True

    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
        services["database"] = "ok"
    except Exception as e:
        services["database"] = f"error: {type(e).__name__}"
        all_ok = False

    try:
        settings.require_github_credentials()
        services["github"] = "ok" if settings.GITHUB_TOKEN else "ok (app)"
    except ConfigurationError:
        # Recommendations only read the store
        services["github"] = "warning: no credentials configured"

    status = "ready" if all_ok else "degraded"
    return {"status": status, "services": services}
