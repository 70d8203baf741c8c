"""FastAPI application entry point."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from maintainer_inbox import __version__
from maintainer_inbox.api.health import router as health_router
from maintainer_inbox.api.work_items import router as work_items_router
from maintainer_inbox.config import settings

app = FastAPI(
    title=settings.APP_NAME,
    description="Turn-aware work queue for open-source maintainers",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(work_items_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic application info."""
    return {
        "name": settings.APP_NAME,
        "version": __version__,
        "docs": "/docs",
    }
