"""FastAPI application for the listings sync service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from .cache import TTLCache
from .config import settings
from .logging_config import configure_logging
from .sync.orchestrator import ActiveSyncs


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    # Auto-create tables for SQLite (local dev)
    if settings.is_sqlite:
        from .database import create_tables
        await create_tables()
    yield
    for task in list(app.state.sync_tasks):
        task.cancel()


app = FastAPI(title=settings.app_title, lifespan=lifespan)

app.state.summary_cache = TTLCache(
    max_entries=settings.response_cache_max_entries,
    ttl=settings.response_cache_ttl_seconds,
)
app.state.active_syncs = ActiveSyncs()
app.state.sync_tasks = set()

from .routers import health, sync  # noqa: E402

app.include_router(sync.router)
app.include_router(health.router)
