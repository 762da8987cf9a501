"""Sync trigger routes: start or resume a run and stream its events over SSE."""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import StreamingResponse

from ..cache import TTLCache
from ..config import settings
from ..database import get_session_factory
from ..gbp.client import GBPClient, GBPConfig
from ..schemas.sync import SyncConfig
from ..sync.emitter import ProgressEmitter
from ..sync.errors import SyncAlreadyRunningError, SyncRunNotFoundError
from ..sync.orchestrator import ActiveSyncs, FetcherFactory, SyncOrchestrator
from ..sync.run_store import SyncRunStore, credentials_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


class StartSyncRequest(BaseModel):
    access_token: str | None = None
    max_concurrent_locations: int | None = Field(default=None, ge=1, le=50)


def get_fetcher_factory() -> FetcherFactory:
    return lambda token: GBPClient(GBPConfig(token=token))


def get_summary_cache(request: Request) -> TTLCache:
    return request.app.state.summary_cache


def _resolve_token(body: StartSyncRequest | None, authorization: str | None) -> str:
    if body and body.access_token:
        return body.access_token
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
        if token:
            return token
    raise HTTPException(status_code=400, detail="Missing access token")


def _stream_run(
    request: Request,
    token: str,
    config: SyncConfig,
    session_factory: async_sessionmaker[AsyncSession],
    fetcher_factory: FetcherFactory,
    resume_run_id: uuid.UUID | None = None,
) -> StreamingResponse:
    active: ActiveSyncs = request.app.state.active_syncs
    cache: TTLCache = request.app.state.summary_cache
    tasks: set[asyncio.Task] = request.app.state.sync_tasks
    key = credentials_key(token)
    try:
        active.acquire(key)
    except SyncAlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    logger.info("Starting sync%s", f" (resuming {resume_run_id})" if resume_run_id else "")

    emitter = ProgressEmitter(
        heartbeat_interval=config.heartbeat_interval_seconds,
        max_buffered=settings.sync_event_queue_size,
    )
    orchestrator = SyncOrchestrator(
        session_factory,
        fetcher_factory,
        config=config,
        emitter=emitter,
        run_store=SyncRunStore(session_factory),
    )

    async def run() -> None:
        try:
            summary = await orchestrator.run(token, resume_run_id=resume_run_id)
            if summary.run_id:
                cache.set(f"run:{summary.run_id}", summary.model_dump(mode="json"))
        finally:
            active.release(key)

    # The run outlives the response if the subscriber disconnects.
    task = asyncio.create_task(run(), name="sync-run")
    tasks.add(task)
    task.add_done_callback(tasks.discard)

    async def event_stream():
        try:
            async for chunk in emitter.sse():
                yield chunk
        finally:
            if not emitter.closed:
                emitter.disconnect()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/start")
async def start_sync(
    request: Request,
    body: StartSyncRequest | None = None,
    authorization: str | None = Header(default=None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    fetcher_factory: FetcherFactory = Depends(get_fetcher_factory),
):
    token = _resolve_token(body, authorization)
    config = SyncConfig()
    if body and body.max_concurrent_locations:
        config.max_concurrent_locations = body.max_concurrent_locations
    return _stream_run(request, token, config, session_factory, fetcher_factory)


@router.post("/resume/{run_id}")
async def resume_sync(
    run_id: uuid.UUID,
    request: Request,
    body: StartSyncRequest | None = None,
    authorization: str | None = Header(default=None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    fetcher_factory: FetcherFactory = Depends(get_fetcher_factory),
):
    token = _resolve_token(body, authorization)
    store = SyncRunStore(session_factory)
    try:
        run = await store.get(run_id)
    except SyncRunNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if run.credentials_key != credentials_key(token):
        raise HTTPException(status_code=404, detail=f"Sync run {run_id} not found")
    if run.status == "COMPLETE":
        raise HTTPException(status_code=409, detail="Sync run already completed")

    config = SyncConfig()
    if body and body.max_concurrent_locations:
        config.max_concurrent_locations = body.max_concurrent_locations
    return _stream_run(request, token, config, session_factory, fetcher_factory, resume_run_id=run_id)


@router.get("/runs/{run_id}")
async def get_run(
    run_id: uuid.UUID,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    cache: TTLCache = Depends(get_summary_cache),
):
    cached = cache.get(f"run:{run_id}")
    if cached:
        return cached
    try:
        run = await SyncRunStore(session_factory).get(run_id)
    except SyncRunNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "run_id": str(run.id),
        "status": run.status,
        "current_step": run.current_step,
        "total_locations": run.total_locations,
        "completed_locations": len(run.completed_location_ids or []),
        "counters": run.counters or {},
        "warnings": run.warnings,
        "error": run.error,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
    }
