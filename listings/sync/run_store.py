"""Persistence for SyncRun rows: phase, counters, and per-location checkpoints."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.sync_run import SyncRun
from .errors import SyncRunNotFoundError

logger = logging.getLogger(__name__)


def credentials_key(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SyncRunStore:
    """Reads and writes SyncRun rows, one short session per call.

    Writes are serialized so concurrent workers checkpointing locations do
    not lose each other's updates to the JSON columns.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._lock = asyncio.Lock()

    async def create(self, key: str) -> SyncRun:
        async with self._lock, self._session_factory() as db:
            run = SyncRun(
                credentials_key=key,
                status="INIT",
                completed_location_ids=[],
                counters={},
                started_at=datetime.now(timezone.utc),
            )
            db.add(run)
            await db.commit()
            return run

    async def get(self, run_id: uuid.UUID | str) -> SyncRun:
        run_uuid = run_id if isinstance(run_id, uuid.UUID) else _parse_uuid(run_id)
        async with self._session_factory() as db:
            run = await db.get(SyncRun, run_uuid)
            if run is None:
                raise SyncRunNotFoundError(f"Sync run {run_id} not found")
            return run

    async def reopen(self, run_id: uuid.UUID | str, key: str) -> SyncRun:
        """Prepare an unfinished run for resume. The credentials must match the original run."""
        run = await self.get(run_id)
        if run.credentials_key != key:
            raise SyncRunNotFoundError(f"Sync run {run_id} not found")
        return await self.update(
            run.id, status="INIT", error=None, completed_at=None, current_step=0
        )

    async def update(self, run_id: uuid.UUID, **fields: Any) -> SyncRun:
        async with self._lock, self._session_factory() as db:
            run = await db.get(SyncRun, run_id)
            if run is None:
                raise SyncRunNotFoundError(f"Sync run {run_id} not found")
            for name, value in fields.items():
                setattr(run, name, value)
            await db.commit()
            return run

    async def mark_location_complete(
        self, run_id: uuid.UUID, location_id: str, counters: dict | None = None
    ) -> None:
        async with self._lock, self._session_factory() as db:
            run = await db.get(SyncRun, run_id)
            if run is None:
                raise SyncRunNotFoundError(f"Sync run {run_id} not found")
            done = list(run.completed_location_ids or [])
            if location_id not in done:
                done.append(location_id)
            # New list objects so the JSON columns are flagged dirty.
            run.completed_location_ids = done
            if counters is not None:
                run.counters = dict(counters)
            await db.commit()


def _parse_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise SyncRunNotFoundError(f"Sync run {value} not found") from exc
