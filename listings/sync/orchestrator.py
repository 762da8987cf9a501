"""Sync orchestrator: account bootstrap, location discovery, fan-out, finalization.

The run moves strictly forward through

    INIT -> FETCH_ACCOUNT -> FETCH_LOCATIONS -> PROCESS_LOCATIONS -> FINALIZE -> COMPLETE

and drops to FAILED from any state on a fatal error. Every path ends with a
single ``done`` event and a single ``close()`` of the emitter.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..gbp.protocol import FacetFetcher
from ..models.brand import Brand
from ..schemas.gbp import AccountInfo, GBPLocation
from ..schemas.sync import SyncConfig, SyncSummary
from .emitter import ProgressEmitter
from .errors import (
    BrandResolutionError,
    RetryPolicy,
    SyncAlreadyRunningError,
    SyncError,
    classify_error,
)
from .pool import LocationWorkerPool, RunTotals, SyncWindow
from .resolver import EntityResolver
from .run_store import SyncRunStore, credentials_key
from .upserter import FACET_INSIGHTS, FACET_KEYWORDS, FACET_POSTS, FACET_REVIEWS, FacetUpserter

logger = logging.getLogger(__name__)

FetcherFactory = Callable[[str], AbstractAsyncContextManager[FacetFetcher]]


class SyncPhase(str, Enum):
    INIT = "INIT"
    FETCH_ACCOUNT = "FETCH_ACCOUNT"
    FETCH_LOCATIONS = "FETCH_LOCATIONS"
    PROCESS_LOCATIONS = "PROCESS_LOCATIONS"
    FINALIZE = "FINALIZE"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


_FORWARD = [
    SyncPhase.INIT,
    SyncPhase.FETCH_ACCOUNT,
    SyncPhase.FETCH_LOCATIONS,
    SyncPhase.PROCESS_LOCATIONS,
    SyncPhase.FINALIZE,
    SyncPhase.COMPLETE,
]
_TERMINAL = {SyncPhase.COMPLETE, SyncPhase.FAILED}


class SyncOrchestrator:
    """Runs one sync for one set of credentials and reports through ``emitter``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher_factory: FetcherFactory,
        *,
        config: SyncConfig | None = None,
        emitter: ProgressEmitter | None = None,
        run_store: SyncRunStore | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or SyncConfig()
        self.emitter = emitter or ProgressEmitter(
            heartbeat_interval=self.config.heartbeat_interval_seconds,
            max_buffered=settings.sync_event_queue_size,
        )
        self._fetcher_factory = fetcher_factory
        self._run_store = run_store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.resolver = EntityResolver(session_factory)
        self.upserter = FacetUpserter(
            session_factory,
            self.emitter,
            self.resolver,
            policy=RetryPolicy.from_config(self.config),
            timeout=self.config.save_timeout_seconds,
            sleep=sleep,
        )
        self.totals = RunTotals()
        self.phase = SyncPhase.INIT
        self.phase_history: list[SyncPhase] = [SyncPhase.INIT]
        self.run_id: uuid.UUID | None = None
        self.brand: Brand | None = None
        self.locations: list[GBPLocation] = []
        self._done_sent = False

    async def _advance(self, phase: SyncPhase, **run_fields: Any) -> None:
        if self.phase in _TERMINAL:
            raise RuntimeError(f"Sync already finished ({self.phase.value})")
        if phase is not SyncPhase.FAILED and _FORWARD.index(phase) <= _FORWARD.index(self.phase):
            raise RuntimeError(f"Illegal transition {self.phase.value} -> {phase.value}")
        logger.info("Sync %s: %s -> %s", self.run_id or "-", self.phase.value, phase.value)
        self.phase = phase
        self.phase_history.append(phase)
        if self._run_store is not None and self.run_id is not None:
            step = _FORWARD.index(phase) if phase in _FORWARD else None
            fields = {"status": phase.value, **run_fields}
            if step is not None:
                fields["current_step"] = step
            await self._run_store.update(self.run_id, **fields)

    def _send_done(self) -> None:
        if not self._done_sent:
            self._done_sent = True
            self.emitter.emit("done", {"runId": str(self.run_id) if self.run_id else None})

    async def run(self, credentials: str, *, resume_run_id: uuid.UUID | str | None = None) -> SyncSummary:
        """Execute the sync. Never raises for sync failures; see ``summary.status``."""
        self.emitter.start_heartbeat()
        skip: list[str] = []
        try:
            if self._run_store is not None:
                key = credentials_key(credentials)
                if resume_run_id is not None:
                    run = await self._run_store.reopen(resume_run_id, key)
                    skip = list(run.completed_location_ids or [])
                    logger.info("Resuming sync %s with %d locations done", run.id, len(skip))
                else:
                    run = await self._run_store.create(key)
                self.run_id = run.id

            async with self._fetcher_factory(credentials) as fetcher:
                await self._advance(SyncPhase.FETCH_ACCOUNT)
                account = await self._fetch_account(fetcher)

                await self._advance(
                    SyncPhase.FETCH_LOCATIONS, brand_id=self.brand.id, account_id=account.id
                )
                self.locations = await self._fetch_locations(fetcher)

                await self._advance(SyncPhase.PROCESS_LOCATIONS, total_locations=len(self.locations))
                pool = LocationWorkerPool(
                    fetcher,
                    self.resolver,
                    self.upserter,
                    self.emitter,
                    brand_id=self.brand.id,
                    config=self.config,
                    window=SyncWindow.ending_at(self._clock(), self.config),
                    totals=self.totals,
                    skip_location_ids=skip,
                    on_location_complete=self._checkpoint,
                )
                await pool.process_all(self.locations, self.config.max_concurrent_locations)

            await self._advance(SyncPhase.FINALIZE)
            summary = self._finalize()
            try:
                await self._advance(
                    SyncPhase.COMPLETE,
                    counters=self._counters_json(),
                    warnings=self.totals.warnings,
                    completed_at=datetime.now(timezone.utc),
                )
            except SQLAlchemyError:
                # All facets are saved; a lost bookkeeping write does not fail the run.
                logger.exception("Could not record completion for sync %s", self.run_id)
            self._announce_complete(summary, account)
            return summary
        except asyncio.CancelledError:
            await self._fail(SyncError("Sync cancelled"))
            raise
        except Exception as exc:
            return await self._fail(exc)
        finally:
            self.emitter.close()

    async def _fetch_account(self, fetcher: FacetFetcher) -> AccountInfo:
        self.emitter.progress("account", 1, "Fetching account information...")
        account = await asyncio.wait_for(
            fetcher.get_account_info(), timeout=self.config.fetch_timeout_seconds
        )
        try:
            self.brand = await self.resolver.resolve_brand(account)
        except Exception as exc:
            raise BrandResolutionError(f"Failed to resolve brand for account {account.id}: {exc}") from exc

        self.emitter.emit("account", {
            "account": {
                "id": account.id,
                "name": account.name,
                "email": account.email,
                "connectedAt": datetime.now(timezone.utc).isoformat(),
            },
            "brand": {"id": str(self.brand.id), "name": self.brand.name, "slug": self.brand.slug},
        })
        return account

    async def _fetch_locations(self, fetcher: FacetFetcher) -> list[GBPLocation]:
        self.emitter.progress("locations", 2, "Fetching business locations...")
        accounts = await asyncio.wait_for(
            fetcher.list_accounts(), timeout=self.config.fetch_timeout_seconds
        )

        locations: list[GBPLocation] = []
        seen: set[str] = set()
        failures = 0
        for account in accounts:
            try:
                found = await asyncio.wait_for(
                    fetcher.list_locations(account.name), timeout=self.config.fetch_timeout_seconds
                )
            except Exception as exc:
                failures += 1
                self.totals.warnings += 1
                info = classify_error(exc)
                logger.warning("Failed to list locations for %s: %s", account.name, info.message)
                self.emitter.warning(
                    f"Failed to fetch locations for account {account.account_name or account.name}",
                    accountId=account.name,
                    code=info.code,
                    error=info.message,
                )
                continue
            for location in found:
                if location.id not in seen:
                    seen.add(location.id)
                    locations.append(location)

        if accounts and failures == len(accounts):
            raise SyncError("Could not enumerate locations for any account")

        self.emitter.emit("locations", {
            "locations": [loc.model_dump(mode="json") for loc in locations],
            "count": len(locations),
            "accounts": len(accounts),
        })
        if not locations:
            self.totals.warnings += 1
            self.emitter.warning("No locations found for this account")
        return locations

    async def _checkpoint(self, location: GBPLocation) -> None:
        if self._run_store is not None and self.run_id is not None:
            await self._run_store.mark_location_complete(
                self.run_id, location.id, self._counters_json()
            )

    def _counters_json(self) -> dict:
        return {facet: c.model_dump() for facet, c in self.totals.counters.items()}

    def _summary(self, status: SyncPhase, error: str | None = None) -> SyncSummary:
        return SyncSummary(
            run_id=str(self.run_id) if self.run_id else None,
            status=status.value,
            total_locations=len(self.locations),
            processed_locations=self.totals.processed_locations,
            skipped_locations=self.totals.skipped_locations,
            warnings=self.totals.warnings,
            counters=self.totals.counters,
            error=error,
        )

    def _finalize(self) -> SyncSummary:
        totals = self.totals
        collected = totals.collected
        review_errors = totals.fetch_errors[FACET_REVIEWS]
        reviews_available = review_errors == 0 or review_errors < totals.processed_locations

        self.emitter.emit("reviews", {
            "reviews": collected[FACET_REVIEWS],
            "count": len(collected[FACET_REVIEWS]),
            "reviewsApiAvailable": reviews_available,
            "reviewErrors": review_errors,
            "message": None if reviews_available else (
                "Reviews are not available for these credentials. The reviews API "
                "requires permissions most projects do not have."
            ),
        })
        self.emitter.emit("posts", {
            "posts": collected[FACET_POSTS],
            "count": len(collected[FACET_POSTS]),
            "postErrors": totals.fetch_errors[FACET_POSTS],
        })
        self.emitter.emit("search-keywords", {
            "searchKeywords": collected[FACET_KEYWORDS],
            "count": len(collected[FACET_KEYWORDS]),
            "keywordErrors": totals.fetch_errors[FACET_KEYWORDS],
        })
        self.emitter.progress("complete", 5, "Sync completed successfully!")
        return self._summary(SyncPhase.COMPLETE)

    def _announce_complete(self, summary: SyncSummary, account: AccountInfo) -> None:
        totals = self.totals
        collected = totals.collected
        self.emitter.emit("complete", {
            "summary": summary.model_dump(mode="json"),
            "warnings": totals.warnings,
            "data": {
                "account": account.model_dump(mode="json"),
                "locations": [loc.model_dump(mode="json") for loc in self.locations],
                "reviews": collected[FACET_REVIEWS],
                "posts": collected[FACET_POSTS],
                "insights": collected[FACET_INSIGHTS],
                "searchKeywords": collected[FACET_KEYWORDS],
            },
        })
        self._send_done()

    async def _fail(self, exc: BaseException) -> SyncSummary:
        cause = exc.__cause__ if isinstance(exc, BrandResolutionError) and exc.__cause__ else exc
        info = classify_error(cause)
        logger.error("Sync %s failed in %s: %s", self.run_id or "-", self.phase.value, exc, exc_info=exc)
        failed_in = self.phase
        if self.phase not in _TERMINAL:
            self.phase = SyncPhase.FAILED
            self.phase_history.append(SyncPhase.FAILED)
        if self._run_store is not None and self.run_id is not None:
            try:
                await self._run_store.update(
                    self.run_id,
                    status=SyncPhase.FAILED.value,
                    error=str(exc),
                    counters=self._counters_json(),
                    warnings=self.totals.warnings,
                    completed_at=datetime.now(timezone.utc),
                )
            except Exception:
                logger.exception("Could not record failure for sync %s", self.run_id)
        self.emitter.emit("error", {
            "error": str(exc) or type(exc).__name__,
            "phase": failed_in.value,
            "classification": info.to_dict(),
        })
        self._send_done()
        return self._summary(SyncPhase.FAILED, error=str(exc))


class ActiveSyncs:
    """Credential keys with a sync in flight. At most one run per key."""

    def __init__(self) -> None:
        self._keys: set[str] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def acquire(self, key: str) -> None:
        if key in self._keys:
            raise SyncAlreadyRunningError("A sync is already running for these credentials")
        self._keys.add(key)

    def release(self, key: str) -> None:
        self._keys.discard(key)
