"""Bounded worker pool that drives per-location facet fetch and persistence."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Sequence

from ..gbp.normalize import is_valid_location_id
from ..gbp.protocol import FacetFetcher
from ..schemas.gbp import GBPInsight, GBPLocation
from ..schemas.sync import FacetCounters, SyncConfig
from .emitter import ProgressEmitter
from .errors import classify_error, format_error_for_user
from .resolver import EntityResolver
from .upserter import (
    FACET_INSIGHTS,
    FACET_KEYWORDS,
    FACET_POSTS,
    FACET_REVIEWS,
    FACETS,
    FacetUpserter,
    SaveContext,
)

logger = logging.getLogger(__name__)


@dataclass
class RunTotals:
    """Counters and collected records shared by every worker of one run."""

    counters: dict[str, FacetCounters] = field(
        default_factory=lambda: {facet: FacetCounters() for facet in FACETS}
    )
    fetch_errors: dict[str, int] = field(default_factory=lambda: {facet: 0 for facet in FACETS})
    collected: dict[str, list[dict]] = field(default_factory=lambda: {facet: [] for facet in FACETS})
    warnings: int = 0
    processed_locations: int = 0
    skipped_locations: int = 0
    in_progress: int = 0
    peak_in_progress: int = 0


@dataclass(frozen=True)
class SyncWindow:
    """Reporting windows for the time-based facets."""

    insights_start: date
    insights_end: date
    keywords_from: tuple[int, int]
    keywords_to: tuple[int, int]

    @classmethod
    def ending_at(cls, now: datetime, config: SyncConfig) -> "SyncWindow":
        utc = now.astimezone(timezone.utc)
        end = utc.date()
        months = utc.year * 12 + (utc.month - 1) - config.keywords_lookback_months
        from_year, from_month = divmod(months, 12)
        return cls(
            insights_start=end - timedelta(days=config.insights_lookback_days),
            insights_end=end,
            keywords_from=(from_year, from_month + 1),
            keywords_to=(utc.year, utc.month),
        )


class LocationWorkerPool:
    """Processes locations with at most ``concurrency`` in flight.

    Workers pull from a shared cursor. For each location the Store is
    resolved first, then posts, insights and keywords are fetched together
    and persisted as each arrives; reviews follow once those three settle.
    Facet failures become warnings. Store resolution failures are fatal and
    cancel the remaining workers.
    """

    def __init__(
        self,
        fetcher: FacetFetcher,
        resolver: EntityResolver,
        upserter: FacetUpserter,
        emitter: ProgressEmitter,
        *,
        brand_id: uuid.UUID,
        config: SyncConfig,
        window: SyncWindow,
        totals: RunTotals | None = None,
        skip_location_ids: Iterable[str] = (),
        on_location_complete: Callable[[GBPLocation], Awaitable[Any]] | None = None,
    ):
        self._fetcher = fetcher
        self._resolver = resolver
        self._upserter = upserter
        self._emitter = emitter
        self._brand_id = brand_id
        self._config = config
        self._window = window
        self.totals = totals or RunTotals()
        self._skip = set(skip_location_ids)
        self._on_location_complete = on_location_complete
        self._cursor = 0

    async def process_all(self, locations: Sequence[GBPLocation], concurrency: int | None = None) -> None:
        concurrency = max(1, concurrency or self._config.max_concurrent_locations)
        self._cursor = 0
        total = len(locations)

        async def worker() -> None:
            while self._cursor < total:
                index = self._cursor
                self._cursor += 1
                await self._process(locations[index], index, total)

        tasks = [
            asyncio.create_task(worker(), name=f"location-worker-{n}")
            for n in range(min(concurrency, total))
        ]
        if not tasks:
            return
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _process(self, location: GBPLocation, index: int, total: int) -> None:
        label = location.name or location.id
        if location.id in self._skip:
            self.totals.skipped_locations += 1
            logger.debug("Skipping already-synced location %s", location.id)
            return
        if not is_valid_location_id(location.id):
            self.totals.skipped_locations += 1
            self.totals.warnings += 1
            logger.warning("Skipping location with malformed id %r", location.id)
            self._emitter.warning(
                f"Skipping location {label}: invalid location id",
                locationId=location.id,
                locationName=location.name,
                facet=None,
                code="VALIDATION_ERROR",
            )
            return

        self.totals.in_progress += 1
        self.totals.peak_in_progress = max(self.totals.peak_in_progress, self.totals.in_progress)
        try:
            self._emitter.progress(
                "location-processing",
                3,
                f"Processing location {index + 1}/{total}: {label}",
                locationId=location.id,
                current=index + 1,
                totalLocations=total,
                status="started",
            )
            store = await self._resolver.resolve_store(location.id, self._brand_id, location)
            context = SaveContext(
                brand_id=self._brand_id,
                location_id=location.id,
                account_id=location.account_id,
                store_id=store.id,
                location=location,
            )

            window = self._window
            results = await asyncio.gather(
                self._run_facet(FACET_POSTS, lambda: self._fetcher.fetch_posts(location.id), context),
                self._run_facet(
                    FACET_INSIGHTS,
                    lambda: self._fetcher.fetch_insights(
                        location.id, window.insights_start, window.insights_end
                    ),
                    context,
                ),
                self._run_facet(
                    FACET_KEYWORDS,
                    lambda: self._fetcher.fetch_keywords(
                        location.id, *window.keywords_from, *window.keywords_to
                    ),
                    context,
                ),
                return_exceptions=True,
            )
            for facet, result in zip((FACET_POSTS, FACET_INSIGHTS, FACET_KEYWORDS), results):
                if isinstance(result, BaseException):
                    self._facet_failed(facet, context, result)

            # Reviews are the most rate-limited facet; never overlap them with the others.
            await self._run_facet(
                FACET_REVIEWS, lambda: self._fetcher.fetch_reviews(location.id), context
            )

            self.totals.processed_locations += 1
            self._emitter.progress(
                "location-processing",
                3,
                f"Finished location {index + 1}/{total}: {label}",
                locationId=location.id,
                current=index + 1,
                totalLocations=total,
                status="completed",
            )
            if self._on_location_complete is not None:
                await self._on_location_complete(location)
        finally:
            self.totals.in_progress -= 1

    async def _run_facet(
        self,
        facet: str,
        fetch: Callable[[], Awaitable[Any]],
        context: SaveContext,
    ) -> None:
        try:
            result = await asyncio.wait_for(fetch(), timeout=self._config.fetch_timeout_seconds)
        except Exception as exc:
            self._facet_failed(facet, context, exc)
            return

        if facet == FACET_INSIGHTS:
            if result is None:
                # Record an explicit zero-activity sample instead of a gap.
                result = GBPInsight(
                    period_start=self._window.insights_start,
                    period_end=self._window.insights_end,
                )
            records = [result]
        else:
            records = list(result or [])

        counters = self.totals.counters[facet]
        counters.fetched += len(records)
        self.totals.collected[facet].extend(
            {
                **record.model_dump(mode="json"),
                "locationId": context.location_id,
                "storeId": str(context.store_id),
            }
            for record in records
        )
        if not records:
            return

        stats = await self._upserter.save(facet, records, context)
        if stats is None:
            counters.failed += len(records)
            self.totals.warnings += 1
        else:
            counters.saved += len(records)

    def _facet_failed(self, facet: str, context: SaveContext, exc: BaseException) -> None:
        info = classify_error(exc)
        self.totals.fetch_errors[facet] += 1
        self.totals.warnings += 1
        logger.warning(
            "Failed to fetch %s for %s (%s): %s",
            facet, context.location_id, info.code, info.message,
        )
        self._emitter.warning(
            f"Failed to fetch {facet} for {context.location_name}: {format_error_for_user(exc)}",
            locationId=context.location_id,
            locationName=context.location_name,
            facet=facet,
            code=info.code,
            retryable=info.retryable,
        )
