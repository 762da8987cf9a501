"""Idempotent facet persistence: one upsert per record, keyed by natural key.

Each ``save`` call writes one batch in its own session and commit. Transient
failures are retried by a bounded loop driven by a RetryPolicy; a batch that
still fails is reported on the event stream and abandoned without raising.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.performance import COUNTER_FIELDS, PerformanceSample
from ..models.post import Post
from ..models.review import Review
from ..models.search_keyword import SearchKeywordSample
from ..schemas.gbp import GBPInsight, GBPLocation, GBPPost, GBPReview, GBPSearchKeyword
from ..schemas.sync import BatchWriteStats
from .emitter import ProgressEmitter
from .errors import RetryPolicy, classify_error, format_error_for_user
from .resolver import EntityResolver

logger = logging.getLogger(__name__)

FACET_POSTS = "posts"
FACET_INSIGHTS = "insights"
FACET_KEYWORDS = "keywords"
FACET_REVIEWS = "reviews"
FACETS = (FACET_POSTS, FACET_INSIGHTS, FACET_KEYWORDS, FACET_REVIEWS)


@dataclass
class SaveContext:
    """Ownership for a batch. ``store_id`` is resolved on demand when absent."""

    brand_id: uuid.UUID
    location_id: str
    account_id: str | None = None
    store_id: uuid.UUID | None = None
    location: GBPLocation | None = None

    @property
    def location_name(self) -> str:
        if self.location and self.location.name:
            return self.location.name
        return self.location_id


def _rate(numerator: int, denominator: int) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 2)


def review_values(record: GBPReview) -> dict[str, Any]:
    return {
        "gbp_review_id": record.review_id,
        "reviewer_name": record.reviewer_name,
        "reviewer_photo_url": record.reviewer_photo_url,
        "reviewer_is_anonymous": record.reviewer_is_anonymous,
        "star_rating": record.star_rating or 0,
        "comment": record.comment,
        "gbp_create_time": record.create_time,
        "gbp_update_time": record.update_time,
        "has_response": record.has_response,
        "response_comment": record.reply_comment,
        "response_time": record.reply_time,
    }


def post_values(record: GBPPost) -> dict[str, Any]:
    return {
        "gbp_post_id": record.post_id,
        "summary": record.summary,
        "call_to_action": record.call_to_action,
        "media": record.media or None,
        "language_code": record.language_code or "en",
        "state": record.state or "LIVE",
        "topic_type": record.topic_type or "STANDARD",
        "event": record.event,
        "offer": record.offer,
        "search_url": record.search_url,
        "gbp_create_time": record.create_time,
        "gbp_update_time": record.update_time,
    }


def insight_values(record: GBPInsight) -> dict[str, Any]:
    """Counters default to 0; actions and rates are derived here, once."""
    counters = {name: int(getattr(record, name) or 0) for name in COUNTER_FIELDS}
    clicks = counters["call_clicks"] + counters["website_clicks"]
    if counters["actions"] == 0 and clicks > 0:
        counters["actions"] = clicks
    views = counters["views"] or (
        counters["desktop_search_impressions"] + counters["mobile_maps_impressions"]
    )
    return {
        "period_start": record.period_start,
        "period_end": record.period_end,
        **counters,
        "conversion_rate": _rate(counters["actions"], views),
        "click_through_rate": _rate(clicks, views),
        "daily_metrics": record.daily_metrics,
    }


def keyword_values(record: GBPSearchKeyword) -> dict[str, Any]:
    impressions = record.impressions or 0
    clicks = record.clicks or 0
    ctr = record.ctr
    if ctr is None:
        ctr = clicks / impressions if impressions else 0.0
    return {
        "keyword": record.keyword,
        "period_year": record.year,
        "period_month": record.month,
        "impressions": impressions,
        "clicks": clicks,
        "ctr": float(ctr),
        "position": float(record.position or 0),
    }


@dataclass(frozen=True)
class FacetSpec:
    model: type
    key_fields: tuple[str, ...]
    values: Callable[[Any], dict[str, Any]]


FACET_SPECS: dict[str, FacetSpec] = {
    FACET_REVIEWS: FacetSpec(Review, ("gbp_review_id",), review_values),
    FACET_POSTS: FacetSpec(Post, ("gbp_post_id",), post_values),
    FACET_INSIGHTS: FacetSpec(
        PerformanceSample, ("store_id", "period_start", "period_end"), insight_values
    ),
    FACET_KEYWORDS: FacetSpec(
        SearchKeywordSample, ("store_id", "keyword", "period_year", "period_month"), keyword_values
    ),
}


def _comparable(value: Any) -> Any:
    # SQLite hands back naive datetimes; compare everything in naive UTC.
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


async def write_batch(
    db: AsyncSession,
    spec: FacetSpec,
    records: Sequence[Any],
    context: SaveContext,
) -> BatchWriteStats:
    """Upsert ``records`` by natural key and commit. Last record wins on duplicate keys."""
    rows: dict[tuple, dict[str, Any]] = {}
    for record in records:
        values = spec.values(record)
        values.update(
            store_id=context.store_id,
            brand_id=context.brand_id,
            account_id=context.account_id,
            source="gbp",
            status="active",
        )
        rows[tuple(values[f] for f in spec.key_fields)] = values

    model = spec.model
    lookup_field = next(f for f in spec.key_fields if f != "store_id")
    lookup_index = spec.key_fields.index(lookup_field)
    lookup_values = sorted({key[lookup_index] for key in rows})
    stmt = select(model).where(getattr(model, lookup_field).in_(lookup_values))
    if "store_id" in spec.key_fields:
        stmt = stmt.where(model.store_id == context.store_id)
    existing = {
        tuple(getattr(row, f) for f in spec.key_fields): row
        for row in (await db.execute(stmt)).scalars().all()
    }

    stats = BatchWriteStats(upserted=len(rows))
    for key, values in rows.items():
        row = existing.get(key)
        if row is None:
            db.add(model(**values))
            stats.inserted += 1
            continue
        changed = False
        for name, value in values.items():
            if _comparable(getattr(row, name)) != _comparable(value):
                setattr(row, name, value)
                changed = True
        if changed:
            stats.modified += 1

    await db.commit()
    return stats


class FacetUpserter:
    """Persists facet batches with bounded retry and progress events."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        emitter: ProgressEmitter,
        resolver: EntityResolver,
        *,
        policy: RetryPolicy | None = None,
        timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self._emitter = emitter
        self._resolver = resolver
        self.policy = policy or RetryPolicy()
        self._timeout = timeout
        self._sleep = sleep

    async def _write(self, facet: str, records: Sequence[Any], context: SaveContext) -> BatchWriteStats:
        async with self._session_factory() as db:
            return await write_batch(db, FACET_SPECS[facet], records, context)

    async def save(
        self,
        facet: str,
        records: Sequence[Any],
        context: SaveContext,
    ) -> BatchWriteStats | None:
        """Upsert one batch. Returns stats, or ``None`` if the batch was abandoned."""
        if facet not in FACET_SPECS:
            raise ValueError(f"Unknown facet {facet!r}")
        if not records:
            return BatchWriteStats()
        if context.store_id is None:
            store = await self._resolver.resolve_store(
                context.location_id, context.brand_id, context.location
            )
            context.store_id = store.id

        max_retries = self.policy.max_retries
        retries = 0
        while True:
            suffix = f" (Retry {retries}/{max_retries})" if retries else ""
            self._emitter.emit("save-progress", {
                "saveType": facet,
                "locationId": context.location_id,
                "count": len(records),
                "message": f"Saving {len(records)} {facet} for {context.location_name}...{suffix}",
                "retryCount": retries,
            })
            try:
                stats = await asyncio.wait_for(
                    self._write(facet, records, context), timeout=self._timeout
                )
            except Exception as exc:
                info = classify_error(exc)
                # A concurrent insert of the same key is settled by re-running the upsert.
                duplicate_race = info.code == "DUPLICATE_KEY" and retries == 0
                if self.policy.should_retry(info, retries) or duplicate_race:
                    retries += 1
                    delay = self.policy.delay_for(retries)
                    logger.warning(
                        "Saving %s for %s failed (%s); retry %d/%d in %.1fs",
                        facet, context.location_id, info.code, retries, max_retries, delay,
                    )
                    await self._sleep(delay)
                    continue
                logger.error(
                    "Abandoning %s batch for %s after %d retries: %s",
                    facet, context.location_id, retries, info.message,
                )
                self._emitter.emit("save-error", {
                    "saveType": facet,
                    "locationId": context.location_id,
                    "error": format_error_for_user(exc),
                    "code": info.code,
                    "retryCount": retries,
                    "maxRetries": max_retries,
                })
                return None

            after = f" after {retries} retries" if retries else ""
            self._emitter.emit("save-complete", {
                "saveType": facet,
                "locationId": context.location_id,
                "stats": stats.model_dump(),
                "message": f"Saved {facet} for {context.location_name}{after}",
            })
            return stats
