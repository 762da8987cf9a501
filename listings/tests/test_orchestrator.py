"""End-to-end tests for the sync orchestrator against the fake fetcher."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from listings.gbp.errors import GBPAPIError
from listings.models import Brand, PerformanceSample, Post, Review, SearchKeywordSample, Store
from listings.schemas.sync import SyncConfig
from listings.sync.orchestrator import SyncOrchestrator, SyncPhase
from listings.sync.run_store import SyncRunStore

from .fakes import FakeFetcher, make_location

NOW = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)
TOKEN = "ya29.test-token"


def _locations(n=3):
    return [make_location("111", str(i), f"Acme {name}") for i, name in zip(range(1, n + 1), ["North", "South", "East", "West"])]


def _orchestrator(session_factory, fetcher, fake_sleep, *, run_store=None, concurrency=2):
    config = SyncConfig(max_concurrent_locations=concurrency, heartbeat_interval_seconds=3600)
    return SyncOrchestrator(
        session_factory,
        fetcher,
        config=config,
        run_store=run_store,
        clock=lambda: NOW,
        sleep=fake_sleep,
    )


async def _run(orchestrator, **kwargs):
    summary = await orchestrator.run(TOKEN, **kwargs)
    events = [event async for event in orchestrator.emitter.events()]
    return summary, events


def _of_type(events, event_type):
    return [e for e in events if e.type == event_type]


async def _count(db: AsyncSession, model, *where) -> int:
    stmt = select(func.count()).select_from(model)
    for clause in where:
        stmt = stmt.where(clause)
    return (await db.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_all_facets_succeed(session_factory, fake_sleep, db: AsyncSession):
    fetcher = FakeFetcher(locations=_locations())
    orchestrator = _orchestrator(session_factory, fetcher, fake_sleep)

    summary, events = await _run(orchestrator)

    assert summary.status == "COMPLETE"
    assert summary.processed_locations == 3
    assert orchestrator.phase_history == [
        SyncPhase.INIT,
        SyncPhase.FETCH_ACCOUNT,
        SyncPhase.FETCH_LOCATIONS,
        SyncPhase.PROCESS_LOCATIONS,
        SyncPhase.FINALIZE,
        SyncPhase.COMPLETE,
    ]

    complete = _of_type(events, "complete")
    assert len(complete) == 1
    data = complete[0].payload["data"]
    assert len(data["posts"]) == 3
    assert len(data["reviews"]) == 6
    assert len(data["searchKeywords"]) == 6
    assert len(data["insights"]) == 3
    counters = complete[0].payload["summary"]["counters"]
    assert counters["reviews"] == {"fetched": 6, "saved": 6, "failed": 0}

    assert await _count(db, PerformanceSample) == 3
    assert await _count(db, Store) == 3
    assert fetcher.tokens == [TOKEN]
    assert fetcher.entered == fetcher.exited == 1


@pytest.mark.asyncio
async def test_event_stream_shape(session_factory, fake_sleep):
    orchestrator = _orchestrator(session_factory, FakeFetcher(locations=_locations(2)), fake_sleep)

    _, events = await _run(orchestrator)
    types = [e.type for e in events]

    assert types[-1] == "done"
    assert types.count("done") == 1
    assert types.index("account") < types.index("locations") < types.index("complete")
    assert types.index("reviews") < types.index("complete")
    assert "error" not in types
    assert orchestrator.emitter.close_count == 1

    account = _of_type(events, "account")[0].payload
    assert account["account"]["id"] == "user-1"
    assert account["brand"]["slug"] == "acme-coffee"


@pytest.mark.asyncio
async def test_review_scope_error_is_isolated(session_factory, fake_sleep, db: AsyncSession):
    locations = _locations()
    second = locations[1].id
    fetcher = FakeFetcher(locations=locations)
    fetcher.fail("reviews", second, GBPAPIError(403, "/reviews", "insufficient scopes"))
    orchestrator = _orchestrator(session_factory, fetcher, fake_sleep)

    summary, events = await _run(orchestrator)

    assert summary.status == "COMPLETE"
    warnings = _of_type(events, "warning")
    assert [(w.payload["locationId"], w.payload["facet"]) for w in warnings] == [(second, "reviews")]

    data = _of_type(events, "complete")[0].payload["data"]
    assert len(data["reviews"]) == 4
    assert {r["locationId"] for r in data["reviews"]} == {locations[0].id, locations[2].id}
    assert len([p for p in data["posts"] if p["locationId"] == second]) == 1
    assert len([k for k in data["searchKeywords"] if k["locationId"] == second]) == 2
    assert len([i for i in data["insights"] if i["locationId"] == second]) == 1

    reviews = _of_type(events, "reviews")[0].payload
    assert reviews["reviewErrors"] == 1
    assert reviews["reviewsApiAvailable"] is True
    assert await _count(db, Review) == 4


@pytest.mark.asyncio
async def test_reviews_unavailable_everywhere(session_factory, fake_sleep):
    fetcher = FakeFetcher(locations=_locations(2))
    fetcher.fail("reviews", "*", GBPAPIError(403, "/reviews", "insufficient scopes"))

    summary, events = await _run(_orchestrator(session_factory, fetcher, fake_sleep))

    assert summary.status == "COMPLETE"
    reviews = _of_type(events, "reviews")[0].payload
    assert reviews["reviewsApiAvailable"] is False
    assert reviews["message"]


@pytest.mark.asyncio
async def test_empty_insights_persist_zero_sample(session_factory, fake_sleep, db: AsyncSession):
    locations = _locations()
    quiet = locations[2]
    fetcher = FakeFetcher(locations=locations, insights={quiet.id: None})

    summary, _ = await _run(_orchestrator(session_factory, fetcher, fake_sleep))

    assert summary.status == "COMPLETE"
    store = (await db.execute(select(Store).where(Store.gbp_location_id == quiet.id))).scalar_one()
    samples = (
        await db.execute(select(PerformanceSample).where(PerformanceSample.store_id == store.id))
    ).scalars().all()
    assert len(samples) == 1
    sample = samples[0]
    assert (sample.views, sample.actions, sample.website_clicks, sample.call_clicks) == (0, 0, 0, 0)
    assert sample.conversion_rate == 0.0


@pytest.mark.asyncio
async def test_brand_resolution_failure(session_factory, fake_sleep):
    fetcher = FakeFetcher(locations=_locations())
    orchestrator = _orchestrator(session_factory, fetcher, fake_sleep)

    async def unreachable(account):
        raise OperationalError("SELECT", {}, Exception("unable to open database file"))

    orchestrator.resolver.resolve_brand = unreachable

    summary, events = await _run(orchestrator)

    assert summary.status == "FAILED"
    assert orchestrator.phase is SyncPhase.FAILED
    assert orchestrator.emitter.close_count == 1
    errors = _of_type(events, "error")
    assert len(errors) == 1
    assert errors[0].payload["phase"] == "FETCH_ACCOUNT"
    assert errors[0].payload["classification"]["code"] == "DATABASE_ERROR"
    assert [e.type for e in events][-1] == "done"
    assert len(_of_type(events, "done")) == 1
    assert fetcher.calls("list_accounts") == []


@pytest.mark.asyncio
async def test_account_listing_failure_is_fatal(session_factory, fake_sleep):
    fetcher = FakeFetcher(locations=_locations())
    fetcher.fail("list_accounts", "*", GBPAPIError(401, "/accounts", "expired token"))

    summary, events = await _run(_orchestrator(session_factory, fetcher, fake_sleep))

    assert summary.status == "FAILED"
    error = _of_type(events, "error")[0].payload
    assert error["phase"] == "FETCH_LOCATIONS"
    assert error["classification"]["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_one_account_failing_to_list_locations(session_factory, fake_sleep):
    locations = _locations(2) + [make_location("222", "9", "Other Co")]
    fetcher = FakeFetcher(locations=locations)
    fetcher.fail("list_locations", "accounts/222", GBPAPIError(500, "/locations", "oops"))

    summary, events = await _run(_orchestrator(session_factory, fetcher, fake_sleep))

    assert summary.status == "COMPLETE"
    assert summary.total_locations == 2
    assert _of_type(events, "warning")[0].payload["accountId"] == "accounts/222"


@pytest.mark.asyncio
async def test_no_locations_completes_with_warning(session_factory, fake_sleep):
    summary, events = await _run(_orchestrator(session_factory, FakeFetcher(locations=[]), fake_sleep))

    assert summary.status == "COMPLETE"
    assert summary.warnings == 1
    assert _of_type(events, "locations")[0].payload["count"] == 0


@pytest.mark.asyncio
async def test_cancellation_still_ends_stream(session_factory, fake_sleep):
    fetcher = FakeFetcher(locations=_locations(), delay=5)
    orchestrator = _orchestrator(session_factory, fetcher, fake_sleep)

    task = asyncio.create_task(orchestrator.run(TOKEN))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    events = [event async for event in orchestrator.emitter.events()]
    assert [e.type for e in events][-2:] == ["error", "done"]
    assert orchestrator.emitter.close_count == 1
    assert orchestrator.phase is SyncPhase.FAILED


@pytest.mark.asyncio
async def test_run_is_persisted(session_factory, fake_sleep, brand: Brand):
    store = SyncRunStore(session_factory)
    orchestrator = _orchestrator(
        session_factory, FakeFetcher(locations=_locations()), fake_sleep, run_store=store
    )

    summary, events = await _run(orchestrator)

    run = await store.get(summary.run_id)
    assert run.status == "COMPLETE"
    assert run.brand_id == brand.id
    assert run.total_locations == 3
    assert len(run.completed_location_ids) == 3
    assert run.counters["posts"]["saved"] == 3
    assert run.completed_at is not None
    assert _of_type(events, "done")[0].payload["runId"] == summary.run_id


@pytest.mark.asyncio
async def test_resume_skips_completed_locations(session_factory, fake_sleep, db: AsyncSession):
    locations = _locations()
    store = SyncRunStore(session_factory)
    first = _orchestrator(
        session_factory, FakeFetcher(locations=locations), fake_sleep, run_store=store, concurrency=1
    )
    resolve_store = first.resolver.resolve_store

    async def flaky_resolve(location_id, brand_id, location=None):
        if location_id == locations[2].id:
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        return await resolve_store(location_id, brand_id, location)

    first.resolver.resolve_store = flaky_resolve
    failed, _ = await _run(first)

    assert failed.status == "FAILED"
    run = await store.get(failed.run_id)
    assert run.status == "FAILED"
    assert run.completed_location_ids == [locations[0].id, locations[1].id]

    fetcher = FakeFetcher(locations=locations)
    second = _orchestrator(session_factory, fetcher, fake_sleep, run_store=store, concurrency=1)
    resumed, _ = await _run(second, resume_run_id=failed.run_id)

    assert resumed.status == "COMPLETE"
    assert resumed.run_id == failed.run_id
    assert resumed.skipped_locations == 2
    assert fetcher.calls("posts") == [locations[2].id]
    run = await store.get(failed.run_id)
    assert run.status == "COMPLETE"
    assert sorted(run.completed_location_ids) == sorted(loc.id for loc in locations)
    assert await _count(db, Store) == 3


@pytest.mark.asyncio
async def test_resume_with_other_credentials_fails(session_factory, fake_sleep):
    store = SyncRunStore(session_factory)
    run = await store.create("some-other-key")
    orchestrator = _orchestrator(
        session_factory, FakeFetcher(locations=_locations()), fake_sleep, run_store=store
    )

    summary, events = await _run(orchestrator, resume_run_id=run.id)

    assert summary.status == "FAILED"
    assert len(_of_type(events, "error")) == 1
    assert orchestrator.emitter.close_count == 1


class _CompletionWriteFails(SyncRunStore):
    async def update(self, run_id, **fields):
        if fields.get("status") == "COMPLETE":
            raise OperationalError("UPDATE", {}, Exception("database is locked"))
        return await super().update(run_id, **fields)


@pytest.mark.asyncio
async def test_lost_completion_write_still_completes(session_factory, fake_sleep):
    store = _CompletionWriteFails(session_factory)
    orchestrator = _orchestrator(
        session_factory, FakeFetcher(locations=_locations(1)), fake_sleep, run_store=store
    )

    summary, events = await _run(orchestrator)
    types = [e.type for e in events]

    assert summary.status == "COMPLETE"
    assert orchestrator.phase is SyncPhase.COMPLETE
    assert types[-2:] == ["complete", "done"]
    assert "error" not in types
    assert types.count("done") == 1
    run = await store.get(summary.run_id)
    assert run.status == "FINALIZE"


@pytest.mark.asyncio
async def test_rerun_with_unchanged_data_inserts_nothing(session_factory, fake_sleep, db: AsyncSession):
    locations = _locations()

    first, _ = await _run(_orchestrator(session_factory, FakeFetcher(locations=locations), fake_sleep))
    counts = [await _count(db, model) for model in (Store, Post, Review, PerformanceSample, SearchKeywordSample)]

    second, events = await _run(_orchestrator(session_factory, FakeFetcher(locations=locations), fake_sleep))

    assert first.status == second.status == "COMPLETE"
    assert [
        await _count(db, model) for model in (Store, Post, Review, PerformanceSample, SearchKeywordSample)
    ] == counts
    saves = _of_type(events, "save-complete")
    assert saves
    assert all(e.payload["stats"]["inserted"] == 0 for e in saves)
