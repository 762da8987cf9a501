"""Tests for the HTTP surface: health checks and the SSE sync routes."""

from __future__ import annotations

import asyncio
import json
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from listings.routers.sync import get_fetcher_factory
from listings.sync.run_store import credentials_key

from .fakes import FakeFetcher, make_location

TOKEN = "ya29.api-token"


def _parse_sse(text: str) -> list[dict]:
    events = []
    for frame in text.split("\n\n"):
        if frame.startswith("data: "):
            events.append(json.loads(frame[len("data: "):]))
    return events


@pytest.fixture
def api_fetcher():
    from listings.app import app

    fetcher = FakeFetcher(locations=[make_location("111", "1", "Acme Downtown")])
    app.dependency_overrides[get_fetcher_factory] = lambda: fetcher
    return fetcher


async def _settle():
    from listings.app import app

    await asyncio.gather(*list(app.state.sync_tasks))


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["service"] == "listings"
    assert body["version"]


@pytest.mark.asyncio
async def test_ready(client: AsyncClient):
    resp = await client.get("/ready")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ready"


@pytest.mark.asyncio
async def test_ready_reports_unreachable_database(client: AsyncClient):
    from listings.app import app
    from listings.database import get_db

    class _DeadSession:
        async def execute(self, *args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("unable to open database file"))

    async def dead_db():
        yield _DeadSession()

    app.dependency_overrides[get_db] = dead_db
    resp = await client.get("/ready")
    assert resp.status_code == 503
    assert resp.json()["status"] == "unavailable"


@pytest.mark.asyncio
async def test_start_requires_token(client: AsyncClient, api_fetcher):
    resp = await client.post("/sync/start")
    assert resp.status_code == 400
    assert api_fetcher.tokens == []


@pytest.mark.asyncio
async def test_start_streams_events(client: AsyncClient, api_fetcher):
    resp = await client.post("/sync/start", headers={"Authorization": f"Bearer {TOKEN}"})
    await _settle()

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"
    assert resp.headers["x-accel-buffering"] == "no"

    events = _parse_sse(resp.text)
    types = [e["type"] for e in events]
    assert types[-1] == "done"
    assert types.count("done") == 1
    assert "complete" in types
    assert api_fetcher.tokens == [TOKEN]


@pytest.mark.asyncio
async def test_token_in_body(client: AsyncClient, api_fetcher):
    resp = await client.post("/sync/start", json={"access_token": TOKEN, "max_concurrent_locations": 1})
    await _settle()
    assert resp.status_code == 200
    assert api_fetcher.tokens == [TOKEN]


@pytest.mark.asyncio
async def test_second_run_for_same_credentials_conflicts(client: AsyncClient, api_fetcher):
    from listings.app import app

    app.state.active_syncs.acquire(credentials_key(TOKEN))
    resp = await client.post("/sync/start", headers={"Authorization": f"Bearer {TOKEN}"})
    assert resp.status_code == 409
    assert api_fetcher.tokens == []


@pytest.mark.asyncio
async def test_run_status_after_sync(client: AsyncClient, api_fetcher):
    resp = await client.post("/sync/start", headers={"Authorization": f"Bearer {TOKEN}"})
    await _settle()
    run_id = _parse_sse(resp.text)[-1]["payload"]["runId"]

    status = await client.get(f"/sync/runs/{run_id}")
    assert status.status_code == 200
    assert status.json()["status"] == "COMPLETE"
    assert status.json()["run_id"] == run_id

    resume = await client.post(f"/sync/resume/{run_id}", headers={"Authorization": f"Bearer {TOKEN}"})
    assert resume.status_code == 409


@pytest.mark.asyncio
async def test_unknown_run(client: AsyncClient, api_fetcher):
    missing = uuid.uuid4()
    assert (await client.get(f"/sync/runs/{missing}")).status_code == 404
    resp = await client.post(f"/sync/resume/{missing}", headers={"Authorization": f"Bearer {TOKEN}"})
    assert resp.status_code == 404
