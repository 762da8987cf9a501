"""Async test fixtures for listings tests using a file-backed SQLite database."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from listings.database import get_db, get_session_factory
from listings.models import Base, Brand
from listings.sync.emitter import ProgressEmitter

from .fakes import FakeFetcher, make_location


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture
async def engine(tmp_path):
    # A real file so concurrent sessions each get their own connection.
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'listings.db'}", echo=False, connect_args={"timeout": 30}
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def brand(db: AsyncSession):
    b = Brand(
        name="Acme Coffee",
        slug="acme-coffee",
        email="owner@acme.test",
        gbp_account_id="user-1",
        gbp_connected=True,
    )
    db.add(b)
    await db.commit()
    await db.refresh(b)
    return b


@pytest.fixture
def emitter():
    return ProgressEmitter(heartbeat_interval=3600)


@pytest.fixture
def fetcher():
    return FakeFetcher(
        locations=[
            make_location("111", "1", "Acme Downtown"),
            make_location("111", "2", "Acme Uptown"),
        ]
    )


@pytest.fixture
def sleeps():
    """Records requested backoff delays instead of sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest_asyncio.fixture
async def client(engine, session_factory):
    """HTTPX async test client against the sync app."""
    from listings.app import app
    from listings.cache import TTLCache
    from listings.sync.orchestrator import ActiveSyncs

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.summary_cache = TTLCache()
    app.state.active_syncs = ActiveSyncs()
    app.state.sync_tasks = set()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
