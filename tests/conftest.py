"""
Test configuration and fixtures.

Provides:
- A file-backed SQLite database per test (aiosqlite), schema created from the models
- A seeded tenant with one location open Mon-Fri 09:00-12:00 in Buenos Aires (UTC-3)
- A fake messenger that records template sends
- HTTPX AsyncClient over ASGITransport with dependency overrides
"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///./agenda-test.db")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ENV", "test")

import pytest
from httpx import ASGITransport, AsyncClient

from agenda.api.deps import get_clock, get_session
from agenda.core.db import init_db, make_engine, make_session_maker
from agenda.main import app, configure_state
from agenda.models import Location, Tenant

from factories import NOW, TZ_NAME, WEEKDAY_HOURS, FakeMessenger, Seed


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
async def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'agenda.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def seed(session_maker) -> Seed:
    async with session_maker() as session:
        tenant = Tenant(name="Clinica Norte")
        session.add(tenant)
        await session.flush()
        location = Location(
            tenant_id=tenant.id,
            name="Centro",
            timezone=TZ_NAME,
            business_hours=WEEKDAY_HOURS,
            slot_duration_minutes=30,
            buffer_minutes=0,
        )
        session.add(location)
        await session.commit()
        return Seed(tenant_id=tenant.id, location_id=location.id)


@pytest.fixture
async def client(session_maker, seed, messenger) -> AsyncClient:
    configure_state(app, session_maker, messenger)

    async def override_get_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_clock] = lambda: (lambda: NOW)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Tenant-Id": str(seed.tenant_id)},
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
