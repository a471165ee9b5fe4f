# tests/conftest.py

import os

# settings are read at import time, so configure before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.test/.well-known/jwks.json")
os.environ["RL_ENABLED"] = "false"
os.environ["USE_NATS_EVENTS"] = "false"

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from campus_checkin.main import app
from campus_checkin.deps import get_db, get_claims
from campus_checkin.models import Base

from factories import STUDENT_ID, seed_event


# --- Database ---
@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def scenario_event(db):
    await seed_event(db)


@pytest_asyncio.fixture
async def live_event(db):
    """Same shape as scenario_event but running now, for HTTP tests on the wall clock."""
    now = datetime.now(timezone.utc)
    await seed_event(db, start=now - timedelta(hours=1), end=now + timedelta(days=1))


# --- HTTP client ---
@pytest.fixture
def caller():
    """Claims returned by the get_claims override; tests edit sub/role in place."""
    return {"sub": str(STUDENT_ID), "role": "student", "email": "asha@campus.test"}


@pytest_asyncio.fixture
async def client(session_maker, caller):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_claims] = lambda: caller

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
