from __future__ import annotations
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.test/.well-known/jwks.json")
os.environ.setdefault("QR_SIGNING_SECRET", "test-signing-secret")
os.environ.setdefault("RL_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from nooks.core.phase import MeetupStatus
from nooks.models import Base, Meetup, MemberStatus, Membership

START = datetime(2026, 10, 17, 18, 0, tzinfo=timezone.utc)


class RecordingSink:
    def __init__(self):
        self.intents = []

    async def emit(self, intents):
        self.intents.extend(intents)


class FailingSink:
    async def emit(self, intents):
        raise RuntimeError("notification store down")


@pytest.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
def sink():
    return RecordingSink()


async def make_meetup(db, *, host_id, start=START, duration=60, status=MeetupStatus.CONFIRMED) -> Meetup:
    m = Meetup(title="Sunday sketching", starts_at=start, duration_minutes=duration, status=status, host_id=host_id)
    db.add(m)
    await db.commit()
    await db.refresh(m)
    return m


async def add_member(db, meetup, user_id, *, joined_at=None, commitment=None, status=MemberStatus.APPROVED) -> Membership:
    mem = Membership(
        meetup_id=meetup.id,
        user_id=user_id,
        status=status,
        commitment_status=commitment,
        created_at=joined_at or START - timedelta(days=2),
    )
    db.add(mem)
    await db.commit()
    await db.refresh(mem)
    return mem


@pytest.fixture
def host_id():
    return uuid.uuid4()


@pytest.fixture
async def meetup(db, host_id):
    m = await make_meetup(db, host_id=host_id)
    await add_member(db, m, host_id, joined_at=START - timedelta(days=3), commitment="confirmed")
    return m


class Caller:
    """Mutable stand-in for the auth claims and the wall clock used by the app."""

    def __init__(self):
        self.claims = {"sub": str(uuid.uuid4()), "role": "participant"}
        self.now = START

    def act_as(self, user_id, role="participant"):
        self.claims = {"sub": str(user_id), "role": role}


@pytest.fixture
def caller():
    return Caller()


@pytest.fixture
async def client(session_maker, caller, sink, monkeypatch):
    from nooks import deps
    from nooks.main import app
    from nooks.routers import attendance as attendance_router

    published = []

    async def fake_publish(evt):
        published.append(evt)

    monkeypatch.setattr(attendance_router, "publish_attendance", fake_publish)

    async def override_db():
        async with session_maker() as s:
            yield s

    app.dependency_overrides[deps.get_db] = override_db
    app.dependency_overrides[deps.get_claims] = lambda: caller.claims
    app.dependency_overrides[deps.get_now] = lambda: caller.now
    app.dependency_overrides[deps.get_notifier] = lambda: sink

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        c.published = published
        yield c
    app.dependency_overrides.clear()
