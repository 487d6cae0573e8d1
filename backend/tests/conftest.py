"""
Test Configuration — Fixtures for async DB, test client, and seeded businesses.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state while sharing the same session-level schema.
"""

import uuid
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_current_user, get_db, get_event_buffer, get_rate_limiter
from api.main import app
from db.models import Business, Pattern, Recommendation, VisitorSession, utcnow
from db.session import Base
from tracking.buffer import EventBuffer
from tracking.rate_limiter import RateLimiter

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OWNER_ID = "auth0|owner-user"
OTHER_OWNER_ID = "auth0|other-user"
SITE_ID = "site_test_001"


@pytest.fixture(scope="session")
async def test_engine():
    """Create a test database engine and build all tables once."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Use SAVEPOINT so nested commits inside app code don't end our transaction
        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(db_session, transaction):
            if transaction.nested and not transaction._parent.nested:
                session.sync_session.begin_nested()

        await conn.begin_nested()  # SAVEPOINT

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def mock_user():
    """Mock authenticated store owner."""
    return {"sub": OWNER_ID, "email": "owner@example.com"}


class RecordingWriter:
    """Event writer that keeps every batch it was asked to persist."""

    def __init__(self, fail_times: int = 0):
        self.batches: list[list[dict]] = []
        self.calls = 0
        self.fail_times = fail_times

    async def __call__(self, rows: list[dict]) -> int:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise RuntimeError("database unavailable")
        self.batches.append(list(rows))
        return len(rows)

    @property
    def written(self) -> list[dict]:
        return [row for batch in self.batches for row in batch]


@pytest.fixture
def writer_factory():
    return RecordingWriter


@pytest.fixture
def recording_writer():
    return RecordingWriter()


@pytest.fixture
async def event_buffer(recording_writer):
    buffer = EventBuffer(recording_writer, max_size=1000, flush_interval=60.0, retry_delay=60.0)
    yield buffer
    buffer.clear()


@pytest.fixture
def rate_limiter():
    return RateLimiter(limit=1000, window_seconds=60)


@pytest.fixture
async def client(test_db, mock_user, event_buffer, rate_limiter):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_event_buffer] = lambda: event_buffer
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def make_business(owner_id: str = OWNER_ID, site_id: str | None = None, **overrides) -> Business:
    values = {
        "owner_id": owner_id,
        "name": "Test Outfitters",
        "industry": "fashion",
        "revenue_range": "$500k-1M",
        "product_types": ["apparel", "shoes"],
        "platform": "shopify",
        "site_id": site_id or f"site_{uuid.uuid4().hex[:12]}",
    }
    values.update(overrides)
    return Business(**values)


def make_session(site_id: str, journey: list[str], converted: bool = False, **overrides) -> VisitorSession:
    values = {
        "site_id": site_id,
        "session_id": f"sess_{uuid.uuid4().hex}",
        "entry_page": journey[0] if journey else "/",
        "exit_page": journey[-1] if journey else None,
        "duration": 60,
        "page_count": len(journey),
        "bounced": len(journey) <= 1,
        "converted": converted,
        "journey_path": journey,
    }
    values.update(overrides)
    return VisitorSession(**values)


@pytest.fixture(name="make_business")
def make_business_fixture():
    return make_business


@pytest.fixture(name="make_session")
def make_session_fixture():
    return make_session


@pytest.fixture
async def seeded_db(test_db):
    """One business owned by the mock user, one owned by someone else, with a pattern and two recommendations."""
    business = make_business(site_id=SITE_ID)
    other = make_business(owner_id=OTHER_OWNER_ID, name="Someone Else Co")
    test_db.add_all([business, other])
    await test_db.flush()

    pattern = Pattern(
        site_id=SITE_ID,
        pattern_type="ABANDONMENT",
        description="43% of users abandon at /cart (210 sessions)",
        severity=0.8,
        session_count=500,
        confidence_score=1.0,
        pattern_metadata={"stage": "/cart", "drop_off_rate": 43.0, "affected_sessions": 210, "sample_size": 500},
        dedup_key=f"ABANDONMENT:/cart:{utcnow().date().isoformat()}",
    )
    test_db.add(pattern)
    await test_db.flush()

    now = utcnow()
    high = Recommendation(
        business_id=business.business_id,
        site_id=SITE_ID,
        pattern_id=pattern.pattern_id,
        pattern_type="ABANDONMENT",
        dedup_key="ABANDONMENT:/cart",
        title="Optimize shopping cart experience",
        problem_statement="43% of customers abandon their cart",
        action_steps=["Show free shipping threshold progress"],
        expected_impact="Reduce cart abandonment by 10-18%",
        impact_level="HIGH",
        confidence_level="HIGH",
        impact_score=2.4,
        status="NEW",
        created_at=now - timedelta(hours=2),
    )
    low = Recommendation(
        business_id=business.business_id,
        site_id=SITE_ID,
        pattern_type="HESITATION",
        dedup_key="HESITATION:email",
        title="Optimize email input experience",
        problem_statement="25% of users re-enter email address",
        action_steps=["Add inline validation with clear error messages"],
        expected_impact="Reduce email field errors by 15-25%",
        impact_level="LOW",
        confidence_level="MEDIUM",
        impact_score=0.7,
        status="NEW",
        created_at=now,
    )
    test_db.add_all([high, low])
    await test_db.flush()
    await test_db.commit()

    return {
        "business": business,
        "other_business": other,
        "pattern": pattern,
        "high": high,
        "low": low,
    }
