"""
Centralized Test Configuration.
"""

import pytest
from datetime import timedelta
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.redis_client import get_redis
from backend.app.core.reliability import notification_circuit_breaker
from backend.app.core.timeutils import utcnow
import backend.app.core.redis_client as redis_client_module
from backend.app.models.trip import Trip
from backend.app.models.load import Load
from backend.app.models.trip_enums import TripStatus

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# New York -> Boston, roughly 306 km
NYC = (40.7128, -74.0060)
BOSTON = (42.3601, -71.0589)


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.published = []
        self._closed = False
        self.fail_publish = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def publish(self, channel, message):
        if self.fail_publish:
            from redis.exceptions import ConnectionError as RedisConnectionError
            raise RedisConnectionError("Connection refused")
        self.published.append((channel, message))
        return 1

    async def flushdb(self):
        if not self._closed:
            self.store = {}
        self.published = []
        self.fail_publish = False

    async def aclose(self):
        self._closed = True
        self.store = {}


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    notification_circuit_breaker.reset_state()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def mock_redis(redis_client_session):
    return redis_client_session


@pytest.fixture
def make_trip(db_session):
    """Factory for committed trips (NYC -> Boston by default)."""
    async def _make_trip(
        status: TripStatus = TripStatus.IN_TRANSIT,
        estimated_arrival=None,
        origin=NYC,
        destination=BOSTON,
        **fields
    ) -> Trip:
        trip = Trip(
            origin_lat=origin[0],
            origin_lng=origin[1],
            destination_lat=destination[0],
            destination_lng=destination[1],
            departure_date=utcnow(),
            estimated_arrival=estimated_arrival or utcnow() + timedelta(hours=6),
            status=status,
            **fields
        )
        db_session.add(trip)
        await db_session.commit()
        await db_session.refresh(trip)
        return trip
    return _make_trip


@pytest.fixture
def make_load(db_session):
    """Factory for committed loads on a trip."""
    async def _make_load(trip: Trip, shipper_id: int = 501, **fields) -> Load:
        load = Load(trip_id=trip.id, shipper_id=shipper_id, **fields)
        db_session.add(load)
        await db_session.commit()
        await db_session.refresh(load)
        return load
    return _make_load
