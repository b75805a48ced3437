"""
Centralized Test Configuration.
"""

from datetime import date

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, Pool, StaticPool

from movematch.app.main import app
from movematch.app.db.session import get_db, Base
from movematch.app.core.dependencies import get_distance_estimator
from movematch.app.core.redis_client import get_redis
import movematch.app.core.redis_client as redis_client_module
from movematch.app.models.client_request import ClientRequest
from movematch.app.models.match import Match
from movematch.app.models.match_enums import DistanceMethod, MatchType
from movematch.app.models.move import Move
from movematch.app.services.cache import MemoryDistanceCache
from movematch.app.services.distance import DistanceEstimator
from movematch.app.services.geo import Coordinates, point_distance
from movematch.app.services.routing_client import RoutingClient, RoutingServiceError

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
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
        self._closed = False
        self.fail = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FakeRoutingClient(RoutingClient):
    """
    In-process routing collaborator.

    Geocodes from a fixed table and routes at ``detour_factor`` times the
    great-circle distance. ``failing`` makes every call raise.
    """

    def __init__(self, locations=None, detour_factor=1.2, failing=False):
        self.locations = locations or {}
        self.detour_factor = detour_factor
        self.failing = failing
        self.geocode_calls = 0
        self.route_calls = 0

    async def geocode(self, address):
        self.geocode_calls += 1
        if self.failing:
            raise RoutingServiceError("geocoder down")
        try:
            return Coordinates(*self.locations[address.postal_code])
        except KeyError:
            raise RoutingServiceError(f"unknown address {address.as_query()}")

    async def route(self, origin, destination):
        self.route_calls += 1
        if self.failing:
            raise RoutingServiceError("router down")
        return point_distance(origin, destination) * self.detour_factor * 1000


# Redis Fixture
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """

    # Patch the global redis client used by the health check
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    async def override_get_distance_estimator():
        # Degraded mode only: no network in tests
        return DistanceEstimator(routing_client=None, cache=MemoryDistanceCache(ttl_seconds=60))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_distance_estimator] = override_get_distance_estimator
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    redis_client_session.fail = False
    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def estimator():
    """Estimator without a routing service (geometric fallback only)."""
    return DistanceEstimator(routing_client=None, cache=MemoryDistanceCache(ttl_seconds=60))


def build_request(**overrides) -> ClientRequest:
    """Unsaved Paris -> Lyon request, fixed date."""
    values = dict(
        name="Client",
        departure_postal_code="75001",
        departure_city="Paris",
        departure_country="France",
        arrival_postal_code="69001",
        arrival_city="Lyon",
        arrival_country="France",
        desired_date=date(2025, 6, 10),
        flexible_dates=False,
        estimated_volume=10.0,
    )
    values.update(overrides)
    return ClientRequest(**values)


def build_move(**overrides) -> Move:
    """Unsaved Paris -> Lyon move with 20 m3 free."""
    values = dict(
        company_name="Transports Martin",
        departure_postal_code="75002",
        departure_city="Paris",
        arrival_postal_code="69002",
        arrival_city="Lyon",
        departure_date=date(2025, 6, 11),
        max_volume=30.0,
        used_volume=10.0,
        number_of_clients=0,
    )
    values.update(overrides)
    return Move(**values)


@pytest.fixture
def make_request(db_session):
    async def _make(**overrides) -> ClientRequest:
        request = build_request(**overrides)
        db_session.add(request)
        await db_session.commit()
        await db_session.refresh(request)
        return request
    return _make


@pytest.fixture
def make_move(db_session):
    async def _make(**overrides) -> Move:
        move = build_move(**overrides)
        db_session.add(move)
        await db_session.commit()
        await db_session.refresh(move)
        return move
    return _make


@pytest.fixture
def request_builder():
    return build_request


@pytest.fixture
def move_builder():
    return build_move


@pytest.fixture
def routing_client_factory():
    return FakeRoutingClient


@pytest.fixture
def session_factory():
    """Independent sessions, e.g. one per engine component under test."""
    return TestingSessionLocal


@pytest.fixture
async def file_session_factory(tmp_path):
    """
    Sessions on a file database with one connection each, for transactions
    that must really run side by side. Transactions begin IMMEDIATE so
    concurrent writers queue on the database lock instead of failing.
    """
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'movematch.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )

    @event.listens_for(file_engine.sync_engine, "connect")
    def disable_driver_transactions(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(file_engine.sync_engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    await file_engine.dispose()


@pytest.fixture
def make_match(db_session):
    async def _make(request, move, **overrides) -> Match:
        values = dict(
            client_request_id=request.id,
            move_id=move.id,
            distance_km=5,
            date_diff_days=1,
            combined_volume=(move.used_volume or 0.0) + (request.estimated_volume or 0.0),
            volume_ok=True,
            match_type=MatchType.PERFECT,
            is_valid=True,
            distance_method=DistanceMethod.GEOMETRIC,
        )
        values.update(overrides)
        match = Match(**values)
        db_session.add(match)
        await db_session.commit()
        await db_session.refresh(match)
        return match
    return _make
