"""
Centralized Test Configuration.

Every test gets its own in-memory SQLite database. API tests talk to the app
through httpx's ASGI transport with the database and geocoder overridden.
"""

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.dependencies import get_geocoder
from backend.app.core.jwt import create_operator_token
from backend.app.core.reliability import CircuitBreaker
from backend.app.models.parcel_enums import ParcelStatus
from backend.app.services.delivery_coordinator import DeliveryCoordinator
from backend.app.services.geocoding import GeocodingClient
from backend.app.services.parcel_registry import ParcelRegistry
from backend.app.services.transport_coordinator import TransportCoordinator

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

HANGZHOU = {"status": "1", "info": "OK", "geocodes": [{"location": "120.155070,30.274085"}]}

SAMPLE_PARCEL = {
    "sender_name": "Li Lei",
    "sender_phone": "13800000001",
    "sender_address": "1 Wensan Road, Hangzhou",
    "receiver_name": "Han Meimei",
    "receiver_phone": "13900000002",
    "receiver_address": "8 Keyuan Road, Shenzhen",
    "receiver_province": "Guangdong",
    "receiver_city": "Shenzhen",
    "receiver_district": "Nanshan",
    "weight_kg": 1.5,
    "length_cm": 30,
    "width_cm": 20,
    "height_cm": 10,
}


def amap_transport(body=HANGZHOU, status_code=200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body)
    return httpx.MockTransport(handler)


@pytest.fixture
async def engine():
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable foreign key constraints for SQLite."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def geocoder():
    return GeocodingClient(
        api_key="test-key",
        base_url="https://geo.test/v3/geocode/geo",
        breaker=CircuitBreaker(failure_threshold=3, reset_timeout=30),
        transport=amap_transport(),
    )


@pytest.fixture
def registry(db_session, geocoder):
    return ParcelRegistry(db_session, geocoder=geocoder)


@pytest.fixture
def transport(db_session, registry):
    return TransportCoordinator(db_session, registry)


@pytest.fixture
def delivery(db_session, registry):
    return DeliveryCoordinator(db_session, registry)


@pytest.fixture
def make_parcel(registry):
    """Create a parcel and move it straight to `status`."""
    async def factory(status: ParcelStatus = ParcelStatus.COLLECTED, **overrides):
        fields = {**SAMPLE_PARCEL, **overrides}
        parcel = await registry.create_parcel(
            fields, operator="sorter-01", node_name="HZ-Collect", node_address="1 Wensan Road, Hangzhou"
        )
        if status != ParcelStatus.COLLECTED:
            await registry.update_status(parcel.parcel_id, status)
            await registry.db.flush()
        return parcel
    return factory


@pytest.fixture
async def client(session_factory, geocoder):
    """Async client for testing."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides = {}


@pytest.fixture
def auth_headers():
    def build(operator_id: str, role: str) -> dict:
        return {"Authorization": f"Bearer {create_operator_token(operator_id, role)}"}
    return build


@pytest.fixture
def parcel_fields():
    return dict(SAMPLE_PARCEL)
