"""Shared test fixtures: in-memory SQLite DB, async session, test client, fake GeoIP."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app import models  # noqa: F401
from app.dependencies import get_db, get_geolocator
from app.main import app
from app.models.base import Base
from app.services.client_info import GeoLocation, GeoLocator

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)


# Enable foreign key enforcement in SQLite (off by default).
@event.listens_for(test_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

# Documentation-range addresses mapped to countries.
TEST_GEO = {
    "203.0.113.10": GeoLocation(country="US", region="CA", city="San Francisco"),
    "203.0.113.11": GeoLocation(country="US", region="NY", city="New York"),
    "198.51.100.20": GeoLocation(country="FR", region="IDF", city="Paris"),
    "192.0.2.30": GeoLocation(country="DE", region="BE", city="Berlin"),
}

DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


class FakeGeoLocator(GeoLocator):
    """GeoLocator backed by a dict instead of a MaxMind database."""

    def __init__(self, table: dict[str, GeoLocation]):
        super().__init__(None)
        self._table = table

    def lookup(self, ip_address):
        return self._table.get(ip_address)


@pytest.fixture(autouse=True)
def daytime(monkeypatch):
    """Pin the server-local hour outside the 1-5am window unless a test overrides it."""
    from app.services import risk_service

    monkeypatch.setattr(risk_service, "server_local_hour", lambda now: 14)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """Yield a test DB session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def geolocator() -> FakeGeoLocator:
    return FakeGeoLocator(TEST_GEO)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, geolocator: FakeGeoLocator) -> AsyncClient:
    """Yield an httpx AsyncClient wired to the test DB and fake GeoIP."""

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_geolocator] = lambda: geolocator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def login(client: AsyncClient):
    """Register (if needed) and log in; returns the login response body."""

    async def _login(
        email: str,
        *,
        ip: str = "203.0.113.10",
        user_agent: str = DESKTOP_UA,
        password: str = "SecurePass123!",
    ) -> dict:
        await client.post("/auth/register", json={"email": email, "password": password})
        response = await client.post(
            "/auth/login",
            json={"email": email, "password": password},
            headers={"X-Forwarded-For": ip, "User-Agent": user_agent},
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _login


@pytest.fixture
def desktop_ua() -> str:
    return DESKTOP_UA


@pytest.fixture
def iphone_ua() -> str:
    return IPHONE_UA


@pytest.fixture
def session_factory() -> async_sessionmaker:
    return test_session_factory


@pytest_asyncio.fixture
async def committing_client(geolocator: FakeGeoLocator) -> AsyncClient:
    """Client that runs the real get_db: one session per request, commit or rollback."""
    app.state.session_factory = test_session_factory
    app.state.geolocator = geolocator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    del app.state.session_factory
    del app.state.geolocator
