"""Pytest configuration and fixtures."""

import base64
import os
from datetime import UTC, datetime, timedelta

import pytest

# Set DATABASE_URL for tests BEFORE importing ots.main
# This keeps the module-level app from creating ./ots.db
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

# Disable rate limiting and the background scheduler during tests
os.environ["OTS_TESTING"] = "true"

from ots.config import Settings
from ots.database import build_engine, build_session_factory, init_db
from ots.services.secret_store import SecretStore


class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def clock():
    """Clock that only moves when a test advances it."""
    return FakeClock()


@pytest.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a test database engine.

    A temp-file SQLite database rather than :memory: so concurrent sessions
    get their own connections and contend for the write lock the way
    separate requests do.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ots-test.db'}")

    # Create all tables
    await init_db(engine)

    yield engine

    # Cleanup
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def store(session_factory, clock):
    """SecretStore bound to the test database and the fake clock."""
    return SecretStore(session_factory, clock=clock)


@pytest.fixture
def test_settings():
    """Settings with production defaults, testing mode on."""
    return Settings(database_url="sqlite+aiosqlite:///:memory:", testing=True)


@pytest.fixture
def app(test_settings, db_engine, clock):
    """Create FastAPI app for testing."""
    from ots.main import create_app

    return create_app(test_settings, engine=db_engine, clock=clock)


@pytest.fixture
async def client(app):
    """Create async test client."""
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_payload():
    """Factory fixture for POST /api/secrets bodies.

    Usage:
        body = make_payload(ciphertext=b"x" * 64, expires_in=300)

    Defaults produce a valid request: 32 bytes of ciphertext, a 12-byte IV,
    no salt and a one hour TTL.
    """

    def _make_payload(
        ciphertext: bytes = b"\x01" * 32,
        iv: bytes = b"\x02" * 12,
        salt: bytes | None = None,
        expires_in: int | None = 3600,
        **extra,
    ):
        body = {"ciphertext": b64(ciphertext), "iv": b64(iv)}
        if salt is not None:
            body["salt"] = b64(salt)
        if expires_in is not None:
            body["expires_in"] = expires_in
        body.update(extra)
        return body

    return _make_payload
