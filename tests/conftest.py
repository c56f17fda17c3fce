import os

import pytest
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["SECRET_KEY"] = "test-secret-key"

from switchboard.auth import create_access_token
from switchboard.config import default_provider_urls, settings
from switchboard.database import Base, get_db
from switchboard.main import app
from switchboard.services.mcp_service import connection_cache
from switchboard.services.provider_health import provider_health


def make_auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """No operator keys or vendor URL overrides unless a test opts in; fresh process-wide state."""
    monkeypatch.setattr(settings, "FREE_TIER_API_KEY", "")
    monkeypatch.setattr(settings, "MANAGED_API_KEYS", {})
    monkeypatch.setattr(settings, "PROVIDER_URLS", default_provider_urls())
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", "google-client-id")
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_SECRET", "google-client-secret")
    monkeypatch.setattr(settings, "NOTION_CLIENT_ID", "notion-client-id")
    monkeypatch.setattr(settings, "NOTION_CLIENT_SECRET", "notion-client-secret")
    provider_health.reset()
    connection_cache.clear()
    yield
    provider_health.reset()
    connection_cache.clear()


@pytest.fixture
async def test_db(tmp_path):
    """Create a fresh test database for each test.

    A file database rather than :memory: so concurrent sessions share it.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    yield session_maker

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
async def db(test_db):
    async with test_db() as session:
        yield session


@pytest.fixture
async def client(test_db):
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers():
    return make_auth_headers("user-1")
