import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time, so the environment must be ready first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pricing-service")

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.core.redis as redis_module
from app.main import app
from app.db.session import get_db
from app.models.base import Base
from app.models.pricing_config import PricingConfig  # noqa: F401
from app.models.pricing_config_history import PricingConfigHistory  # noqa: F401
from app.core.security import create_access_token, JWT_ALGORITHM
from app.core.config import settings
from app.core.enums import UserRole
from app.schemas.pricing_config import DEFAULT_PRICING_VALUES
from app.services import pricing_config as store
from app.services.pricing_cache import pricing_cache


TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis covering the calls the service makes."""

    def __init__(self):
        self.store = {}
        self.expirations = {}
        self.failing = set()

    def _maybe_fail(self, operation):
        if operation in self.failing:
            raise ConnectionError(f"redis {operation} unavailable")

    async def ping(self):
        self._maybe_fail("ping")
        return True

    async def get(self, key):
        self._maybe_fail("get")
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._maybe_fail("set")
        self.store[key] = value.encode() if isinstance(value, str) else value
        self.expirations[key] = ex
        return True

    async def delete(self, *keys):
        self._maybe_fail("delete")
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.expirations.pop(key, None)
        return removed

    async def aclose(self):
        return None


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def active_config(db_session):
    return await store.create_config(
        db_session,
        dict(DEFAULT_PRICING_VALUES),
        created_by="seed",
        set_as_active=True,
    )


@pytest.fixture(autouse=True)
def reset_pricing_cache(monkeypatch):
    monkeypatch.setattr(redis_module, "redis", None)
    pricing_cache._bypass_until = 0.0
    yield
    pricing_cache._bypass_until = 0.0


@pytest.fixture
def redis_stub():
    return FakeRedis()


@pytest.fixture
def fake_redis(monkeypatch, redis_stub):
    fake = redis_stub
    monkeypatch.setattr(redis_module, "redis", fake)
    return fake


@pytest.fixture
async def test_client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_token():
    return create_access_token("admin_1", UserRole.ADMIN.value)


@pytest.fixture
def client_token():
    return create_access_token("client_1", UserRole.CLIENT.value)


@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def client_headers(client_token):
    return {"Authorization": f"Bearer {client_token}"}


@pytest.fixture
def expired_token():
    payload = {
        "sub": "admin_1",
        "role": UserRole.ADMIN.value,
        "exp": datetime.now(timezone.utc) - timedelta(hours=1)  # Expired 1 hour ago
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=JWT_ALGORITHM)


@pytest.fixture
def valid_quote_data():
    return {
        "vehicle_type": "sedan",
        "distance_miles": 250,
        "pickup_date": "2025-02-01",
        "delivery_date": "2025-02-05",
        "is_accident_recovery": False,
        "vehicle_count": 1,
        "use_dynamic_config": True,
    }


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "auth: marks tests related to authentication"
    )
    config.addinivalue_line(
        "markers", "pricing: marks tests related to pricing"
    )
    config.addinivalue_line(
        "markers", "cache: marks tests related to the pricing config cache"
    )
    config.addinivalue_line(
        "markers", "audit: marks tests related to config change history"
    )
