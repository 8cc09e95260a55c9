"""
Test configuration and fixtures.
Uses a file-backed SQLite database per test so the API, the processor and the
retry worker can share it across sessions. Mocks Redis and outbound alerts.
"""
import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("APP_SECRET_KEY", "test_app_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WEBHOOK_EXECUTOR", "inline")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB, UUID

from leadhooks.database import Base
from leadhooks.models.integration import Integration
from leadhooks.utils.logging import set_correlation_id

INTEGRATION_SECRET = "test_webhook_secret"
OWNER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# Give UUID columns text affinity on SQLite so hex ids are not coerced to numbers
@compiles(UUID, "sqlite")
def _compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(32)"


@pytest.fixture(autouse=True)
def _reset_correlation_id():
    set_correlation_id(None)
    yield
    set_correlation_id(None)


@pytest.fixture(autouse=True)
def _reset_caches():
    """Settings and the executor are process-wide singletons."""
    from leadhooks.config import get_settings
    from leadhooks.services.executors import get_executor
    from leadhooks.utils import alerting

    get_settings.cache_clear()
    get_executor.cache_clear()
    alerting._local_cooldowns.clear()
    yield
    get_settings.cache_clear()
    get_executor.cache_clear()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'leadhooks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """Session for arranging and asserting test state."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def worker_sessions(session_factory):
    """Point the processor and the retry worker at the test database."""
    with (
        patch("leadhooks.services.webhook_processor.async_session_factory", session_factory),
        patch("leadhooks.workers.retry_worker.async_session_factory", session_factory),
    ):
        yield session_factory


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("leadhooks.utils.dedup.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.ping = AsyncMock(return_value=True)
        redis_mock.lpush = AsyncMock(return_value=1)
        redis_mock.delete = AsyncMock(return_value=1)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def make_integration(db):
    """Factory that persists an Integration row."""
    async def _make(
        platform: str = "instagram",
        webhook_secret: str | None = INTEGRATION_SECRET,
        user_id: uuid.UUID = OWNER_ID,
        is_active: bool = True,
    ) -> Integration:
        integration = Integration(
            user_id=user_id,
            platform=platform,
            webhook_secret=webhook_secret,
            is_active=is_active,
        )
        db.add(integration)
        await db.commit()
        return integration
    return _make
