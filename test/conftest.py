"""
Pytest configuration and fixtures for authorization engine tests
"""

import os
import sys
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

# Settings require a secret key; set it before anything imports authz.config
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

from authz.database import Base, create_session_factory  # noqa: E402
from authz.dependencies import AuthzContainer  # noqa: E402
from authz.middleware.rate_limit import limiter  # noqa: E402
from authz.permissions_config.seed import seed_default_roles  # noqa: E402
from authz.utils.cache import CacheManager  # noqa: E402
import authz.models  # noqa: E402, F401

from utils.mocks import FakeClock, FakeRedis  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    """
    A fresh SQLite database file per test.

    A file rather than :memory: so concurrent sessions (background audit
    writes) each get their own connection.
    """
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/authz.db")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def role_ids(session_factory) -> dict:
    """Seeded role ids keyed by role type value"""
    return await seed_default_roles(session_factory)


@pytest.fixture
async def container(session_factory, role_ids, clock) -> AsyncGenerator[AuthzContainer, None]:
    """Service graph with the L2 tier disabled"""
    built = AuthzContainer.build(session_factory, clock=clock)
    yield built
    await built.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
async def redis_container(session_factory, role_ids, clock, fake_redis) -> AsyncGenerator[AuthzContainer, None]:
    """Service graph with an in-memory Redis behind the L2 tier"""
    built = AuthzContainer.build(session_factory, clock=clock, l2=CacheManager(redis_url=None, client=fake_redis))
    yield built
    await built.close()


@pytest.fixture
async def client(container) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to an app that uses the test container"""
    from main import create_app

    limiter.reset()
    app = create_app(container)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
