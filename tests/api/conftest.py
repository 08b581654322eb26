"""
HTTP test fixtures. Routes run inside TestClient's own event loop, so the database
is prepared and seeded synchronously with asyncio.run instead of async fixtures.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database import Base
from app.core.rate_limit import limiter
from app.core.security import create_access_token
from app.main import app

async def _create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    asyncio.run(_create_schema(engine))
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    asyncio.run(engine.dispose())


@pytest.fixture
def client(pipeline):
    """TestClient without lifespan events: the test pipeline replaces the one built on startup."""
    app.state.pipeline = pipeline
    limiter.reset()
    yield TestClient(app)
    del app.state.pipeline


def _bearer(user_id: str, role: str) -> dict:
    token = create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Factory: bearer headers for a user id and role."""
    return _bearer


@pytest.fixture
def cron_headers():
    return {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def admin_headers(factories):
    asyncio.run(factories.admin("c1", "admin-1"))
    return _bearer("admin-1", "admin")


@pytest.fixture
def staff_headers():
    return _bearer("staff-1", "staff")
