"""
Pytest configuration and fixtures.

Provides shared fixtures for:
- A file-backed aiosqlite database per test
- A fake push gateway that records batches
- A notification pipeline wired to both
- Row factories for admins, staff, projects and push tokens
"""
import os
import pytest

# Set test environment variables before importing app modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CRON_ENABLED"] = "false"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["PUSH_PROVIDER"] = "expo"
os.environ["PUSH_BATCH_DELAY_SECONDS"] = "0"
os.environ["ACTIVITY_LOG_URL"] = ""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import settings
from app.core.database import Base
from app.core.pipeline import build_pipeline
from app.core.push_gateway import DEVICE_NOT_REGISTERED, PushGateway, PushMessage, PushTicket
from app.models.admin import Admin
from app.models.project import Project, ProjectAssignedStaff
from app.models.push_token import PushToken
from app.models.staff import Staff, StaffClient


class FakeGateway(PushGateway):
    """Records every batch. Tokens in `unregistered` or `failing` get error tickets."""
    name = "fake"

    def __init__(self):
        self.batches: list[list[PushMessage]] = []
        self.unregistered: set[str] = set()
        self.failing: set[str] = set()
        self.error: Exception | None = None
        self.closed = False

    @property
    def sent_messages(self) -> list[PushMessage]:
        return [m for batch in self.batches for m in batch]

    async def send(self, messages: list[PushMessage]) -> list[PushTicket]:
        self.batches.append(list(messages))
        if self.error is not None:
            raise self.error
        tickets = []
        for index, message in enumerate(messages):
            if message.to in self.unregistered:
                tickets.append(PushTicket(
                    status="error", message="The recipient device is not registered", error=DEVICE_NOT_REGISTERED,
                ))
            elif message.to in self.failing:
                tickets.append(PushTicket(status="error", message="MessageRateExceeded", error="MessageRateExceeded"))
            else:
                tickets.append(PushTicket(status="ok", id=f"ticket-{len(self.batches)}-{index}"))
        return tickets

    async def aclose(self) -> None:
        self.closed = True


# ============================================================================
# Database Fixtures
# ============================================================================

def make_engine(path):
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine; NullPool so connections never outlive an event loop."""
    engine = make_engine(tmp_path / "test.db")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def pipeline(session_maker, gateway):
    pipeline = build_pipeline(settings, session_maker, gateway=gateway)
    pipeline.retry_manager._retry_spacing = 0
    return pipeline


# ============================================================================
# Sample Data Factories
# ============================================================================

class Factories:
    """Async row factories bound to one session maker."""

    def __init__(self, session_maker):
        self.session_maker = session_maker

    async def _save(self, *rows):
        async with self.session_maker() as session:
            session.add_all(rows)
            await session.commit()
            for row in rows:
                await session.refresh(row)
        return rows[0]

    async def admin(self, client_id: str, admin_id: str, **kwargs) -> Admin:
        kwargs.setdefault("first_name", "Alice")
        kwargs.setdefault("last_name", "Admin")
        kwargs.setdefault("email", f"{admin_id}@example.com")
        return await self._save(Admin(id=admin_id, client_id=client_id, **kwargs))

    async def staff(self, client_ids: list[str], staff_id: str, **kwargs) -> Staff:
        kwargs.setdefault("first_name", "Sam")
        kwargs.setdefault("last_name", "Staff")
        kwargs.setdefault("email", f"{staff_id}@example.com")
        kwargs.setdefault("role", "site-engineer")
        staff = Staff(id=staff_id, **kwargs)
        memberships = [StaffClient(staff_id=staff_id, client_id=client_id) for client_id in client_ids]
        return await self._save(staff, *memberships)

    async def project(
        self,
        client_id: str,
        project_id: str,
        assigned: list[tuple[str, str]] = (),
        name: str = "Tower A",
    ) -> Project:
        project = Project(id=project_id, client_id=client_id, name=name)
        assignments = [
            ProjectAssignedStaff(project_id=project_id, staff_id=staff_id, full_name=full_name)
            for staff_id, full_name in assigned
        ]
        return await self._save(project, *assignments)

    async def push_token(
        self,
        user_id: str,
        token: str,
        *,
        platform: str = "android",
        user_type: str = "staff",
        is_active: bool = True,
        **kwargs,
    ) -> PushToken:
        row = PushToken(
            user_id=user_id,
            token=token,
            platform=platform,
            user_type=user_type,
            is_active=is_active,
            validation_errors=[],
            **kwargs,
        )
        return await self._save(row)


@pytest.fixture
def factories(session_maker):
    return Factories(session_maker)
