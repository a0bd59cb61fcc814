import os

# Settings are read once at import time
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SLA_SCHEDULER_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from inquiry_sla.config import Priority, Role, WorkItemStatus
from inquiry_sla.core import NotificationDispatchException
from inquiry_sla.infrastructure.database import Base
from inquiry_sla.sla.application import INotifier, NotificationDispatcher, SLAMonitor
from inquiry_sla.sla.infrastructure import SQLAlchemyUnitOfWork, sqlalchemy_uow_factory
from inquiry_sla.sla.infrastructure.models import (
    InquiryModel,
    SlaConfigModel,
    SlaViolationModel,
    UserModel,
)

TEST_DATABASE_URL = "sqlite+aiosqlite://"

# Monday 2024-01-15 12:00 UTC
BASE_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
APP_ID = "support-portal"


class FakeNotifier(INotifier):
    """Records notification requests; optionally fails every send."""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, request):
        if self.fail:
            raise NotificationDispatchException("webhook unreachable")
        self.sent.append(request)
        return True

    def of_kind(self, kind):
        return [r for r in self.sent if r.kind == kind]


class Seeder:
    """Inserts rows owned by collaborating subsystems."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def _add(self, model):
        async with self._session_factory() as session:
            session.add(model)
            await session.commit()
        return model

    async def config(self, **overrides):
        values = dict(
            id=f"cfg-{uuid.uuid4().hex[:8]}",
            application_id=APP_ID,
            priority_level=Priority.HIGH.value,
            response_time_hours=4,
            resolution_time_hours=48,
            escalation_time_hours=24,
            business_hours_only=False,
            business_start_hour=9,
            business_end_hour=18,
            business_days="1,2,3,4,5",
            timezone="UTC",
            is_active=True,
        )
        values.update(overrides)
        return await self._add(SlaConfigModel(**values))

    async def inquiry(self, **overrides):
        values = dict(
            id=f"inq-{uuid.uuid4().hex[:8]}",
            application_id=APP_ID,
            title="Cannot export monthly report",
            priority=Priority.HIGH.value,
            status=WorkItemStatus.OPEN.value,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )
        values.update(overrides)
        return await self._add(InquiryModel(**values))

    async def user(self, role=Role.CONTRIBUTOR, **overrides):
        user_id = overrides.pop("id", f"usr-{uuid.uuid4().hex[:8]}")
        values = dict(
            id=user_id,
            email=f"{user_id}@example.com",
            name=user_id,
            role=Role(role).value,
            application_id=None,
            is_active=True,
            created_at=BASE_TIME - timedelta(days=365),
        )
        values.update(overrides)
        return await self._add(UserModel(**values))

    async def violation(self, **overrides):
        values = dict(
            id=f"vio-{uuid.uuid4().hex[:8]}",
            sla_config_id="cfg-manual",
            violation_type="escalation_time",
            expected_time=BASE_TIME,
            detected_at=BASE_TIME + timedelta(hours=1),
            delay_hours=1.0,
            severity="minor",
        )
        values.update(overrides)
        return await self._add(SlaViolationModel(**values))


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def uow(db_session):
    return SQLAlchemyUnitOfWork(db_session)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def dispatcher(notifier):
    return NotificationDispatcher(notifier, frontend_url="https://support.example.com")


@pytest.fixture
def monitor(session_factory, dispatcher):
    return SLAMonitor(sqlalchemy_uow_factory(session_factory), dispatcher)


@pytest.fixture
async def client(session_factory, dispatcher, monitor):
    from inquiry_sla.infrastructure.database import get_session
    from inquiry_sla.main import app

    async def override_get_session():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_session] = override_get_session
    app.state.notification_dispatcher = dispatcher
    app.state.sla_monitor = monitor
    app.state.sla_config_repository = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
