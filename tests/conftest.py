"""Pytest configuration and shared fixtures."""

import os

# settings are read at import time; point them at SQLite and keep background tasks off
os.environ.setdefault("ENV", "local")
os.environ.setdefault("POSTGRES_DSN", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OUTBOX_RELAY_ENABLED", "false")
os.environ.setdefault("WORKLOAD_RECALC_ENABLED", "false")

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from assignment_engine.core.config import settings
from assignment_engine.core.db import init_models, get_session
from assignment_engine.modules.attorneys.schemas import AttorneyCreate, ExpertiseUpsert
from assignment_engine.modules.attorneys.service import AttorneyExpertiseStore
from assignment_engine.modules.rules.schemas import RuleCreate
from assignment_engine.modules.rules.service import RuleAdminService
from assignment_engine.platform.ports.case_management import CaseAttributes, TaskMetrics
from assignment_engine.platform.provider_registry import ProviderRegistry, registry

ORG_ID = uuid.UUID(settings.DEFAULT_ORG_ID)


class FakeCaseManagement:
    """In-memory case-management collaborator."""

    def __init__(self):
        self.cases: dict[uuid.UUID, CaseAttributes] = {}
        self.metrics: dict[uuid.UUID, TaskMetrics] = {}

    def add_case(self, case_id: uuid.UUID | None = None, **attrs) -> uuid.UUID:
        case_id = case_id or uuid.uuid4()
        self.cases[case_id] = CaseAttributes(case_id=case_id, **attrs)
        return case_id

    async def get_case_attributes(self, org_id: uuid.UUID, case_id: uuid.UUID) -> CaseAttributes | None:
        return self.cases.get(case_id)

    async def get_task_metrics(self, org_id: uuid.UUID, attorney_id: uuid.UUID, deadline_horizon: datetime) -> TaskMetrics:
        return self.metrics.get(attorney_id, TaskMetrics())


class RecordingEventBus:
    def __init__(self):
        self.published: list[dict] = []

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        self.published.append({"topic": topic, "key": key, "value": value})


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'assignments.db'}")
    await init_models(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as s:
        yield s


@pytest.fixture
def case_management() -> FakeCaseManagement:
    return FakeCaseManagement()


@pytest.fixture
def event_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture(autouse=True)
def providers(case_management, event_bus):
    registry.override(event_bus=event_bus, case_management=case_management)
    yield
    ProviderRegistry._event_bus = None
    ProviderRegistry._case_management = None


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async test client bound to the per-test database."""
    from assignment_engine.main import app

    async def _session_override():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session_override
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def make_attorney(session: AsyncSession, name: str, expertise: dict | None = None, **profile) -> uuid.UUID:
    """Create an attorney; ``expertise`` maps practice area -> ExpertiseUpsert fields."""
    store = AttorneyExpertiseStore(session)
    attorney = await store.create_attorney(ORG_ID, AttorneyCreate(display_name=name, **profile))
    for area, fields in (expertise or {}).items():
        await store.upsert_expertise(ORG_ID, attorney.id, ExpertiseUpsert(expertise_area=area, **fields))
    return attorney.id


async def make_rule(session: AsyncSession, **fields):
    fields.setdefault("rule_name", "default")
    return await RuleAdminService(session).create(ORG_ID, RuleCreate(**fields))
