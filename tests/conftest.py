"""
ESG Ledger - Test Configuration

Pytest fixtures and configuration.

Every test gets a fresh in-memory SQLite database. The application settings
are pointed at SQLite before any esg_ledger module is imported.
"""

import os

os.environ["DATABASE_URL_ASYNC"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "test"

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import esg_ledger.models  # noqa: F401
from esg_ledger.config import settings
from esg_ledger.database import Base, get_async_session
from esg_ledger.dependencies import get_transport
from esg_ledger.services.audit_service import AuditService
from esg_ledger.services.notification_service import NotificationQueueService
from esg_ledger.services.workflow_service import WorkflowService
from esg_ledger.utils.error_handling import TransportException
from main import app


# Single shared connection so the in-memory database survives across sessions
test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# ===========================================
# DATABASE FIXTURES
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    """Session factory bound to the test database, for task entry points."""
    return TestSessionLocal


# ===========================================
# SETTINGS FIXTURES
# ===========================================

@pytest.fixture
def approver_emails(monkeypatch):
    """Configure one approver address per level."""
    monkeypatch.setattr(settings, "site_approver_email", "site@esg.test")
    monkeypatch.setattr(settings, "bu_approver_email", "bu@esg.test")
    monkeypatch.setattr(settings, "esg_approver_email", "esg@esg.test")
    monkeypatch.setattr(settings, "exec_approver_email", "exec@esg.test")
    return settings.level_approver_emails


@pytest.fixture
def no_inline_delivery(monkeypatch):
    """Leave queued notifications pending after workflow transitions."""
    monkeypatch.setattr(settings, "notification_process_inline", False)


# ===========================================
# TRANSPORT FIXTURES
# ===========================================

@pytest.fixture
def transport() -> AsyncMock:
    """Transport that accepts every message."""
    fake = AsyncMock()
    fake.send = AsyncMock(return_value=None)
    return fake


@pytest.fixture
def failing_transport() -> AsyncMock:
    """Transport whose every delivery fails."""
    fake = AsyncMock()
    fake.send = AsyncMock(side_effect=TransportException("smtp", "connection refused"))
    return fake


# ===========================================
# SERVICE FIXTURES
# ===========================================

@pytest.fixture
def audit_service(db_session: AsyncSession) -> AuditService:
    return AuditService(db_session)


@pytest.fixture
def notification_service(db_session: AsyncSession, transport: AsyncMock) -> NotificationQueueService:
    return NotificationQueueService(db_session, transport)


@pytest.fixture
def workflow_service(
    db_session: AsyncSession,
    notification_service: NotificationQueueService,
    audit_service: AuditService,
) -> WorkflowService:
    return WorkflowService(db_session, notification_service, audit_service)


# ===========================================
# API FIXTURES
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, transport: AsyncMock) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session and transport overrides."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_transport] = lambda: transport

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
