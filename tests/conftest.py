"""Pytest configuration and fixtures for Outreach Agent tests."""

from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Set test environment
os.environ["OUTREACH_ENV"] = "development"
os.environ["OUTREACH_DEBUG"] = "true"

from outreach_agent.batch.orchestration import (  # noqa: E402
    CaseOrchestrator,
    OrchestrationRequest,
    OrchestrationResult,
)
from outreach_agent.calls.scheduler import CallScheduler  # noqa: E402
from outreach_agent.core.exceptions import OrchestrationError, SchedulingError  # noqa: E402


# ============================================================================
# Collaborator Fakes
# ============================================================================


class FakeScheduler(CallScheduler):
    """Records scheduled jobs; can be told to reject."""

    name = "fake"

    def __init__(self) -> None:
        self.scheduled: list[tuple[str, datetime]] = []
        self.cancelled: list[str] = []
        self.fail_with: Exception | None = None

    async def schedule(self, record_id: UUID | str, fire_at: datetime) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.scheduled.append((str(record_id), fire_at))
        return f"job-{len(self.scheduled)}"

    async def cancel(self, job_id: str) -> bool:
        self.cancelled.append(job_id)
        return True


class FakeOrchestrator(CaseOrchestrator):
    """Succeeds by default; per-case failures and exceptions can be configured.

    Tracks how many requests are in flight at once.
    """

    def __init__(self) -> None:
        self.requests: list[OrchestrationRequest] = []
        self.failures: dict[UUID, list[str]] = {}
        self.raises: set[UUID] = set()
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_request: Any = None

    async def orchestrate(self, request: OrchestrationRequest) -> OrchestrationResult:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # Let the other cases of the chunk start
            await asyncio.sleep(0)
            if self.on_request is not None:
                self.on_request(request)

            if request.case_id in self.raises:
                raise OrchestrationError("Orchestration service unreachable")
            if request.case_id in self.failures:
                return OrchestrationResult(success=False, errors=self.failures[request.case_id])

            return OrchestrationResult(
                success=True,
                email_id=f"email-{request.case_id}" if request.email_scheduled_for else None,
                call_id=f"call-{request.case_id}" if request.call_scheduled_for else None,
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def failing_scheduler() -> FakeScheduler:
    fake = FakeScheduler()
    fake.fail_with = SchedulingError("Job queue rejected the request")
    return fake


@pytest.fixture
def orchestrator() -> FakeOrchestrator:
    return FakeOrchestrator()


# ============================================================================
# Async Database Fixtures
# ============================================================================


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """File-backed SQLite so separate sessions see the same data."""
    return f"sqlite+aiosqlite:///{tmp_path / 'outreach_test.db'}"


@pytest_asyncio.fixture(scope="function")
async def db_engine(database_url):
    """Create test database engine.

    Creates a fresh database for each test function.
    """
    from outreach_agent.db.session import create_test_engine

    engine = await create_test_engine(database_url)

    yield engine

    # Cleanup
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from outreach_agent.db.session import create_session_factory

    return create_session_factory(db_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator:
    """Create test database session.

    Provides a session that rolls back after each test.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_case(session_factory, owner_id):
    """Factory that commits a case and returns it."""
    from outreach_agent.db.models.cases import CaseModel

    async def factory(**overrides: Any) -> CaseModel:
        values: dict[str, Any] = {
            "owner_id": owner_id,
            "status": "completed",
            "patient_id": uuid4(),
            "patient_name": "Biscuit",
            "owner_name": "Dana Reyes",
            "owner_email": "dana@example.com",
            "owner_phone": "+15551230000",
            "has_summary": True,
        }
        values.update(overrides)
        case = CaseModel(**values)
        async with session_factory() as session:
            session.add(case)
            await session.commit()
        return case

    return factory


@pytest.fixture
def make_call(session_factory):
    """Factory that commits a call record for a case and returns it."""
    from outreach_agent.db.models.calls import CallRecordModel

    async def factory(case_id: UUID, **overrides: Any) -> CallRecordModel:
        values: dict[str, Any] = {
            "case_id": case_id,
            "provider_call_id": f"prov-{uuid4().hex[:12]}",
            "status": "queued",
            "customer_phone": "+15551230000",
        }
        values.update(overrides)
        record = CallRecordModel(**values)
        async with session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    return factory


@pytest.fixture
def make_email(session_factory):
    """Factory that commits a scheduled email for a case."""
    from outreach_agent.db.models.cases import ScheduledEmailModel

    async def factory(case_id: UUID, status: str = "queued") -> ScheduledEmailModel:
        email = ScheduledEmailModel(case_id=case_id, status=status, recipient_email="dana@example.com")
        async with session_factory() as session:
            session.add(email)
            await session.commit()
        return email

    return factory


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app_settings(database_url):
    """Settings for an app backed by the per-test database."""
    from outreach_agent.config import DatabaseSettings, EnrichmentSettings, Settings

    return Settings(
        database=DatabaseSettings(url=database_url),
        enrichment=EnrichmentSettings(enabled=False),
        log_level="WARNING",
    )


@pytest.fixture
def client(app_settings, scheduler, orchestrator):
    """TestClient with fake collaborators.

    The lifespan runs for the whole test, so background batch tasks keep
    running between requests. Use ``client.portal.call`` to run async
    setup code on the application's event loop.
    """
    from fastapi.testclient import TestClient

    from outreach_agent.main import create_app

    app = create_app(app_settings, scheduler=scheduler, orchestrator=orchestrator)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seed(client):
    """Commit models through the running application's session factory."""

    def add(*models: Any) -> None:
        async def add_all() -> None:
            async with client.app.state.session_factory() as session:
                session.add_all(models)
                await session.commit()

        client.portal.call(add_all)

    return add
