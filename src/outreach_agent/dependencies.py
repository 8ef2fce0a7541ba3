"""Dependency Injection for the Outreach Agent.

Long-lived components (scheduler, enrichment queue, orchestrator, batch
registry) are built once in the application lifespan and kept on
``app.state``; the functions here hand them to route handlers.

Usage:
    from outreach_agent.dependencies import SchedulerDep

    @router.post("/endpoint")
    async def handler(scheduler: SchedulerDep):
        ...
"""

from __future__ import annotations

from typing import Annotated, AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach_agent.api.webhook_security import WebhookSecurityManager
from outreach_agent.batch.orchestration import CaseOrchestrator
from outreach_agent.batch.registry import BatchProcessorRegistry
from outreach_agent.calls.enrichment import EnrichmentQueue
from outreach_agent.calls.scheduler import CallScheduler
from outreach_agent.config import Settings
from outreach_agent.core.exceptions import ConfigurationError
from outreach_agent.db.session import get_db as _get_db, get_session_factory as _get_session_factory


# =============================================================================
# Settings Dependency
# =============================================================================


def get_app_settings(request: Request) -> Settings:
    """Settings the running application was created with."""
    return request.app.state.settings


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


# =============================================================================
# Database Dependencies
# =============================================================================


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for request.

    Yields session that auto-commits on success, rolls back on error.
    """
    async for session in _get_db():
        yield session


DatabaseDep = Annotated[AsyncSession, Depends(get_db)]


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives the request."""
    return _get_session_factory()


SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


# =============================================================================
# Component Dependencies
# =============================================================================


def get_scheduler(request: Request) -> CallScheduler:
    return request.app.state.scheduler


def get_enrichment(request: Request) -> EnrichmentQueue | None:
    return request.app.state.enrichment


def get_batch_registry(request: Request) -> BatchProcessorRegistry:
    return request.app.state.batch_registry


def get_orchestrator(request: Request) -> CaseOrchestrator:
    """Configured orchestrator.

    Raises:
        ConfigurationError: If no orchestration service is configured
    """
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise ConfigurationError("Orchestration service is not configured")
    return orchestrator


def get_webhook_security(request: Request) -> WebhookSecurityManager:
    return WebhookSecurityManager(request.app.state.settings.webhooks)


SchedulerDep = Annotated[CallScheduler, Depends(get_scheduler)]
EnrichmentDep = Annotated[EnrichmentQueue | None, Depends(get_enrichment)]
BatchRegistryDep = Annotated[BatchProcessorRegistry, Depends(get_batch_registry)]
OrchestratorDep = Annotated[CaseOrchestrator, Depends(get_orchestrator)]
WebhookSecurityDep = Annotated[WebhookSecurityManager, Depends(get_webhook_security)]
