"""Health check endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text

from outreach_agent import __version__
from outreach_agent.db.session import get_db_context


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    environment: str
    checks: dict[str, Any]


@router.get("/health")
async def health_check(request: Request) -> HealthResponse:
    """Perform health check.

    Components checked:
    - Database: Connectivity test via SELECT 1
    - Scheduler: Configured provider
    - Enrichment: Worker state and queue depth
    - Batches: Number running in this process
    """
    state = request.app.state
    settings = state.settings

    checks: dict[str, Any] = {
        "api": "ok",
        "database": await _check_database(),
        "scheduler": {"status": "ok", "provider": state.scheduler.name},
        "enrichment": _check_enrichment(state.enrichment),
        "batches": {"status": "ok", "running": len(state.batch_registry)},
        "orchestration": "ok" if state.orchestrator is not None else "not_configured",
    }

    database_ok = checks["database"] == "ok"
    return HealthResponse(
        status="healthy" if database_ok else "unhealthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        environment=settings.environment,
        checks=checks,
    )


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Check if the service is alive."""
    return {"status": "alive"}


async def _check_database() -> str | dict[str, Any]:
    """Execute SELECT 1. Returns "ok" or error details."""
    try:
        async with get_db_context() as db:
            result = await db.execute(text("SELECT 1"))
            result.fetchone()
        return "ok"
    except Exception as e:
        return {
            "status": "error",
            "message": str(e),
        }


def _check_enrichment(queue: Any) -> str | dict[str, Any]:
    if queue is None:
        return "disabled"
    return {
        "status": queue.state.value,
        "pending": queue.pending,
        **queue.metrics.to_dict(),
    }
