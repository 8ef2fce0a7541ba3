"""Batch dispatch API endpoints.

A batch is created from the owner's eligible cases and processed in the
background; progress is read back from the batch row and its items.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from outreach_agent.batch.processor import (
    BatchProcessingOptions,
    BatchProcessor,
    calculate_schedule_times,
    load_eligible_cases,
)
from outreach_agent.core.exceptions import (
    BatchNotFoundError,
    BatchNotRunningError,
    ValidationError,
)
from outreach_agent.core.logging import get_logger
from outreach_agent.db.base import ensure_utc
from outreach_agent.db.repositories.batches import BatchRepository
from outreach_agent.dependencies import (
    BatchRegistryDep,
    DatabaseDep,
    OrchestratorDep,
    SessionFactoryDep,
    SettingsDep,
)

log = get_logger(__name__)

router = APIRouter(prefix="/batches")


class BatchCreate(BaseModel):
    """Request model for creating and starting a batch."""

    owner_id: UUID
    case_ids: list[UUID] | None = Field(
        default=None,
        description="Subset of eligible cases to include; all eligible cases when omitted",
    )
    email_schedule_time: datetime | None = Field(
        default=None, description="Email time for the first case"
    )
    call_schedule_time: datetime | None = Field(
        default=None, description="Call time for the first case"
    )
    email_time: str | None = Field(
        default=None,
        pattern=r"^\d{1,2}:\d{2}$",
        description="Local HH:MM used when email_schedule_time is omitted",
    )
    call_time: str | None = Field(
        default=None,
        pattern=r"^\d{1,2}:\d{2}$",
        description="Local HH:MM used when call_schedule_time is omitted",
    )


class CancelResponse(BaseModel):
    batch_id: str
    cancel_requested: bool


@router.get("/eligible")
async def list_eligible_cases(
    session: DatabaseDep,
    owner_id: UUID = Query(..., description="Owner whose cases to check"),
) -> dict[str, Any]:
    """List the owner's completed cases that still need outreach."""
    cases = await load_eligible_cases(session, owner_id)
    return {
        "owner_id": str(owner_id),
        "count": len(cases),
        "cases": [case.to_dict() for case in cases],
    }


@router.get("")
async def list_batches(
    session: DatabaseDep,
    owner_id: UUID = Query(...),
    limit: int = Query(default=20, ge=1, le=100),
) -> dict[str, Any]:
    """Recent batches for an owner, newest first."""
    batches = await BatchRepository(session).get_by_owner(owner_id, limit=limit)
    return {"batches": [batch.to_dict() for batch in batches]}


@router.post("", status_code=202)
async def create_batch(
    request: BatchCreate,
    session: DatabaseDep,
    session_factory: SessionFactoryDep,
    orchestrator: OrchestratorDep,
    registry: BatchRegistryDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """Create a batch from eligible cases and start processing it.

    Returns immediately; poll ``GET /batches/{id}`` for progress.
    """
    config = settings.batch
    processor = BatchProcessor(session_factory, orchestrator, config)

    cases = await processor.get_eligible_cases(request.owner_id)
    if request.case_ids is not None:
        wanted = set(request.case_ids)
        cases = [case for case in cases if case.id in wanted]
    if not cases:
        raise ValidationError(
            "No eligible cases to dispatch",
            details={"owner_id": str(request.owner_id)},
        )

    defaults = calculate_schedule_times(
        request.email_time or config.default_email_time,
        request.call_time or config.default_call_time,
        config.timezone,
        email_delay_days=config.email_delay_days,
        call_delay_days=config.call_delay_days,
    )
    email_at = ensure_utc(request.email_schedule_time) or defaults.email_schedule_time
    call_at = ensure_utc(request.call_schedule_time) or defaults.call_schedule_time

    batch_id = await BatchProcessor.create_batch(session, request.owner_id, cases, email_at, call_at)

    registry.start(
        processor,
        cases,
        BatchProcessingOptions(
            batch_id=batch_id,
            email_schedule_time=email_at,
            call_schedule_time=call_at,
            chunk_size=config.chunk_size,
        ),
    )

    log.info(
        "Batch dispatch started",
        batch_id=str(batch_id),
        owner_id=str(request.owner_id),
        total=len(cases),
        email_at=email_at.isoformat(),
        call_at=call_at.isoformat(),
    )
    return {
        "batch_id": str(batch_id),
        "status": "pending",
        "total_cases": len(cases),
        "email_schedule_time": email_at.isoformat(),
        "call_schedule_time": call_at.isoformat(),
    }


@router.get("/{batch_id}")
async def get_batch(
    batch_id: UUID,
    session: DatabaseDep,
    registry: BatchRegistryDep,
) -> dict[str, Any]:
    """Batch progress with per-case items."""
    batch = await BatchRepository(session).get_with_items(batch_id)
    if batch is None:
        raise BatchNotFoundError(f"Batch {batch_id} not found", details={"batch_id": str(batch_id)})

    return {
        **batch.to_dict(),
        "running": batch_id in registry,
        "items": [item.to_dict() for item in batch.items],
    }


@router.post("/{batch_id}/cancel")
async def cancel_batch(
    batch_id: UUID,
    session: DatabaseDep,
    registry: BatchRegistryDep,
) -> CancelResponse:
    """Stop a running batch before its next chunk."""
    batch = await BatchRepository(session).get(batch_id)
    if batch is None:
        raise BatchNotFoundError(f"Batch {batch_id} not found", details={"batch_id": str(batch_id)})

    if not registry.cancel(batch_id):
        raise BatchNotRunningError(
            f"Batch {batch_id} is not running",
            details={"batch_id": str(batch_id), "status": batch.status},
        )

    return CancelResponse(batch_id=str(batch_id), cancel_requested=True)
