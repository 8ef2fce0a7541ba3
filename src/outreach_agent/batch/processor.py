"""Batch dispatch of discharge outreach.

Turns a set of eligible cases into scheduled emails and follow-up calls.
Cases are dispatched in chunks; every case in a chunk runs concurrently and
the chunk boundary is where cancellation is observed. Email and call times
are staggered by the case's position in the whole batch so a large batch
does not hit the owner's phones and inboxes at once.

Usage:
    processor = BatchProcessor(session_factory, orchestrator)
    batch_id = await BatchProcessor.create_batch(session, owner_id, cases, email_at, call_at)
    result = await processor.process_batch(
        cases,
        BatchProcessingOptions(batch_id, email_at, call_at),
    )
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Sequence
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach_agent.batch.orchestration import CaseOrchestrator, OrchestrationRequest
from outreach_agent.config import BatchSettings
from outreach_agent.core.exceptions import OutreachAgentError, ValidationError
from outreach_agent.core.logging import get_logger
from outreach_agent.db.base import ensure_utc, utc_now
from outreach_agent.db.models.batches import BatchItemModel, BatchModel
from outreach_agent.db.models.cases import CaseModel
from outreach_agent.db.repositories.batches import BatchItemRepository, BatchRepository
from outreach_agent.db.repositories.cases import CaseRepository

log = get_logger(__name__)

ACTIVE_EMAIL_STATUSES = frozenset({"queued", "sent"})
ACTIVE_CALL_STATUSES = frozenset({"queued", "ringing", "in_progress", "completed"})

DEFAULT_PATIENT_NAME = "Unknown Patient"


class BatchStatus(str, Enum):
    """Batch lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL_SUCCESS = "partial_success"
    CANCELLED = "cancelled"


class BatchItemStatus(str, Enum):
    """Per-case outcome within a batch."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class EligibleCase:
    """A case that can receive discharge outreach."""

    id: UUID
    patient_id: UUID | None = None
    patient_name: str = DEFAULT_PATIENT_NAME
    owner_name: str | None = None
    owner_email: str | None = None
    owner_phone: str | None = None
    has_discharge_summary: bool = True
    has_scheduled_email: bool = False
    has_scheduled_call: bool = False

    @classmethod
    def from_model(cls, case: CaseModel) -> "EligibleCase":
        return cls(
            id=case.id,
            patient_id=case.patient_id,
            patient_name=case.patient_name or DEFAULT_PATIENT_NAME,
            owner_name=case.owner_name,
            owner_email=case.owner_email,
            owner_phone=case.owner_phone,
            has_discharge_summary=case.has_summary,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "patient_id": str(self.patient_id) if self.patient_id else None,
            "patient_name": self.patient_name,
            "owner_name": self.owner_name,
            "owner_email": self.owner_email,
            "owner_phone": self.owner_phone,
            "has_discharge_summary": self.has_discharge_summary,
            "has_scheduled_email": self.has_scheduled_email,
            "has_scheduled_call": self.has_scheduled_call,
        }


@dataclass
class BatchProcessingOptions:
    batch_id: UUID
    email_schedule_time: datetime
    call_schedule_time: datetime
    chunk_size: int = 10


@dataclass
class CaseError:
    """A case that could not be dispatched."""

    case_id: UUID
    patient_name: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "case_id": str(self.case_id),
            "patient_name": self.patient_name,
            "error": self.error,
        }


@dataclass
class CaseResult:
    success: bool
    email_id: str | None = None
    call_id: str | None = None
    error: str | None = None


@dataclass
class BatchProcessingResult:
    """Summary returned once a batch run ends."""

    success: bool
    status: BatchStatus
    processed_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    errors: list[CaseError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "processed_count": self.processed_count,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass
class ScheduleTimes:
    email_schedule_time: datetime
    call_schedule_time: datetime


def is_eligible(case: CaseModel) -> bool:
    """Whether a loaded case still needs outreach."""
    if not case.has_summary:
        return False
    if not (case.owner_email or case.owner_phone):
        return False
    if any(email.status in ACTIVE_EMAIL_STATUSES for email in case.scheduled_emails):
        return False
    if any(call.status in ACTIVE_CALL_STATUSES for call in case.calls):
        return False
    return True


async def load_eligible_cases(session: AsyncSession, owner_id: UUID) -> list[EligibleCase]:
    """Owner's completed cases that still need outreach, newest first."""
    cases = await CaseRepository(session).get_with_activity(owner_id)
    eligible = [EligibleCase.from_model(case) for case in cases if is_eligible(case)]

    log.info(
        "Eligible cases loaded",
        owner_id=str(owner_id),
        completed=len(cases),
        eligible=len(eligible),
    )
    return eligible


def _parse_wall_clock(value: str) -> time:
    try:
        hours, minutes = value.split(":")
        return time(hour=int(hours), minute=int(minutes))
    except ValueError as e:
        raise ValidationError(
            f"Invalid time of day: {value!r}, expected HH:MM",
            details={"value": value},
            cause=e,
        ) from e


def calculate_schedule_times(
    email_time: str = "10:00",
    call_time: str = "16:00",
    timezone_name: str = "America/Los_Angeles",
    now: datetime | None = None,
    *,
    email_delay_days: int = 1,
    call_delay_days: int = 3,
) -> ScheduleTimes:
    """Default batch times: email tomorrow and call in three days.

    Times are local wall-clock times in ``timezone_name``; the result is
    in UTC.

    Raises:
        ValidationError: For a malformed time or unknown timezone
    """
    try:
        zone = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(
            f"Unknown timezone: {timezone_name}",
            details={"timezone": timezone_name},
            cause=e,
        ) from e

    today: date = (ensure_utc(now) if now else utc_now()).astimezone(zone).date()

    def at(days: int, wall_clock: str) -> datetime:
        local = datetime.combine(today + timedelta(days=days), _parse_wall_clock(wall_clock), tzinfo=zone)
        return local.astimezone(timezone.utc)

    return ScheduleTimes(
        email_schedule_time=at(email_delay_days, email_time),
        call_schedule_time=at(call_delay_days, call_time),
    )


class BatchProcessor:
    """Dispatches one batch of cases.

    One processor runs one batch at a time. Bookkeeping writes go through
    short sessions of their own, committed after each case, so progress is
    visible while the batch runs. A bookkeeping failure aborts the run;
    per-case failures never do.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: CaseOrchestrator,
        settings: BatchSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._orchestrator = orchestrator
        self._settings = settings or BatchSettings()
        self._clock = clock
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel_processing(self) -> None:
        """Stop before the next chunk. Cases already dispatched finish."""
        self._cancelled = True
        log.info("Batch cancellation requested")

    # ========================================================================
    # Eligibility
    # ========================================================================

    async def get_eligible_cases(self, owner_id: UUID) -> list[EligibleCase]:
        """Owner's completed cases that still need outreach, newest first."""
        async with self._session_factory() as session:
            return await load_eligible_cases(session, owner_id)

    # ========================================================================
    # Processing
    # ========================================================================

    def staggered_times(
        self,
        index: int,
        options: BatchProcessingOptions,
    ) -> tuple[datetime, datetime]:
        """Email and call times for the case at ``index`` in the batch."""
        email_at = options.email_schedule_time + timedelta(
            seconds=index * self._settings.email_stagger_seconds
        )
        call_at = options.call_schedule_time + timedelta(
            seconds=index * self._settings.call_stagger_seconds
        )
        return email_at, call_at

    async def process_batch(
        self,
        cases: Sequence[EligibleCase],
        options: BatchProcessingOptions,
    ) -> BatchProcessingResult:
        """Dispatch every case of a batch.

        A cancellation requested before the run starts is honoured before
        the first chunk. The flag is cleared once the run ends, so the
        processor can be reused.

        Raises:
            RecordNotFoundError: If the batch or one of its items is missing
        """
        batch_id = options.batch_id
        chunk_size = max(1, options.chunk_size)

        processed = succeeded = failed = 0
        errors: list[CaseError] = []

        log.info("Batch processing started", batch_id=str(batch_id), total=len(cases), chunk_size=chunk_size)
        await self._update_batch_status(batch_id, BatchStatus.PROCESSING)

        for start in range(0, len(cases), chunk_size):
            if self._cancelled:
                log.info("Batch cancelled", batch_id=str(batch_id), processed=processed)
                break

            chunk = cases[start:start + chunk_size]
            tasks = [
                asyncio.create_task(self._run_case(case, *self.staggered_times(start + offset, options)))
                for offset, case in enumerate(chunk)
            ]

            try:
                for next_done in asyncio.as_completed(tasks):
                    case, result = await next_done
                    processed += 1
                    if result.success:
                        succeeded += 1
                        item_values = {
                            "status": BatchItemStatus.SUCCESS.value,
                            "email_id": result.email_id,
                            "call_id": result.call_id,
                            "error_message": None,
                        }
                    else:
                        failed += 1
                        message = result.error or "Unknown error"
                        errors.append(CaseError(case.id, case.patient_name, message))
                        item_values = {
                            "status": BatchItemStatus.FAILED.value,
                            "email_id": None,
                            "call_id": None,
                            "error_message": message,
                        }

                    await self._record_case(
                        batch_id,
                        case.id,
                        item_values,
                        {
                            "processed_cases": processed,
                            "successful_cases": succeeded,
                            "failed_cases": failed,
                        },
                    )
            except Exception:
                # Cases already handed to the orchestrator run to completion
                outstanding = [task for task in tasks if not task.done()]
                await asyncio.gather(*outstanding, return_exceptions=True)
                log.exception(
                    "Batch bookkeeping failed",
                    batch_id=str(batch_id),
                    processed=processed,
                    awaited_in_flight=len(outstanding),
                )
                raise

            log.debug(
                "Batch chunk finished",
                batch_id=str(batch_id),
                chunk_start=start,
                chunk_cases=len(chunk),
                processed=processed,
            )

        cancelled, self._cancelled = self._cancelled, False
        if cancelled:
            final = BatchStatus.CANCELLED
        elif failed:
            final = BatchStatus.PARTIAL_SUCCESS
        else:
            final = BatchStatus.COMPLETED

        await self._update_batch_status(batch_id, final, errors)

        log.info(
            "Batch processing finished",
            batch_id=str(batch_id),
            status=final.value,
            processed=processed,
            succeeded=succeeded,
            failed=failed,
        )
        return BatchProcessingResult(
            success=failed == 0 and not cancelled,
            status=final,
            processed_count=processed,
            success_count=succeeded,
            failed_count=failed,
            errors=errors,
        )

    async def _run_case(
        self,
        case: EligibleCase,
        email_at: datetime,
        call_at: datetime,
    ) -> tuple[EligibleCase, CaseResult]:
        return case, await self.process_single_case(case, email_at, call_at)

    async def process_single_case(
        self,
        case: EligibleCase,
        email_at: datetime,
        call_at: datetime,
    ) -> CaseResult:
        """Orchestrate one case. Failures come back as a result."""
        request = OrchestrationRequest(
            case_id=case.id,
            patient_name=case.patient_name,
            owner_name=case.owner_name,
            owner_email=case.owner_email,
            owner_phone=case.owner_phone,
            email_scheduled_for=email_at if case.owner_email else None,
            call_scheduled_for=call_at if case.owner_phone else None,
        )

        try:
            result = await self._orchestrator.orchestrate(request)
        except Exception as e:
            log.warning("Case orchestration raised", case_id=str(case.id), error=str(e))
            message = e.message if isinstance(e, OutreachAgentError) else str(e)
            return CaseResult(success=False, error=message or "Unknown error")

        if not result.success:
            return CaseResult(success=False, error=result.error_message)

        return CaseResult(success=True, email_id=result.email_id, call_id=result.call_id)

    # ========================================================================
    # Bookkeeping
    # ========================================================================

    async def _record_case(
        self,
        batch_id: UUID,
        case_id: UUID,
        item_values: dict[str, Any],
        counters: dict[str, int],
    ) -> None:
        item_values = {
            **item_values,
            "email_scheduled": bool(item_values.get("email_id")),
            "call_scheduled": bool(item_values.get("call_id")),
            "processed_at": self._clock(),
        }
        async with self._session_factory() as session:
            await BatchItemRepository(session).update_by_key(batch_id, case_id, item_values)
            await BatchRepository(session).update_fields(batch_id, counters)
            await session.commit()

    async def _update_batch_status(
        self,
        batch_id: UUID,
        status: BatchStatus,
        errors: list[CaseError] | None = None,
    ) -> None:
        values: dict[str, Any] = {"status": status.value}
        now = self._clock()
        if status is BatchStatus.PROCESSING:
            values["started_at"] = now
        elif status in (BatchStatus.COMPLETED, BatchStatus.PARTIAL_SUCCESS):
            values["completed_at"] = now
        elif status is BatchStatus.CANCELLED:
            values["cancelled_at"] = now

        if errors:
            values["error_summary"] = [error.to_dict() for error in errors]

        async with self._session_factory() as session:
            await BatchRepository(session).update_fields(batch_id, values)
            await session.commit()

    # ========================================================================
    # Batch creation
    # ========================================================================

    @staticmethod
    async def create_batch(
        session: AsyncSession,
        owner_id: UUID,
        cases: Sequence[EligibleCase],
        email_schedule_time: datetime,
        call_schedule_time: datetime,
    ) -> UUID:
        """Create a pending batch with one pending item per case.

        Batch and items are committed together or not at all.
        """
        batch = BatchModel(
            owner_id=owner_id,
            status=BatchStatus.PENDING.value,
            total_cases=len(cases),
            email_schedule_time=email_schedule_time,
            call_schedule_time=call_schedule_time,
        )
        try:
            await BatchRepository(session).create(batch)
            await BatchItemRepository(session).create_multi(
                [
                    BatchItemModel(
                        batch_id=batch.id,
                        case_id=case.id,
                        patient_id=case.patient_id,
                        status=BatchItemStatus.PENDING.value,
                    )
                    for case in cases
                ]
            )
            await session.commit()
        except Exception:
            await session.rollback()
            log.exception("Failed to create batch", owner_id=str(owner_id), total=len(cases))
            raise

        log.info(
            "Batch created",
            batch_id=str(batch.id),
            owner_id=str(owner_id),
            total=len(cases),
        )
        return batch.id
