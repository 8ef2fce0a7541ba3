"""Call lifecycle state machine.

Drives call records from voice provider webhook events:

    queued -> ringing / in_progress -> completed | failed | cancelled
                                   failed -> queued (retry scheduled)

Only the end-of-call report is authoritative for the terminal status and
is the only event that may schedule a retry. Status updates and hang
signals are applied last-write-wins. Events for unknown calls are logged
and ignored, since the provider delivers duplicates and out-of-order
events as a matter of course.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.calls.enrichment import EnrichmentQueue, TranscriptJob
from outreach_agent.calls.events import (
    EventType,
    WebhookMessage,
    enrich_call_from_message,
    parse_webhook_message,
)
from outreach_agent.calls.scheduler import CallScheduler
from outreach_agent.calls.status import (
    CallStatus,
    calculate_duration,
    calculate_total_cost,
    extract_sentiment,
    is_terminal_status,
    map_ended_reason_to_status,
    map_provider_status,
    parse_timestamp,
)
from outreach_agent.calls.structured_output import (
    StructuredOutputs,
    parse_all_structured_outputs,
)
from outreach_agent.config import RetrySettings
from outreach_agent.core.logging import get_logger
from outreach_agent.core.retry import RetryDecision, RetryOutcome, decide_retry
from outreach_agent.db.base import utc_now
from outreach_agent.db.models.calls import CallRecordModel
from outreach_agent.db.repositories.calls import CallRecordRepository
from outreach_agent.db.repositories.cases import CaseRepository

log = get_logger(__name__)

DEFAULT_HANG_REASON = "user-hangup"


@dataclass
class EventOutcome:
    """What handling one webhook event did."""

    event_type: str | None
    handled: bool = False
    provider_call_id: str | None = None
    record_id: UUID | None = None
    status: str | None = None
    ignored_reason: str | None = None
    duplicate: bool = False
    retry: RetryDecision | None = None
    retry_job_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "handled": self.handled,
            "provider_call_id": self.provider_call_id,
            "record_id": str(self.record_id) if self.record_id else None,
            "status": self.status,
            "ignored_reason": self.ignored_reason,
            "duplicate": self.duplicate,
            "retry": self.retry.outcome.value if self.retry else None,
            "retry_job_id": self.retry_job_id,
            "error": self.error,
        }


def report_key(provider_call_id: str, ended_reason: str | None, ended_at: str | None) -> str:
    """Identity of an end-of-call report, used to skip replays."""
    return f"{provider_call_id}|{ended_reason or ''}|{ended_at or ''}"


class CallLifecycleManager:
    """Applies webhook events to call records.

    Usage:
        manager = CallLifecycleManager(session, scheduler)
        outcome = await manager.handle_event(payload["message"])

    Each handler commits its own changes so background work started
    afterwards sees them.
    """

    def __init__(
        self,
        session: AsyncSession,
        scheduler: CallScheduler,
        *,
        enrichment: EnrichmentQueue | None = None,
        retry_settings: RetrySettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session = session
        self._calls = CallRecordRepository(session)
        self._cases = CaseRepository(session)
        self._scheduler = scheduler
        self._enrichment = enrichment
        self._retry = retry_settings or RetrySettings()
        self._clock = clock

    async def handle_event(self, message: WebhookMessage | Mapping[str, Any] | None) -> EventOutcome:
        """Dispatch one webhook message by type."""
        if message is not None and not isinstance(message, WebhookMessage):
            message = parse_webhook_message({"message": dict(message)})
        if message is None:
            return EventOutcome(event_type=None, ignored_reason="malformed_payload")

        if message.type == EventType.STATUS_UPDATE.value:
            return await self.handle_status_update(message)
        if message.type == EventType.END_OF_CALL_REPORT.value:
            return await self.handle_end_of_call_report(message)
        if message.type == EventType.HANG.value:
            return await self.handle_hang(message)

        log.debug("Ignoring webhook event", event_type=message.type, call_id=message.call_id)
        return EventOutcome(
            event_type=message.type,
            provider_call_id=message.call_id,
            ignored_reason="unsupported_event",
        )

    async def _find_record(
        self,
        event_type: str,
        provider_call_id: str | None,
    ) -> tuple[CallRecordModel | None, EventOutcome]:
        outcome = EventOutcome(event_type=event_type, provider_call_id=provider_call_id)

        if not provider_call_id:
            log.warning("Webhook event without call id", event_type=event_type)
            outcome.ignored_reason = "missing_call_id"
            return None, outcome

        record = await self._calls.get_by_provider_call_id(provider_call_id)
        if record is None:
            log.warning("Call not found for webhook event", event_type=event_type, call_id=provider_call_id)
            outcome.ignored_reason = "unknown_call"
            return None, outcome

        outcome.record_id = record.id
        return record, outcome

    # ========================================================================
    # status-update
    # ========================================================================

    async def handle_status_update(self, message: WebhookMessage) -> EventOutcome:
        """Apply a provider status change. Never terminal side effects."""
        event_type = EventType.STATUS_UPDATE.value
        record, outcome = await self._find_record(event_type, message.call_id)
        if record is None:
            return outcome

        provider_status = message.status or (message.call.status if message.call else None)
        status = map_provider_status(provider_status)

        if is_terminal_status(record.status) and status.value != record.status:
            # Last write wins; flagged so a late event is visible in logs
            log.warning(
                "Stale status update overwrites terminal status",
                call_id=message.call_id,
                record_id=str(record.id),
                current_status=record.status,
                current_event=record.last_event_type,
                new_status=status.value,
            )

        updates: dict[str, Any] = {
            "status": status.value,
            "last_event_type": event_type,
        }

        started_at = parse_timestamp(
            message.started_at or (message.call.started_at if message.call else None)
        )
        if started_at is not None:
            updates["started_at"] = started_at

        await self._calls.apply(record, updates)
        await self._session.commit()

        log.info(
            "Call status updated",
            call_id=message.call_id,
            record_id=str(record.id),
            provider_status=provider_status,
            status=status.value,
        )
        outcome.handled = True
        outcome.status = status.value
        return outcome

    # ========================================================================
    # end-of-call-report
    # ========================================================================

    async def handle_end_of_call_report(self, message: WebhookMessage) -> EventOutcome:
        """Apply the authoritative end-of-call report.

        Replays of an already applied report are skipped, so cost is never
        double counted and a retry is never scheduled twice.
        """
        event_type = EventType.END_OF_CALL_REPORT.value
        call = enrich_call_from_message(message)
        record, outcome = await self._find_record(event_type, call.id if call else None)
        if record is None:
            return outcome

        key = report_key(call.id, call.ended_reason, call.ended_at)
        if record.last_report_key == key:
            log.info("Duplicate end-of-call report skipped", call_id=call.id, record_id=str(record.id))
            outcome.duplicate = True
            outcome.status = record.status
            return outcome

        metadata = record.metadata_dict
        final_status = map_ended_reason_to_status(call.ended_reason, metadata)

        started_at = parse_timestamp(call.started_at) or record.started_at
        ended_at = parse_timestamp(call.ended_at) or record.ended_at
        duration = calculate_duration(started_at, ended_at)
        cost = calculate_total_cost(call.costs)
        sentiment = extract_sentiment(call.analysis)
        structured = parse_all_structured_outputs(call.structured_payload, call.structured_outputs)

        updates: dict[str, Any] = {
            "status": final_status.value,
            "ended_reason": call.ended_reason,
            "started_at": started_at,
            "ended_at": ended_at,
            "duration_seconds": duration,
            "cost": cost,
            "transcript": call.transcript,
            "transcript_messages": call.transcript_messages,
            "recording_url": call.recording_url,
            "stereo_recording_url": call.stereo_recording_url,
            "call_analysis": call.analysis or None,
            "summary": call.analysis.get("summary"),
            "success_evaluation": _as_text(call.analysis.get("successEvaluation")),
            "user_sentiment": sentiment,
            "structured_data": structured.flat or None,
            "last_event_type": event_type,
            "last_report_key": key,
            **structured.column_values(),
        }
        if call.customer_number and not record.customer_phone:
            updates["customer_phone"] = call.customer_number

        await self._apply_attention(record, structured, updates)

        if final_status is CallStatus.FAILED:
            outcome.retry = await self._apply_retry_policy(record, call.ended_reason, metadata, updates, outcome)

        await self._calls.apply(record, updates)
        await self._session.commit()

        log.info(
            "Call ended",
            call_id=call.id,
            record_id=str(record.id),
            status=record.status,
            ended_reason=call.ended_reason,
            duration=duration,
            cost=cost,
            sentiment=sentiment,
            has_transcript=bool(call.transcript),
            has_recording=bool(call.recording_url),
            needs_attention=structured.attention.needs_attention,
        )

        if self._enrichment is not None and call.transcript:
            self._enrichment.submit(
                TranscriptJob(
                    provider_call_id=call.id,
                    transcript=call.transcript,
                    clinic_name=metadata.get("clinic_name"),
                )
            )

        outcome.handled = True
        outcome.status = record.status
        return outcome

    async def _apply_attention(
        self,
        record: CallRecordModel,
        structured: StructuredOutputs,
        updates: dict[str, Any],
    ) -> None:
        attention = structured.attention
        if not attention.needs_attention:
            return

        log.info(
            "Attention case detected",
            record_id=str(record.id),
            case_id=str(record.case_id),
            attention_types=attention.attention_types,
            severity=attention.attention_severity,
        )
        updates.update(
            attention_types=attention.attention_types,
            attention_severity=attention.attention_severity,
            attention_summary=attention.attention_summary,
            attention_flagged_at=self._clock(),
        )

        if attention.is_critical:
            touched = await self._cases.mark_urgent(record.case_id)
            if touched:
                log.info("Case marked urgent", case_id=str(record.case_id), record_id=str(record.id))
            else:
                log.warning("Case for critical call not found", case_id=str(record.case_id))

    async def _apply_retry_policy(
        self,
        record: CallRecordModel,
        ended_reason: str | None,
        metadata: Mapping[str, Any],
        updates: dict[str, Any],
        outcome: EventOutcome,
    ) -> RetryDecision:
        decision = decide_retry(
            ended_reason,
            record.retry_count,
            record.max_retries,
            metadata,
            base_delay_minutes=self._retry.base_delay_minutes,
            retryable_reasons=self._retry.retryable_reasons,
        )

        if decision.outcome is RetryOutcome.EXHAUSTED:
            log.info(
                "Max retries reached",
                record_id=str(record.id),
                retry_count=record.retry_count,
                max_retries=record.max_retries,
                ended_reason=ended_reason,
            )
            updates.update(final_failure=True, final_failure_reason=ended_reason)
            return decision

        if decision.outcome is RetryOutcome.DO_NOT_RETRY:
            log.info("Call failed permanently", record_id=str(record.id), ended_reason=ended_reason)
            updates.update(final_failure=True, final_failure_reason=ended_reason)
            return decision

        next_retry_at = self._clock() + decision.delay
        try:
            job_id = await self._scheduler.schedule(record.id, next_retry_at)
        except Exception as e:
            log.exception(
                "Failed to schedule retry",
                record_id=str(record.id),
                retry_count=record.retry_count,
            )
            updates["last_retry_error"] = str(e)
            outcome.error = str(e)
            return decision

        updates.update(
            status=CallStatus.QUEUED.value,
            retry_count=record.retry_count + 1,
            next_retry_at=next_retry_at,
            last_retry_reason=ended_reason,
            last_retry_error=None,
            queue_message_id=job_id,
        )
        outcome.retry_job_id = job_id

        log.info(
            "Retry scheduled",
            record_id=str(record.id),
            retry_count=record.retry_count + 1,
            max_retries=record.max_retries,
            delay_minutes=int(decision.delay.total_seconds() // 60),
            next_retry_at=next_retry_at.isoformat(),
            job_id=job_id,
        )
        return decision

    # ========================================================================
    # hang
    # ========================================================================

    async def handle_hang(self, message: WebhookMessage) -> EventOutcome:
        """Record that the call dropped. Never schedules a retry."""
        event_type = EventType.HANG.value
        record, outcome = await self._find_record(event_type, message.call_id)
        if record is None:
            return outcome

        call = message.call
        updates: dict[str, Any] = {"last_event_type": event_type}
        if not record.ended_reason:
            updates["ended_reason"] = (call.ended_reason if call else None) or DEFAULT_HANG_REASON
        if record.ended_at is None:
            updates["ended_at"] = parse_timestamp(call.ended_at if call else None) or self._clock()

        await self._calls.apply(record, updates)
        await self._session.commit()

        log.info(
            "Call hang recorded",
            call_id=message.call_id,
            record_id=str(record.id),
            ended_reason=record.ended_reason,
        )
        outcome.handled = True
        outcome.status = record.status
        return outcome


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)
