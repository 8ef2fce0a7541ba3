"""Tests for the call lifecycle state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from outreach_agent.calls.lifecycle import CallLifecycleManager, report_key
from outreach_agent.core.retry import RetryOutcome
from outreach_agent.db.models.calls import CallRecordModel
from outreach_agent.db.models.cases import CaseModel

NOW = datetime(2025, 1, 10, 18, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


def status_update(call_id: str | None, status: str, **extra: Any) -> dict:
    return {"type": "status-update", "status": status, "call": {"id": call_id}, **extra}


def end_of_call(call_id: str, ended_reason: str | None = "customer-ended-call", **extra: Any) -> dict:
    message = {
        "type": "end-of-call-report",
        "endedReason": ended_reason,
        "startedAt": "2025-01-10T17:55:00Z",
        "endedAt": "2025-01-10T17:57:30.400Z",
        "call": {"id": call_id, "costs": [{"amount": 0.05}, {"amount": 0.07}]},
    }
    message.update(extra)
    return message


async def load_record(session_factory, record_id) -> CallRecordModel:
    async with session_factory() as session:
        return await session.get(CallRecordModel, record_id)


@pytest.fixture
def manager_for(session_factory, scheduler):
    """Run one event through a manager on a fresh session."""

    async def handle(message: dict, *, scheduler_override=None, enrichment=None):
        async with session_factory() as session:
            manager = CallLifecycleManager(
                session,
                scheduler_override or scheduler,
                enrichment=enrichment,
                clock=fixed_clock,
            )
            return await manager.handle_event(message)

    return handle


class TestStatusUpdate:
    """Tests for status-update events."""

    @pytest.mark.asyncio
    async def test_ringing(self, make_case, make_call, manager_for, session_factory):
        case = await make_case()
        record = await make_call(case.id)

        outcome = await manager_for(status_update(record.provider_call_id, "ringing"))

        assert outcome.handled
        assert outcome.status == "ringing"
        stored = await load_record(session_factory, record.id)
        assert stored.status == "ringing"
        assert stored.last_event_type == "status-update"

    @pytest.mark.asyncio
    async def test_in_progress_records_start_time(
        self, make_case, make_call, manager_for, session_factory
    ):
        case = await make_case()
        record = await make_call(case.id)

        await manager_for(
            status_update(record.provider_call_id, "in-progress", startedAt="2025-01-10T17:55:00Z")
        )

        stored = await load_record(session_factory, record.id)
        assert stored.status == "in_progress"
        assert stored.started_at == datetime(2025, 1, 10, 17, 55, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_unknown_status_maps_to_queued(
        self, make_case, make_call, manager_for, session_factory
    ):
        case = await make_case()
        record = await make_call(case.id, status="ringing")

        await manager_for(status_update(record.provider_call_id, "teleporting"))

        stored = await load_record(session_factory, record.id)
        assert stored.status == "queued"

    @pytest.mark.asyncio
    async def test_late_update_overwrites_terminal_status(
        self, make_case, make_call, manager_for, session_factory
    ):
        """Out-of-order delivery is applied last-write-wins."""
        case = await make_case()
        record = await make_call(case.id, status="completed", last_event_type="end-of-call-report")

        outcome = await manager_for(status_update(record.provider_call_id, "in-progress"))

        assert outcome.handled
        stored = await load_record(session_factory, record.id)
        assert stored.status == "in_progress"

    @pytest.mark.asyncio
    async def test_unknown_call_ignored(self, manager_for):
        outcome = await manager_for(status_update("does-not-exist", "ringing"))

        assert not outcome.handled
        assert outcome.ignored_reason == "unknown_call"

    @pytest.mark.asyncio
    async def test_missing_call_id_ignored(self, manager_for):
        outcome = await manager_for(status_update(None, "ringing"))

        assert outcome.ignored_reason == "missing_call_id"


class TestEndOfCallReport:
    """Tests for the authoritative end-of-call report."""

    @pytest.mark.asyncio
    async def test_completed_call(self, make_case, make_call, manager_for, session_factory, scheduler):
        case = await make_case()
        record = await make_call(case.id, status="in_progress")

        outcome = await manager_for(
            end_of_call(
                record.provider_call_id,
                transcript="AI: Hi Dana\nUser: Biscuit is doing great",
                analysis={"summary": "Recovering well", "successEvaluation": "success"},
            )
        )

        assert outcome.handled
        assert outcome.status == "completed"
        assert outcome.retry is None
        assert scheduler.scheduled == []

        stored = await load_record(session_factory, record.id)
        assert stored.status == "completed"
        assert stored.ended_reason == "customer-ended-call"
        assert stored.duration_seconds == 150
        assert stored.cost == pytest.approx(0.12)
        assert stored.summary == "Recovering well"
        assert stored.user_sentiment == "positive"
        assert stored.transcript.startswith("AI: Hi Dana")
        assert stored.final_failure is False

    @pytest.mark.asyncio
    async def test_retryable_failure_schedules_retry(
        self, make_case, make_call, manager_for, session_factory, scheduler
    ):
        case = await make_case()
        record = await make_call(case.id, status="ringing")

        outcome = await manager_for(end_of_call(record.provider_call_id, "customer-did-not-answer-dial-no-answer"))

        assert outcome.retry.outcome is RetryOutcome.RETRY
        assert outcome.retry_job_id == "job-1"
        assert scheduler.scheduled == [(str(record.id), NOW + timedelta(minutes=5))]

        stored = await load_record(session_factory, record.id)
        assert stored.status == "queued"
        assert stored.retry_count == 1
        assert stored.next_retry_at == NOW + timedelta(minutes=5)
        assert stored.last_retry_reason == "customer-did-not-answer-dial-no-answer"
        assert stored.queue_message_id == "job-1"
        assert stored.final_failure is False

    @pytest.mark.asyncio
    async def test_backoff_doubles_with_retry_count(
        self, make_case, make_call, manager_for, session_factory, scheduler
    ):
        case = await make_case()
        record = await make_call(case.id, retry_count=2)

        await manager_for(end_of_call(record.provider_call_id, "dial-busy"))

        assert scheduler.scheduled[0][1] == NOW + timedelta(minutes=20)
        stored = await load_record(session_factory, record.id)
        assert stored.retry_count == 3

    @pytest.mark.asyncio
    async def test_replayed_report_skipped(
        self, make_case, make_call, manager_for, session_factory, scheduler
    ):
        case = await make_case()
        record = await make_call(case.id)
        report = end_of_call(record.provider_call_id, "dial-busy")

        first = await manager_for(report)
        second = await manager_for(report)

        assert first.handled
        assert second.duplicate
        assert not second.handled
        assert len(scheduler.scheduled) == 1

        stored = await load_record(session_factory, record.id)
        assert stored.retry_count == 1
        assert stored.last_report_key == report_key(
            record.provider_call_id, "dial-busy", "2025-01-10T17:57:30.400Z"
        )

    @pytest.mark.asyncio
    async def test_scheduling_failure_leaves_call_failed(
        self, make_case, make_call, manager_for, session_factory, failing_scheduler
    ):
        case = await make_case()
        record = await make_call(case.id)

        outcome = await manager_for(
            end_of_call(record.provider_call_id, "dial-busy"),
            scheduler_override=failing_scheduler,
        )

        assert outcome.handled
        assert outcome.status == "failed"
        assert "Job queue rejected the request" in outcome.error

        stored = await load_record(session_factory, record.id)
        assert stored.status == "failed"
        assert stored.retry_count == 0
        assert "Job queue rejected the request" in stored.last_retry_error
        assert stored.queue_message_id is None

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, make_case, make_call, manager_for, session_factory, scheduler):
        case = await make_case()
        record = await make_call(case.id, retry_count=3, max_retries=3)

        outcome = await manager_for(end_of_call(record.provider_call_id, "dial-busy"))

        assert outcome.retry.outcome is RetryOutcome.EXHAUSTED
        assert scheduler.scheduled == []

        stored = await load_record(session_factory, record.id)
        assert stored.status == "failed"
        assert stored.final_failure is True
        assert stored.final_failure_reason == "dial-busy"

    @pytest.mark.asyncio
    async def test_permanent_failure(self, make_case, make_call, manager_for, session_factory, scheduler):
        case = await make_case()
        record = await make_call(case.id)

        outcome = await manager_for(end_of_call(record.provider_call_id, "assistant-error"))

        assert outcome.retry.outcome is RetryOutcome.DO_NOT_RETRY
        assert scheduler.scheduled == []
        stored = await load_record(session_factory, record.id)
        assert stored.final_failure is True

    @pytest.mark.asyncio
    async def test_voicemail_left_counts_as_completed(
        self, make_case, make_call, manager_for, session_factory, scheduler
    ):
        case = await make_case()
        record = await make_call(
            case.id,
            metadata_json={"voicemail_detection_enabled": True, "voicemail_hangup_on_detection": False},
        )

        outcome = await manager_for(end_of_call(record.provider_call_id, "voicemail"))

        assert outcome.status == "completed"
        assert scheduler.scheduled == []

    @pytest.mark.asyncio
    async def test_cancelled_call(self, make_case, make_call, manager_for, scheduler):
        case = await make_case()
        record = await make_call(case.id)

        outcome = await manager_for(end_of_call(record.provider_call_id, "call-cancelled"))

        assert outcome.status == "cancelled"
        assert scheduler.scheduled == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "odd_fields",
        [
            lambda call_id: {"artifact": {"structuredOutputs": []}},
            lambda call_id: {"analysis": "n/a"},
            lambda call_id: {"call": {"id": call_id, "costs": {"amount": 1}}},
            lambda call_id: {"transcript": ["AI: hi"]},
        ],
        ids=["outputs-list", "analysis-text", "costs-object", "transcript-list"],
    )
    async def test_odd_field_shape_still_completes(
        self, make_case, make_call, manager_for, session_factory, odd_fields
    ):
        case = await make_case()
        record = await make_call(case.id, status="in_progress")

        outcome = await manager_for(end_of_call(record.provider_call_id, **odd_fields(record.provider_call_id)))

        assert outcome.handled
        assert outcome.ignored_reason is None
        assert outcome.status == "completed"
        stored = await load_record(session_factory, record.id)
        assert stored.status == "completed"
        assert stored.ended_reason == "customer-ended-call"

    @pytest.mark.asyncio
    async def test_schema_columns_read_from_artifact(
        self, make_case, make_call, manager_for, session_factory
    ):
        case = await make_case()
        record = await make_call(case.id)

        await manager_for(
            end_of_call(
                record.provider_call_id,
                analysis={"summary": "ok", "structuredData": {"needs_attention": False}},
                artifact={
                    "structuredOutputs": {
                        "b2": {"name": "call_outcome", "result": {"call_outcome": "completed"}},
                    }
                },
            )
        )

        stored = await load_record(session_factory, record.id)
        assert stored.call_outcome_data == {"call_outcome": "completed"}
        assert stored.summary == "ok"

    @pytest.mark.asyncio
    async def test_critical_attention_marks_case_urgent(
        self, make_case, make_call, manager_for, session_factory
    ):
        case = await make_case()
        record = await make_call(case.id)
        outputs = {
            "a1": {
                "name": "attention_classification",
                "result": {
                    "needs_attention": True,
                    "attention_types": "health_concern",
                    "attention_severity": "critical",
                    "attention_summary": "Not eating",
                },
            },
            "b2": {"name": "call_outcome", "result": {"call_outcome": "completed"}},
        }

        await manager_for(end_of_call(record.provider_call_id, artifact={"structuredOutputs": outputs}))

        stored = await load_record(session_factory, record.id)
        assert stored.attention_types == ["health_concern"]
        assert stored.attention_severity == "critical"
        assert stored.attention_summary == "Not eating"
        assert stored.attention_flagged_at == NOW
        assert stored.call_outcome_data == {"call_outcome": "completed"}
        assert stored.structured_data["needs_attention"] is True

        async with session_factory() as session:
            stored_case = await session.get(CaseModel, case.id)
        assert stored_case.is_urgent is True

    @pytest.mark.asyncio
    async def test_routine_attention_leaves_case_alone(
        self, make_case, make_call, manager_for, session_factory
    ):
        case = await make_case()
        record = await make_call(case.id)
        outputs = {
            "a1": {
                "name": "attention_classification",
                "result": {"needs_attention": True, "attention_severity": "routine"},
            }
        }

        await manager_for(end_of_call(record.provider_call_id, artifact={"structuredOutputs": outputs}))

        async with session_factory() as session:
            stored_case = await session.get(CaseModel, case.id)
        assert stored_case.is_urgent is False

    @pytest.mark.asyncio
    async def test_transcript_handed_to_enrichment(self, make_case, make_call, manager_for):
        submitted = []

        class RecordingQueue:
            def submit(self, job):
                submitted.append(job)
                return True

        case = await make_case()
        record = await make_call(case.id, metadata_json={"clinic_name": "Oak Vet"})

        await manager_for(
            end_of_call(record.provider_call_id, transcript="hello"),
            enrichment=RecordingQueue(),
        )

        assert len(submitted) == 1
        assert submitted[0].provider_call_id == record.provider_call_id
        assert submitted[0].clinic_name == "Oak Vet"

    @pytest.mark.asyncio
    async def test_unknown_call_ignored(self, manager_for, scheduler):
        outcome = await manager_for(end_of_call("nobody", "dial-busy"))

        assert outcome.ignored_reason == "unknown_call"
        assert scheduler.scheduled == []


class TestHang:
    """Tests for hang events."""

    @pytest.mark.asyncio
    async def test_records_reason_and_time(self, make_case, make_call, manager_for, session_factory, scheduler):
        case = await make_case()
        record = await make_call(case.id, status="in_progress")

        outcome = await manager_for({"type": "hang", "call": {"id": record.provider_call_id}})

        assert outcome.handled
        assert scheduler.scheduled == []
        stored = await load_record(session_factory, record.id)
        assert stored.status == "in_progress"
        assert stored.ended_reason == "user-hangup"
        assert stored.ended_at == NOW
        assert stored.duration_seconds is None

    @pytest.mark.asyncio
    async def test_existing_values_kept(self, make_case, make_call, manager_for, session_factory):
        ended = datetime(2025, 1, 10, 17, 58, tzinfo=timezone.utc)
        case = await make_case()
        record = await make_call(case.id, ended_reason="dial-busy", ended_at=ended)

        await manager_for({"type": "hang", "call": {"id": record.provider_call_id}})

        stored = await load_record(session_factory, record.id)
        assert stored.ended_reason == "dial-busy"
        assert stored.ended_at == ended


class TestDispatch:
    """Tests for event routing."""

    @pytest.mark.asyncio
    async def test_unsupported_event(self, manager_for):
        outcome = await manager_for({"type": "transcript", "call": {"id": "x"}})

        assert outcome.ignored_reason == "unsupported_event"

    @pytest.mark.asyncio
    async def test_unreadable_call_object(self, manager_for):
        outcome = await manager_for({"type": "hang", "call": ["not", "a", "call"]})

        assert outcome.event_type == "hang"
        assert outcome.ignored_reason == "missing_call_id"
        assert outcome.to_dict()["handled"] is False

    @pytest.mark.asyncio
    async def test_no_message(self, manager_for):
        outcome = await manager_for(None)

        assert outcome.ignored_reason == "malformed_payload"
