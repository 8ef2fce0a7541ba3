"""Tests for batch dispatch."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from outreach_agent.batch.orchestration import (
    CaseOrchestrator,
    OrchestrationRequest,
    OrchestrationResult,
)
from outreach_agent.batch.processor import (
    BatchProcessingOptions,
    BatchProcessor,
    BatchStatus,
    EligibleCase,
    calculate_schedule_times,
    is_eligible,
)
from outreach_agent.config import BatchSettings
from outreach_agent.core.exceptions import RecordNotFoundError, ValidationError
from outreach_agent.db.repositories.batches import BatchRepository

NOW = datetime(2025, 1, 10, 18, 0, tzinfo=timezone.utc)
EMAIL_AT = datetime(2025, 1, 11, 18, 0, tzinfo=timezone.utc)
CALL_AT = datetime(2025, 1, 14, 0, 0, tzinfo=timezone.utc)


def eligible_cases(count: int, **overrides) -> list[EligibleCase]:
    cases = []
    for index in range(count):
        values = {
            "id": uuid4(),
            "patient_id": uuid4(),
            "patient_name": f"Patient {index}",
            "owner_name": "Dana Reyes",
            "owner_email": "dana@example.com",
            "owner_phone": "+15551230000",
        }
        values.update(overrides)
        cases.append(EligibleCase(**values))
    return cases


@pytest.fixture
def processor(session_factory, orchestrator) -> BatchProcessor:
    return BatchProcessor(session_factory, orchestrator, clock=lambda: NOW)


@pytest.fixture
def start_batch(session_factory, owner_id):
    """Persist a batch for ``cases`` and return processing options."""

    async def factory(cases, chunk_size: int = 10) -> BatchProcessingOptions:
        async with session_factory() as session:
            batch_id = await BatchProcessor.create_batch(session, owner_id, cases, EMAIL_AT, CALL_AT)
        return BatchProcessingOptions(batch_id, EMAIL_AT, CALL_AT, chunk_size=chunk_size)

    return factory


async def load_batch(session_factory, batch_id):
    async with session_factory() as session:
        batch = await BatchRepository(session).get_with_items(batch_id)
        items = {item.case_id: item for item in batch.items}
    return batch, items


class TestCreateBatch:
    """Tests for batch creation."""

    @pytest.mark.asyncio
    async def test_pending_batch_with_items(self, start_batch, session_factory, owner_id):
        cases = eligible_cases(3)

        options = await start_batch(cases)

        batch, items = await load_batch(session_factory, options.batch_id)
        assert batch.status == "pending"
        assert batch.owner_id == owner_id
        assert batch.total_cases == 3
        assert batch.processed_cases == 0
        assert batch.email_schedule_time == EMAIL_AT
        assert set(items) == {case.id for case in cases}
        assert {item.status for item in items.values()} == {"pending"}

    @pytest.mark.asyncio
    async def test_duplicate_case_rolls_back(self, session_factory, owner_id):
        case = eligible_cases(1)[0]

        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                await BatchProcessor.create_batch(session, owner_id, [case, case], EMAIL_AT, CALL_AT)

        async with session_factory() as session:
            assert await BatchRepository(session).count() == 0


class TestProcessBatch:
    """Tests for chunked dispatch."""

    @pytest.mark.asyncio
    async def test_all_cases_succeed(self, processor, start_batch, session_factory, orchestrator):
        cases = eligible_cases(4)
        options = await start_batch(cases)

        result = await processor.process_batch(cases, options)

        assert result.success
        assert result.status is BatchStatus.COMPLETED
        assert (result.processed_count, result.success_count, result.failed_count) == (4, 4, 0)

        batch, items = await load_batch(session_factory, options.batch_id)
        assert batch.status == "completed"
        assert batch.started_at == NOW
        assert batch.completed_at == NOW
        assert batch.cancelled_at is None
        assert (batch.processed_cases, batch.successful_cases, batch.failed_cases) == (4, 4, 0)

        item = items[cases[0].id]
        assert item.status == "success"
        assert item.email_id == f"email-{cases[0].id}"
        assert item.call_id == f"call-{cases[0].id}"
        assert item.email_scheduled and item.call_scheduled
        assert item.processed_at == NOW

    @pytest.mark.asyncio
    async def test_stagger_uses_position_in_whole_batch(self, processor, start_batch, orchestrator):
        cases = eligible_cases(12)
        options = await start_batch(cases)

        await processor.process_batch(cases, options)

        requests = {request.case_id: request for request in orchestrator.requests}
        for index, case in enumerate(cases):
            request = requests[case.id]
            assert request.email_scheduled_for == EMAIL_AT + timedelta(seconds=20 * index)
            assert request.call_scheduled_for == CALL_AT + timedelta(minutes=2 * index)

        # First case of the second chunk
        assert requests[cases[10].id].email_scheduled_for == EMAIL_AT + timedelta(seconds=200)
        assert requests[cases[10].id].call_scheduled_for == CALL_AT + timedelta(minutes=20)

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_chunk(self, processor, start_batch, orchestrator):
        cases = eligible_cases(7)
        options = await start_batch(cases, chunk_size=3)

        result = await processor.process_batch(cases, options)

        assert result.processed_count == 7
        assert 1 <= orchestrator.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_missing_contact_skips_channel(self, processor, start_batch, session_factory, orchestrator):
        cases = eligible_cases(1, owner_email=None)
        options = await start_batch(cases)

        await processor.process_batch(cases, options)

        assert orchestrator.requests[0].email_scheduled_for is None
        _, items = await load_batch(session_factory, options.batch_id)
        item = items[cases[0].id]
        assert item.status == "success"
        assert not item.email_scheduled
        assert item.call_scheduled

    @pytest.mark.asyncio
    async def test_partial_success(self, processor, start_batch, session_factory, orchestrator):
        cases = eligible_cases(5)
        rejected, unreachable = cases[1], cases[3]
        orchestrator.failures[rejected.id] = ["Invalid phone number", "Email bounced"]
        orchestrator.raises.add(unreachable.id)
        options = await start_batch(cases)

        result = await processor.process_batch(cases, options)

        assert not result.success
        assert result.status is BatchStatus.PARTIAL_SUCCESS
        assert (result.processed_count, result.success_count, result.failed_count) == (5, 3, 2)
        errors = {error.case_id: error for error in result.errors}
        assert errors[rejected.id].error == "Invalid phone number; Email bounced"
        assert errors[rejected.id].patient_name == "Patient 1"
        assert errors[unreachable.id].error == "Orchestration service unreachable"

        batch, items = await load_batch(session_factory, options.batch_id)
        assert batch.status == "partial_success"
        assert batch.completed_at == NOW
        assert (batch.processed_cases, batch.successful_cases, batch.failed_cases) == (5, 3, 2)
        assert {entry["case_id"] for entry in batch.error_summary} == {
            str(rejected.id),
            str(unreachable.id),
        }
        assert items[rejected.id].status == "failed"
        assert items[rejected.id].error_message == "Invalid phone number; Email bounced"
        assert items[rejected.id].email_id is None
        assert items[cases[0].id].status == "success"

    @pytest.mark.asyncio
    async def test_cancel_observed_at_chunk_boundary(
        self, processor, start_batch, session_factory, orchestrator
    ):
        cases = eligible_cases(12)
        options = await start_batch(cases)
        orchestrator.on_request = lambda request: processor.cancel_processing()

        result = await processor.process_batch(cases, options)

        # The first chunk runs to completion, the second never starts
        assert result.status is BatchStatus.CANCELLED
        assert not result.success
        assert result.processed_count == 10
        assert len(orchestrator.requests) == 10

        batch, items = await load_batch(session_factory, options.batch_id)
        assert batch.status == "cancelled"
        assert batch.cancelled_at == NOW
        assert batch.completed_at is None
        assert batch.processed_cases == 10
        assert items[cases[10].id].status == "pending"
        assert items[cases[11].id].status == "pending"

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, processor, start_batch, orchestrator):
        processor.cancel_processing()
        cases = eligible_cases(2)
        options = await start_batch(cases)

        result = await processor.process_batch(cases, options)

        assert result.status is BatchStatus.CANCELLED
        assert result.processed_count == 0
        assert orchestrator.requests == []
        assert not processor.cancelled

    @pytest.mark.asyncio
    async def test_processor_reusable_after_cancel(self, processor, start_batch):
        processor.cancel_processing()
        first = eligible_cases(1)
        await processor.process_batch(first, await start_batch(first))

        second = eligible_cases(2)
        result = await processor.process_batch(second, await start_batch(second))

        assert result.status is BatchStatus.COMPLETED
        assert result.processed_count == 2

    @pytest.mark.asyncio
    async def test_counters_consistent_after_every_case(
        self, session_factory, orchestrator, start_batch
    ):
        snapshots = []

        async def snapshot(batch_id):
            async with session_factory() as session:
                batch = await BatchRepository(session).get(batch_id)
                snapshots.append((batch.processed_cases, batch.successful_cases, batch.failed_cases))

        cases = eligible_cases(6)
        orchestrator.failures[cases[2].id] = ["rejected"]
        options = await start_batch(cases, chunk_size=2)

        class SnapshottingProcessor(BatchProcessor):
            async def _record_case(self, batch_id, case_id, item_values, counters):
                await super()._record_case(batch_id, case_id, item_values, counters)
                await snapshot(batch_id)

        await SnapshottingProcessor(session_factory, orchestrator).process_batch(cases, options)

        assert [processed for processed, _, _ in snapshots] == [1, 2, 3, 4, 5, 6]
        for processed, succeeded, failed in snapshots:
            assert succeeded + failed == processed
            assert processed <= len(cases)

    @pytest.mark.asyncio
    async def test_bookkeeping_failure_waits_for_chunk(self, session_factory, start_batch):
        cases = eligible_cases(3)
        options = await start_batch(cases)
        finished = []

        class SlowOrchestrator(CaseOrchestrator):
            async def orchestrate(self, request: OrchestrationRequest) -> OrchestrationResult:
                if request.case_id != cases[0].id:
                    await asyncio.sleep(0.05)
                    finished.append(request.case_id)
                return OrchestrationResult(success=True, call_id=f"call-{request.case_id}")

        class FailingProcessor(BatchProcessor):
            async def _record_case(self, batch_id, case_id, item_values, counters):
                raise RuntimeError("database went away")

        processor = FailingProcessor(session_factory, SlowOrchestrator())

        with pytest.raises(RuntimeError, match="database went away"):
            await processor.process_batch(cases, options)

        assert set(finished) == {cases[1].id, cases[2].id}

    @pytest.mark.asyncio
    async def test_unknown_batch_raises(self, processor):
        options = BatchProcessingOptions(uuid4(), EMAIL_AT, CALL_AT)

        with pytest.raises(RecordNotFoundError):
            await processor.process_batch(eligible_cases(1), options)

    @pytest.mark.asyncio
    async def test_custom_stagger(self, session_factory, orchestrator):
        settings = BatchSettings(email_stagger_seconds=60, call_stagger_seconds=600)
        processor = BatchProcessor(session_factory, orchestrator, settings=settings)
        options = BatchProcessingOptions(uuid4(), EMAIL_AT, CALL_AT)

        email_at, call_at = processor.staggered_times(3, options)

        assert email_at == EMAIL_AT + timedelta(minutes=3)
        assert call_at == CALL_AT + timedelta(minutes=30)


class TestEligibility:
    """Tests for eligible case selection."""

    @pytest.mark.asyncio
    async def test_filters_cases(
        self, processor, make_case, make_call, make_email, owner_id
    ):
        ready = await make_case()
        phone_only = await make_case(owner_email=None)
        await make_case(has_summary=False)
        await make_case(owner_email=None, owner_phone=None)
        await make_case(status="ongoing")
        await make_case(owner_id=uuid4())

        emailed = await make_case()
        await make_email(emailed.id, status="queued")
        bounced = await make_case()
        await make_email(bounced.id, status="failed")

        ringing = await make_case()
        await make_call(ringing.id, status="ringing")
        failed_call = await make_case()
        await make_call(failed_call.id, status="failed")

        eligible = await processor.get_eligible_cases(owner_id)

        assert {case.id for case in eligible} == {
            ready.id,
            phone_only.id,
            bounced.id,
            failed_call.id,
        }
        by_id = {case.id: case for case in eligible}
        assert by_id[ready.id].patient_name == "Biscuit"
        assert by_id[phone_only.id].owner_email is None

    @pytest.mark.asyncio
    async def test_is_eligible_with_completed_call(self, make_case, make_call, session_factory):
        from outreach_agent.db.repositories.cases import CaseRepository

        case = await make_case()
        await make_call(case.id, status="completed")

        async with session_factory() as session:
            loaded = await CaseRepository(session).get_with_activity(case.owner_id)

        assert not is_eligible(loaded[0])


class TestScheduleTimes:
    """Tests for default batch times."""

    def test_winter_defaults(self):
        times = calculate_schedule_times(now=NOW)

        # 10:00 PST next day, 16:00 PST three days out
        assert times.email_schedule_time == datetime(2025, 1, 11, 18, 0, tzinfo=timezone.utc)
        assert times.call_schedule_time == datetime(2025, 1, 14, 0, 0, tzinfo=timezone.utc)

    def test_daylight_saving(self):
        times = calculate_schedule_times(now=datetime(2025, 7, 1, 19, 0, tzinfo=timezone.utc))

        assert times.email_schedule_time == datetime(2025, 7, 2, 17, 0, tzinfo=timezone.utc)

    def test_local_date_used(self):
        """02:00 UTC is still the previous evening in Los Angeles."""
        times = calculate_schedule_times(now=datetime(2025, 1, 11, 2, 0, tzinfo=timezone.utc))

        assert times.email_schedule_time == datetime(2025, 1, 11, 18, 0, tzinfo=timezone.utc)

    def test_custom_times_and_zone(self):
        times = calculate_schedule_times(
            "09:30",
            "14:15",
            "Europe/Berlin",
            now=NOW,
            email_delay_days=0,
            call_delay_days=1,
        )

        assert times.email_schedule_time == datetime(2025, 1, 10, 8, 30, tzinfo=timezone.utc)
        assert times.call_schedule_time == datetime(2025, 1, 11, 13, 15, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["25:00", "ten", "10:00:00"])
    def test_invalid_time(self, value):
        with pytest.raises(ValidationError):
            calculate_schedule_times(email_time=value, now=NOW)

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            calculate_schedule_times(timezone_name="Mars/Olympus_Mons", now=NOW)
