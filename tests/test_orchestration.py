"""Tests for the per-case orchestration client."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from uuid import uuid4

import httpx
import pytest

from outreach_agent.batch.orchestration import (
    HttpCaseOrchestrator,
    OrchestrationRequest,
    OrchestrationResult,
    create_orchestrator,
)
from outreach_agent.config import OrchestrationSettings, Settings
from outreach_agent.core.exceptions import ConfigurationError, OrchestrationError

ORCHESTRATE_URL = "https://app.example.com/api/discharge/orchestrate"
EMAIL_AT = datetime(2025, 1, 11, 18, 0, tzinfo=timezone.utc)
CALL_AT = datetime(2025, 1, 14, 0, 0, tzinfo=timezone.utc)


def make_request(**overrides) -> OrchestrationRequest:
    values = {
        "case_id": uuid4(),
        "patient_name": "Biscuit",
        "owner_name": "Dana Reyes",
        "owner_email": "dana@example.com",
        "owner_phone": "+15551230000",
        "email_scheduled_for": EMAIL_AT,
        "call_scheduled_for": CALL_AT,
    }
    values.update(overrides)
    return OrchestrationRequest(**values)


def orchestrator_for(handler) -> HttpCaseOrchestrator:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpCaseOrchestrator(ORCHESTRATE_URL, token="svc-token", client=client)


class TestOrchestrationRequest:
    """Tests for the request payload."""

    def test_both_channels(self):
        request = make_request()

        payload = request.to_payload()

        assert payload["input"] == {"existingCase": {"caseId": str(request.case_id)}}
        assert payload["steps"]["prepareEmail"] is True
        assert payload["steps"]["scheduleEmail"] == {
            "recipientEmail": "dana@example.com",
            "recipientName": "Dana Reyes",
            "scheduledFor": "2025-01-11T18:00:00+00:00",
        }
        assert payload["steps"]["scheduleCall"] == {
            "phoneNumber": "+15551230000",
            "scheduledFor": "2025-01-14T00:00:00+00:00",
        }
        assert payload["options"] == {"parallel": True, "stopOnError": False, "dryRun": False}

    def test_call_only(self):
        payload = make_request(owner_email=None, email_scheduled_for=None).to_payload()

        assert payload["steps"]["prepareEmail"] is False
        assert payload["steps"]["scheduleEmail"] is False
        assert payload["steps"]["scheduleCall"]["phoneNumber"] == "+15551230000"

    def test_default_recipient_name(self):
        payload = make_request(owner_name=None).to_payload()

        assert payload["steps"]["scheduleEmail"]["recipientName"] == "Pet Owner"


class TestOrchestrationResult:
    """Tests for response decoding."""

    def test_success(self):
        result = OrchestrationResult.from_response(
            {
                "success": True,
                "data": {"emailSchedule": {"emailId": "em_1"}, "call": {"callId": "call_1"}},
            }
        )

        assert result.success
        assert result.email_id == "em_1"
        assert result.call_id == "call_1"

    def test_step_errors(self):
        result = OrchestrationResult.from_response(
            {
                "success": False,
                "metadata": {"errors": [{"step": "scheduleCall", "error": "Invalid phone"}, "boom"]},
            }
        )

        assert not result.success
        assert result.errors == ["Invalid phone", "boom"]
        assert result.error_message == "Invalid phone; boom"

    def test_generic_message_without_errors(self):
        result = OrchestrationResult.from_response({"success": False})

        assert result.error_message == "Orchestration failed"

    def test_non_object_body(self):
        result = OrchestrationResult.from_response(["unexpected"])

        assert not result.success
        assert result.errors == ["Unexpected orchestration response"]


class TestHttpCaseOrchestrator:
    """Tests for HttpCaseOrchestrator."""

    @pytest.mark.asyncio
    async def test_posts_payload(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"success": True, "data": {"call": {"callId": "call_9"}}},
            )

        request = make_request()
        result = await orchestrator_for(handler).orchestrate(request)

        assert result.success
        assert result.call_id == "call_9"
        assert str(seen[0].url) == ORCHESTRATE_URL
        assert seen[0].headers["Authorization"] == "Bearer svc-token"
        assert json.loads(seen[0].content) == request.to_payload()

    @pytest.mark.asyncio
    async def test_error_status_without_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        result = await orchestrator_for(handler).orchestrate(make_request())

        assert not result.success
        assert result.error_message == "Orchestration service returned HTTP 502"

    @pytest.mark.asyncio
    async def test_error_status_with_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"success": False, "errors": ["Case has no owner"]})

        result = await orchestrator_for(handler).orchestrate(make_request())

        assert result.error_message == "Case has no owner"

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(OrchestrationError):
            await orchestrator_for(handler).orchestrate(make_request())


class TestCreateOrchestrator:
    """Tests for create_orchestrator."""

    @pytest.mark.asyncio
    async def test_configured(self):
        settings = Settings(orchestration=OrchestrationSettings(url=ORCHESTRATE_URL, token="t"))

        orchestrator = create_orchestrator(settings)

        assert isinstance(orchestrator, HttpCaseOrchestrator)
        assert orchestrator.url == ORCHESTRATE_URL
        await orchestrator.close()

    def test_missing_url(self):
        with pytest.raises(ConfigurationError):
            create_orchestrator(Settings(orchestration=OrchestrationSettings(url="")))
