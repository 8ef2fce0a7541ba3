"""Per-case orchestration client.

The orchestration service prepares and schedules the discharge email and
follow-up call for one case. The batch processor treats it as an opaque
async call and never retries it; call retries happen later, per call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx

from outreach_agent.config import Settings
from outreach_agent.core.exceptions import ConfigurationError, OrchestrationError
from outreach_agent.core.logging import get_logger

log = get_logger(__name__)


@dataclass
class OrchestrationRequest:
    """Work requested for one case."""

    case_id: UUID
    patient_name: str
    owner_name: str | None = None
    owner_email: str | None = None
    owner_phone: str | None = None
    email_scheduled_for: datetime | None = None
    call_scheduled_for: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        """Request body understood by the orchestration service."""
        steps: dict[str, Any] = {
            "generateSummary": False,
            "prepareEmail": False,
            "scheduleEmail": False,
            "scheduleCall": False,
        }
        if self.owner_email and self.email_scheduled_for:
            steps["prepareEmail"] = True
            steps["scheduleEmail"] = {
                "recipientEmail": self.owner_email,
                "recipientName": self.owner_name or "Pet Owner",
                "scheduledFor": self.email_scheduled_for.isoformat(),
            }
        if self.owner_phone and self.call_scheduled_for:
            steps["scheduleCall"] = {
                "phoneNumber": self.owner_phone,
                "scheduledFor": self.call_scheduled_for.isoformat(),
            }

        return {
            "input": {"existingCase": {"caseId": str(self.case_id)}},
            "steps": steps,
            "options": {"parallel": True, "stopOnError": False, "dryRun": False},
        }


@dataclass
class OrchestrationResult:
    """Outcome of orchestrating one case."""

    success: bool
    email_id: str | None = None
    call_id: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def error_message(self) -> str:
        return "; ".join(self.errors) if self.errors else "Orchestration failed"

    @classmethod
    def from_response(cls, body: Any) -> "OrchestrationResult":
        """Read the service's ``{success, data, metadata}`` response."""
        if not isinstance(body, dict):
            return cls(success=False, errors=["Unexpected orchestration response"])

        data = body.get("data") or {}
        email = data.get("emailSchedule") or {}
        call = data.get("call") or {}
        raw_errors = (body.get("metadata") or {}).get("errors") or body.get("errors") or []

        errors: list[str] = []
        for entry in raw_errors:
            if isinstance(entry, dict):
                errors.append(str(entry.get("error") or entry.get("message") or entry))
            else:
                errors.append(str(entry))

        return cls(
            success=body.get("success") is True,
            email_id=email.get("emailId") if isinstance(email, dict) else None,
            call_id=call.get("callId") if isinstance(call, dict) else None,
            errors=errors,
        )


class CaseOrchestrator(ABC):
    """Abstract per-case orchestration collaborator."""

    @abstractmethod
    async def orchestrate(self, request: OrchestrationRequest) -> OrchestrationResult:
        """Schedule email and call for one case.

        Raises:
            OrchestrationError: If the service cannot be reached
        """

    async def close(self) -> None:
        """Release resources held by the orchestrator."""


class HttpCaseOrchestrator(CaseOrchestrator):
    """Orchestration over HTTP."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    async def orchestrate(self, request: OrchestrationRequest) -> OrchestrationResult:
        try:
            response = await self._client.post(
                self.url,
                json=request.to_payload(),
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise OrchestrationError(
                f"Orchestration service unreachable: {e}",
                details={"case_id": str(request.case_id)},
                cause=e,
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400 and not isinstance(body, dict):
            return OrchestrationResult(
                success=False,
                errors=[f"Orchestration service returned HTTP {response.status_code}"],
            )

        result = OrchestrationResult.from_response(body)
        log.debug(
            "Case orchestrated",
            case_id=str(request.case_id),
            success=result.success,
            email_id=result.email_id,
            call_id=result.call_id,
        )
        return result

    async def close(self) -> None:
        await self._client.aclose()


def create_orchestrator(settings: Settings) -> CaseOrchestrator:
    """Create the orchestrator configured in settings.

    Raises:
        ConfigurationError: If no orchestration URL is configured
    """
    config = settings.orchestration
    if not config.url:
        raise ConfigurationError("Orchestration service URL is not configured")

    log.info("Initializing case orchestrator", url=config.url)
    return HttpCaseOrchestrator(
        url=config.url,
        token=config.token or None,
        timeout=config.timeout_seconds,
    )
