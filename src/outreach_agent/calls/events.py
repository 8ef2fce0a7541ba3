"""Voice provider webhook payloads.

The provider posts ``{"message": {...}}`` bodies with camelCase keys. Models
here ignore unknown fields and treat every field as optional so a drifting
payload never fails to decode; the lifecycle manager decides what a
missing field means.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, ValidatorFunctionWrapHandler, field_validator
from pydantic.alias_generators import to_camel

from outreach_agent.core.logging import get_logger

log = get_logger(__name__)


class EventType(str, Enum):
    """Webhook message kinds this service acts on."""

    STATUS_UPDATE = "status-update"
    END_OF_CALL_REPORT = "end-of-call-report"
    HANG = "hang"


class ProviderModel(BaseModel):
    """Lenient camelCase payload model."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    @field_validator("*", mode="wrap")
    @classmethod
    def drop_unexpected_shape(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
        """A field of the wrong shape reads as absent instead of failing the message."""
        try:
            return handler(value)
        except ValidationError:
            return None


class Customer(ProviderModel):
    number: str | None = None
    name: str | None = None


class Artifact(ProviderModel):
    transcript: str | None = None
    messages: list[Any] | None = None
    recording_url: str | None = None
    stereo_recording_url: str | None = None
    structured_outputs: dict[str, Any] | None = None


class ProviderCall(ProviderModel):
    """The ``call`` object embedded in every message."""

    id: str | None = None
    type: str | None = None
    status: str | None = None
    assistant_id: str | None = None
    started_at: str | None = None
    ended_at: str | None = None
    ended_reason: str | None = None
    transcript: str | None = None
    recording_url: str | None = None
    messages: list[Any] | None = None
    costs: list[Any] | None = None
    analysis: dict[str, Any] | None = None
    customer: Customer | None = None
    metadata: dict[str, Any] | None = None


class WebhookMessage(ProviderModel):
    """One webhook message.

    status-update messages carry ``status``; end-of-call reports carry
    the message-level timing, transcript, analysis and artifact fields.
    """

    type: str | None = None
    call: ProviderCall | None = None
    timestamp: Any = None

    status: str | None = None
    started_at: str | None = None
    ended_at: str | None = None
    ended_reason: str | None = None
    transcript: str | None = None
    recording_url: str | None = None
    stereo_recording_url: str | None = None
    analysis: dict[str, Any] | None = None
    cost: Any = None
    artifact: Artifact | None = None

    @property
    def call_id(self) -> str | None:
        return self.call.id if self.call else None


class WebhookEnvelope(ProviderModel):
    message: WebhookMessage | None = None


def _fallback_message(raw: Any) -> WebhookMessage | None:
    """Keep the event type and call id of a message whose body failed to decode."""
    if not isinstance(raw, dict):
        return None

    event_type = raw.get("type")
    call = raw.get("call")
    call_id = call.get("id") if isinstance(call, dict) else None
    return WebhookMessage.model_construct(
        type=event_type if isinstance(event_type, str) else None,
        call=ProviderCall.model_construct(id=str(call_id)) if call_id is not None else None,
    )


def parse_webhook_message(payload: Any) -> WebhookMessage | None:
    """Decode a raw webhook body. Returns None when it cannot be read.

    Fields of an unexpected shape are dropped one by one. If the message
    still fails to decode, its type and call id are kept so the event can
    be dispatched.
    """
    if not isinstance(payload, dict):
        log.warning("Webhook body is not an object", body_type=type(payload).__name__)
        return None

    try:
        envelope = WebhookEnvelope.model_validate(payload)
    except ValidationError as e:
        log.warning("Malformed webhook payload", errors=e.error_count())
        return _fallback_message(payload.get("message"))

    if envelope.message is None:
        message = _fallback_message(payload.get("message"))
        if message is None:
            log.warning("Webhook payload without message")
        return message
    return envelope.message


@dataclass
class EnrichedCall:
    """Call data merged from the message and its embedded call object."""

    id: str
    status: str | None = None
    started_at: str | None = None
    ended_at: str | None = None
    ended_reason: str | None = None
    transcript: str | None = None
    transcript_messages: list[Any] | None = None
    recording_url: str | None = None
    stereo_recording_url: str | None = None
    analysis: dict[str, Any] = field(default_factory=dict)
    costs: list[Any] | None = None
    structured_payload: dict[str, Any] | None = None
    structured_outputs: dict[str, Any] | None = None
    customer_number: str | None = None


def _as_amount(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def enrich_call_from_message(message: WebhookMessage) -> EnrichedCall | None:
    """Merge an end-of-call report into one view of the call.

    Message-level fields win over the embedded call. A single message
    cost becomes one ``total`` cost entry when the call carries no cost
    breakdown. Returns None when the message has no call id.
    """
    call = message.call
    if call is None or not call.id:
        return None

    artifact = message.artifact or Artifact()
    analysis = message.analysis if message.analysis is not None else (call.analysis or {})

    costs = call.costs
    message_cost = _as_amount(message.cost)
    if costs is None and message_cost:
        costs = [{"amount": message_cost, "description": "total"}]

    structured_payload = analysis.get("structuredData")
    if not isinstance(structured_payload, dict):
        structured_payload = artifact.structured_outputs

    return EnrichedCall(
        id=call.id,
        status=call.status,
        started_at=message.started_at or call.started_at,
        ended_at=message.ended_at or call.ended_at,
        ended_reason=message.ended_reason or call.ended_reason,
        transcript=message.transcript or call.transcript or artifact.transcript,
        transcript_messages=call.messages or artifact.messages,
        recording_url=message.recording_url or call.recording_url or artifact.recording_url,
        stereo_recording_url=artifact.stereo_recording_url or message.stereo_recording_url,
        analysis=dict(analysis),
        costs=costs,
        structured_payload=structured_payload,
        structured_outputs=artifact.structured_outputs,
        customer_number=call.customer.number if call.customer else None,
    )
