"""Outbound call lifecycle: webhook events, status mapping, retries."""

from outreach_agent.calls.enrichment import EnrichmentQueue, TranscriptJob
from outreach_agent.calls.events import EventType, WebhookMessage, parse_webhook_message
from outreach_agent.calls.lifecycle import CallLifecycleManager, EventOutcome
from outreach_agent.calls.scheduler import (
    CallScheduler,
    LocalScheduler,
    QStashScheduler,
    create_scheduler,
    http_callback,
)
from outreach_agent.calls.status import CallStatus, map_ended_reason_to_status
from outreach_agent.calls.structured_output import (
    StructuredOutputs,
    extract_structured_output_by_name,
    flatten_structured_outputs,
    parse_all_structured_outputs,
)

__all__ = [
    "CallLifecycleManager",
    "CallScheduler",
    "CallStatus",
    "EnrichmentQueue",
    "EventOutcome",
    "EventType",
    "LocalScheduler",
    "QStashScheduler",
    "StructuredOutputs",
    "TranscriptJob",
    "WebhookMessage",
    "create_scheduler",
    "extract_structured_output_by_name",
    "flatten_structured_outputs",
    "http_callback",
    "map_ended_reason_to_status",
    "parse_all_structured_outputs",
    "parse_webhook_message",
]
