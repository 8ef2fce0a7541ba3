"""Provider vocabulary mapping for call records.

Translates voice provider statuses and ended reasons into the internal
call status, and derives cost, duration and sentiment from the report.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

from outreach_agent.core.logging import get_logger

log = get_logger(__name__)


class CallStatus(str, Enum):
    """Internal call record status."""

    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.CANCELLED})

PROVIDER_STATUS_MAP: dict[str, CallStatus] = {
    "queued": CallStatus.QUEUED,
    "ringing": CallStatus.RINGING,
    "in-progress": CallStatus.IN_PROGRESS,
    "forwarding": CallStatus.IN_PROGRESS,
    "ended": CallStatus.COMPLETED,
}

COMPLETED_ENDED_REASONS = frozenset({"assistant-ended-call", "customer-ended-call"})

# Matched as substrings, case-insensitive
FAILED_ENDED_REASONS: tuple[str, ...] = (
    "dial-busy",
    "dial-failed",
    "dial-no-answer",
    "assistant-error",
    "exceeded-max-duration",
    "voicemail",
    "assistant-not-found",
    "assistant-not-invalid",
    "assistant-not-provided",
    "assistant-request-failed",
    "assistant-request-returned-error",
    "assistant-request-returned-unspeakable-error",
    "assistant-request-returned-invalid-json",
    "assistant-request-returned-no-content",
    "twilio-failed-to-connect-call",
    "vonage-rejected",
)


def is_terminal_status(status: str | None) -> bool:
    return status in {s.value for s in TERMINAL_STATUSES}


def map_provider_status(provider_status: str | None) -> CallStatus:
    """Map a provider status to the internal status.

    Unknown or missing values fall back to ``queued``.
    """
    if provider_status:
        mapped = PROVIDER_STATUS_MAP.get(provider_status.lower())
        if mapped is not None:
            return mapped

    log.warning("Unknown provider status, defaulting to queued", provider_status=provider_status)
    return CallStatus.QUEUED


def map_ended_reason_to_status(
    ended_reason: str | None,
    metadata: Mapping[str, Any] | None = None,
) -> CallStatus:
    """Classify an ended reason into a final call status.

    Rules, first match wins:
    - no reason: completed
    - assistant or customer ended the call: completed
    - reason mentions "cancelled": cancelled
    - voicemail with detection enabled: failed only if the agent hangs up
      on detection, otherwise a message was left and the call completed
    - reason contains a known failure marker: failed
    - anything else: completed, so unknown reasons never leave a record stuck
    """
    if not ended_reason:
        return CallStatus.COMPLETED

    reason = ended_reason.lower()

    if reason in COMPLETED_ENDED_REASONS:
        return CallStatus.COMPLETED

    if "cancelled" in reason:
        return CallStatus.CANCELLED

    if "voicemail" in reason and metadata and metadata.get("voicemail_detection_enabled") is True:
        if metadata.get("voicemail_hangup_on_detection") is True:
            return CallStatus.FAILED
        return CallStatus.COMPLETED

    if any(marker in reason for marker in FAILED_ENDED_REASONS):
        return CallStatus.FAILED

    return CallStatus.COMPLETED


def calculate_total_cost(costs: Iterable[Any] | None) -> float:
    """Sum the ``amount`` of every cost entry, ignoring malformed ones."""
    if not costs:
        return 0.0

    total = 0.0
    for entry in costs:
        amount = entry.get("amount") if isinstance(entry, Mapping) else getattr(entry, "amount", None)
        if isinstance(amount, (int, float)) and not isinstance(amount, bool):
            total += float(amount)
    return total


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def calculate_duration(started_at: Any, ended_at: Any) -> int | None:
    """Whole seconds between start and end.

    None when either side is missing or unparseable, or the span is negative.
    """
    start = parse_timestamp(started_at)
    end = parse_timestamp(ended_at)
    if start is None or end is None:
        return None

    seconds = (end - start).total_seconds()
    if seconds < 0:
        return None
    return math.floor(seconds)


def extract_sentiment(analysis: Mapping[str, Any] | None) -> str:
    """Derive positive/negative/neutral from the provider's success evaluation."""
    if not analysis:
        return "neutral"

    evaluation = analysis.get("successEvaluation")
    if evaluation is None:
        return "neutral"

    text = str(evaluation).lower()
    if "success" in text or "positive" in text:
        return "positive"
    if "fail" in text or "negative" in text:
        return "negative"
    return "neutral"
