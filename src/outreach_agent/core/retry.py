"""Retry policy and retry utilities.

Two concerns live here:
- The call retry policy: which provider ended reasons justify dialing
  again, and how long to wait before the next attempt.
- Exponential backoff for transient transport errors when talking to
  outbound HTTP collaborators (job queue, orchestration service).

Usage:
    from outreach_agent.core.retry import decide_retry, retry_delay

    decision = decide_retry("dial-busy", retry_count=0, max_retries=3)
    if decision.outcome is RetryOutcome.RETRY:
        fire_at = now + decision.delay
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Sequence, TypeVar

from outreach_agent.core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_REASONS: tuple[str, ...] = ("dial-busy", "dial-no-answer", "voicemail")
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MINUTES = 5


# =============================================================================
# Call retry policy
# =============================================================================


class RetryOutcome(str, Enum):
    """Result of evaluating a failed call against the retry policy."""

    RETRY = "retry"
    EXHAUSTED = "exhausted"
    DO_NOT_RETRY = "do_not_retry"


@dataclass(frozen=True)
class RetryDecision:
    """Retry verdict for one failed call."""

    outcome: RetryOutcome
    delay: timedelta | None = None

    @property
    def should_schedule(self) -> bool:
        return self.outcome is RetryOutcome.RETRY


def _voicemail_detection_enabled(metadata: Mapping[str, Any] | None) -> bool:
    return bool(metadata) and metadata.get("voicemail_detection_enabled") is True


def should_retry(
    ended_reason: str | None,
    metadata: Mapping[str, Any] | None = None,
    retryable_reasons: Sequence[str] = RETRYABLE_REASONS,
) -> bool:
    """Check whether a call that ended with ``ended_reason`` may be redialed.

    Matching is a case-insensitive substring test. When voicemail
    detection is enabled for the call, a voicemail ending is retried only
    if the agent was configured to hang up on detection; otherwise a
    message was left and there is nothing to retry.

    The retry ceiling is not checked here, see ``decide_retry``.
    """
    if not ended_reason:
        return False

    reason = ended_reason.lower()

    if "voicemail" in reason and _voicemail_detection_enabled(metadata):
        hangup = metadata.get("voicemail_hangup_on_detection") is True
        log.debug(
            "Voicemail retry decision",
            ended_reason=ended_reason,
            hangup_on_detection=hangup,
        )
        return hangup

    return any(candidate.lower() in reason for candidate in retryable_reasons)


def retry_delay(
    retry_count: int,
    base_delay_minutes: int = DEFAULT_BASE_DELAY_MINUTES,
) -> timedelta:
    """Backoff before the next attempt: 5, 10, 20 ... minutes.

    Args:
        retry_count: Retries already made (0 for the first retry)
        base_delay_minutes: Delay unit for the first retry

    Returns:
        Delay until the next attempt
    """
    if retry_count < 0:
        raise ValueError("retry_count must be non-negative")
    return timedelta(minutes=(2**retry_count) * base_delay_minutes)


def decide_retry(
    ended_reason: str | None,
    retry_count: int,
    max_retries: int = DEFAULT_MAX_RETRIES,
    metadata: Mapping[str, Any] | None = None,
    *,
    base_delay_minutes: int = DEFAULT_BASE_DELAY_MINUTES,
    retryable_reasons: Sequence[str] = RETRYABLE_REASONS,
) -> RetryDecision:
    """Combine reason eligibility with the retry ceiling."""
    if not should_retry(ended_reason, metadata, retryable_reasons):
        return RetryDecision(RetryOutcome.DO_NOT_RETRY)

    if retry_count >= max_retries:
        return RetryDecision(RetryOutcome.EXHAUSTED)

    return RetryDecision(
        RetryOutcome.RETRY,
        delay=retry_delay(retry_count, base_delay_minutes),
    )


# =============================================================================
# Transport retries
# =============================================================================


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    jitter: float = 0.1  # 10% jitter
    retryable_exceptions: tuple[type[Exception], ...] = (ConnectionError, TimeoutError, OSError)
    non_retryable_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt with exponential backoff and jitter.

        Args:
            attempt: Current attempt number (1-based)

        Returns:
            Delay in seconds
        """
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay,
        )

        jitter_range = delay * self.jitter
        delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Check if exception should trigger another attempt."""
        if attempt >= self.max_attempts:
            return False

        if isinstance(exception, self.non_retryable_exceptions):
            return False

        return isinstance(exception, self.retryable_exceptions)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
    **kwargs: Any,
) -> T:
    """Execute async function with retry.

    Exceptions that are not retryable propagate unchanged. When the last
    allowed attempt fails with a retryable exception, that exception is
    re-raised as well, so callers see the transport error itself.

    Args:
        func: Async function to execute
        *args: Positional arguments for func
        config: Retry configuration
        on_retry: Optional callback(exception, attempt, delay) on each retry
        **kwargs: Keyword arguments for func

    Returns:
        Result of func
    """
    config = config or RetryConfig()

    attempt = 0
    while True:
        attempt += 1
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            if not config.should_retry(e, attempt):
                raise

            delay = config.calculate_delay(attempt)

            log.warning(
                "Retrying after transient error",
                func=getattr(func, "__name__", repr(func)),
                attempt=attempt,
                max_attempts=config.max_attempts,
                error=f"{type(e).__name__}: {e}",
                delay_seconds=round(delay, 2),
            )

            if on_retry:
                on_retry(e, attempt, delay)

            await asyncio.sleep(delay)
