"""Core building blocks: logging, errors and the retry policy."""

from outreach_agent.core.exceptions import (
    OutreachAgentError,
    ConfigurationError,
    DatabaseError,
    RecordNotFoundError,
    IntegrationError,
    SchedulingError,
    ScheduleInPastError,
    OrchestrationError,
    BusinessError,
    ValidationError,
    BatchError,
    BatchNotFoundError,
    BatchNotRunningError,
    AuthError,
    InvalidSignatureError,
)
from outreach_agent.core.logging import get_logger, setup_logging
from outreach_agent.core.retry import (
    RetryDecision,
    RetryOutcome,
    decide_retry,
    retry_delay,
    should_retry,
)

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    # Retry policy
    "RetryDecision",
    "RetryOutcome",
    "decide_retry",
    "retry_delay",
    "should_retry",
    # Exceptions
    "OutreachAgentError",
    "ConfigurationError",
    "DatabaseError",
    "RecordNotFoundError",
    "IntegrationError",
    "SchedulingError",
    "ScheduleInPastError",
    "OrchestrationError",
    "BusinessError",
    "ValidationError",
    "BatchError",
    "BatchNotFoundError",
    "BatchNotRunningError",
    "AuthError",
    "InvalidSignatureError",
]
