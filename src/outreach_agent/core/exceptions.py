"""Outreach Agent Exception Hierarchy.

Provides structured error handling with context preservation
and proper HTTP status code mapping.
"""

from __future__ import annotations

from typing import Any


class OutreachAgentError(Exception):
    """Base exception for all Outreach Agent errors.

    All custom exceptions should inherit from this class.
    Provides:
    - Structured error context
    - HTTP status code mapping
    - Logging-friendly representation
    """

    status_code: int = 500
    error_code: str = "OUTREACH_AGENT_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Additional context for debugging
            cause: Original exception if wrapping
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        """String representation for logging."""
        parts = [f"{self.error_code}: {self.message}"]
        if self.details:
            parts.append(f"details={self.details}")
        if self.cause:
            parts.append(f"cause={self.cause}")
        return " | ".join(parts)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(OutreachAgentError):
    """Invalid or missing configuration."""

    status_code = 503
    error_code = "CONFIGURATION_ERROR"


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(OutreachAgentError):
    """Base class for database-related errors."""

    status_code = 503
    error_code = "DATABASE_ERROR"


class RecordNotFoundError(DatabaseError):
    """Requested record not found."""

    status_code = 404
    error_code = "RECORD_NOT_FOUND"


# =============================================================================
# Integration Errors
# =============================================================================


class IntegrationError(OutreachAgentError):
    """Base class for external collaborator errors."""

    status_code = 502
    error_code = "INTEGRATION_ERROR"


class SchedulingError(IntegrationError):
    """The delayed job queue rejected or failed a request."""

    error_code = "SCHEDULING_ERROR"


class ScheduleInPastError(SchedulingError):
    """A job was requested for a time that has already passed."""

    status_code = 400
    error_code = "SCHEDULE_IN_PAST"


class OrchestrationError(IntegrationError):
    """Per-case orchestration request failed."""

    error_code = "ORCHESTRATION_ERROR"


# =============================================================================
# Business Logic Errors
# =============================================================================


class BusinessError(OutreachAgentError):
    """Base class for business logic errors."""

    status_code = 400
    error_code = "BUSINESS_ERROR"


class ValidationError(BusinessError):
    """Input validation failed."""

    error_code = "VALIDATION_ERROR"


class BatchError(BusinessError):
    """Batch-related error."""

    error_code = "BATCH_ERROR"


class BatchNotFoundError(BatchError):
    """Batch with given ID not found."""

    status_code = 404
    error_code = "BATCH_NOT_FOUND"


class BatchNotRunningError(BatchError):
    """Batch is not being processed by this instance."""

    status_code = 409
    error_code = "BATCH_NOT_RUNNING"


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(OutreachAgentError):
    """Base class for authentication errors."""

    status_code = 401
    error_code = "AUTH_ERROR"


class InvalidSignatureError(AuthError):
    """Webhook secret or signature validation failed."""

    error_code = "INVALID_SIGNATURE"

