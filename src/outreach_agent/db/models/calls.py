"""Call record ORM model.

One row per scheduled outbound call. The row is created when the call
is scheduled and is afterwards driven by voice provider webhooks.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    String,
    Text,
    Integer,
    Float,
    Boolean,
    ForeignKey,
    Index,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from outreach_agent.db.base import Base, UUIDMixin, TimestampMixin, isoformat

if TYPE_CHECKING:
    from outreach_agent.db.models.cases import CaseModel


class CallRecordModel(Base, UUIDMixin, TimestampMixin):
    """Outbound call ORM model.

    Stores:
    - Provider linkage and lifecycle status
    - Timing, cost and duration
    - Transcript, recordings and provider analysis
    - Normalized structured outputs and attention flags
    - Retry bookkeeping
    """

    __tablename__ = "call_records"

    case_id: Mapped[UUID] = mapped_column(
        ForeignKey("cases.id"),
        nullable=False,
        index=True,
    )
    provider_call_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        unique=True,
        comment="Identifier assigned by the voice provider",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="queued",
        index=True,
        comment="queued, ringing, in_progress, completed, failed, cancelled",
    )
    ended_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Timing
    scheduled_for: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Content
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript_messages: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    cleaned_transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    stereo_recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Provider analysis
    call_analysis: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    success_evaluation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_sentiment: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="positive, neutral, negative",
    )

    # Structured outputs
    structured_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Flattened structured output record",
    )
    call_outcome_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    pet_health_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    medication_compliance_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True
    )
    owner_sentiment_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    escalation_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    follow_up_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Attention flags
    attention_types: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    attention_severity: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="routine, urgent, critical",
    )
    attention_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    attention_flagged_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Retry bookkeeping
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    next_retry_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_retry_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_retry_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    queue_message_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Outstanding delayed job for this call",
    )
    final_failure: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    final_failure_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Event bookkeeping
    last_event_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_report_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Identity of the last applied end-of-call report",
    )

    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Per-call context such as voicemail settings",
    )

    case: Mapped["CaseModel"] = relationship(back_populates="calls")

    __table_args__ = (
        Index("ix_call_records_case_status", "case_id", "status"),
    )

    @property
    def metadata_dict(self) -> dict[str, Any]:
        """Call metadata, never None."""
        return dict(self.metadata_json or {})

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary for API responses."""
        return {
            "id": str(self.id),
            "case_id": str(self.case_id),
            "provider_call_id": self.provider_call_id,
            "status": self.status,
            "ended_reason": self.ended_reason,
            "scheduled_for": isoformat(self.scheduled_for),
            "started_at": isoformat(self.started_at),
            "ended_at": isoformat(self.ended_at),
            "duration_seconds": self.duration_seconds,
            "cost": self.cost,
            "summary": self.summary,
            "user_sentiment": self.user_sentiment,
            "structured_data": self.structured_data or {},
            "attention_types": self.attention_types or [],
            "attention_severity": self.attention_severity,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "next_retry_at": isoformat(self.next_retry_at),
            "final_failure": self.final_failure,
            "final_failure_reason": self.final_failure_reason,
            "metadata": self.metadata_json or {},
            "created_at": isoformat(self.created_at),
        }
