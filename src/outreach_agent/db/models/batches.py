"""Batch dispatch ORM models."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from outreach_agent.db.base import Base, UUIDMixin, TimestampMixin, isoformat


class BatchModel(Base, UUIDMixin, TimestampMixin):
    """Batch of cases dispatched together.

    Counter invariants:
    - processed_cases <= total_cases
    - successful_cases + failed_cases == processed_cases
    """

    __tablename__ = "batches"

    owner_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="pending, processing, partial_success, completed, cancelled",
    )

    total_cases: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_cases: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_cases: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_cases: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    email_schedule_time: Mapped[datetime | None] = mapped_column(nullable=True)
    call_schedule_time: Mapped[datetime | None] = mapped_column(nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    error_summary: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Per-case failures: case_id, patient_name, error",
    )

    items: Mapped[list["BatchItemModel"]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchItemModel.created_at",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary for API responses."""
        return {
            "id": str(self.id),
            "owner_id": str(self.owner_id),
            "status": self.status,
            "total_cases": self.total_cases,
            "processed_cases": self.processed_cases,
            "successful_cases": self.successful_cases,
            "failed_cases": self.failed_cases,
            "email_schedule_time": isoformat(self.email_schedule_time),
            "call_schedule_time": isoformat(self.call_schedule_time),
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "cancelled_at": isoformat(self.cancelled_at),
            "error_summary": self.error_summary or [],
            "created_at": isoformat(self.created_at),
        }


class BatchItemModel(Base, UUIDMixin, TimestampMixin):
    """Outcome of one case within a batch."""

    __tablename__ = "batch_items"

    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    case_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    patient_id: Mapped[UUID | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending, success, failed",
    )
    email_scheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    call_scheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    call_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    batch: Mapped["BatchModel"] = relationship(back_populates="items")

    __table_args__ = (
        UniqueConstraint("batch_id", "case_id", name="uq_batch_items_batch_case"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary for API responses."""
        return {
            "id": str(self.id),
            "batch_id": str(self.batch_id),
            "case_id": str(self.case_id),
            "patient_id": str(self.patient_id) if self.patient_id else None,
            "status": self.status,
            "email_scheduled": self.email_scheduled,
            "call_scheduled": self.call_scheduled,
            "email_id": self.email_id,
            "call_id": self.call_id,
            "error_message": self.error_message,
            "processed_at": isoformat(self.processed_at),
        }
