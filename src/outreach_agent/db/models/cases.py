"""Case and scheduled email ORM models.

Cases are created by the practice management integration; this service
reads them to decide eligibility and flags them when a call reports a
critical concern.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import String, Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from outreach_agent.db.base import Base, UUIDMixin, TimestampMixin, isoformat

if TYPE_CHECKING:
    from outreach_agent.db.models.calls import CallRecordModel


class CaseModel(Base, UUIDMixin, TimestampMixin):
    """Visit case ORM model."""

    __tablename__ = "cases"

    owner_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        index=True,
        comment="draft, ongoing, completed, reviewed",
    )

    patient_id: Mapped[UUID | None] = mapped_column(nullable=True)
    patient_name: Mapped[str] = mapped_column(String(255), nullable=False, default="Unknown")
    owner_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    has_summary: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Discharge summary exists",
    )
    is_urgent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    calls: Mapped[list["CallRecordModel"]] = relationship(back_populates="case")
    scheduled_emails: Mapped[list["ScheduledEmailModel"]] = relationship(
        back_populates="case"
    )

    __table_args__ = (
        Index("ix_cases_owner_status", "owner_id", "status"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary for API responses."""
        return {
            "id": str(self.id),
            "owner_id": str(self.owner_id),
            "status": self.status,
            "patient_id": str(self.patient_id) if self.patient_id else None,
            "patient_name": self.patient_name,
            "owner_name": self.owner_name,
            "owner_email": self.owner_email,
            "owner_phone": self.owner_phone,
            "has_summary": self.has_summary,
            "is_urgent": self.is_urgent,
            "created_at": isoformat(self.created_at),
        }


class ScheduledEmailModel(Base, UUIDMixin, TimestampMixin):
    """Scheduled discharge email ORM model."""

    __tablename__ = "scheduled_emails"

    case_id: Mapped[UUID] = mapped_column(
        ForeignKey("cases.id"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="queued",
        comment="queued, sent, failed, cancelled",
    )
    recipient_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(nullable=True)

    case: Mapped["CaseModel"] = relationship(back_populates="scheduled_emails")
