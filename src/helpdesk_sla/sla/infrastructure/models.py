"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk_sla.config import DEFAULT_HOURS_END, DEFAULT_HOURS_START, DEFAULT_WORKING_WEEKDAYS
from helpdesk_sla.infrastructure.database import Base


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SLAPolicyModel(Base):
    """
    Database model for SLAPolicy entity.

    Maps to the 'sla_policies' table. The business calendar is stored inline.
    """
    __tablename__ = "sla_policies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Lookup key
    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    ticket_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Budgets in business hours
    response_hours: Mapped[float] = mapped_column(Float, nullable=False)
    resolution_hours: Mapped[float] = mapped_column(Float, nullable=False)

    # Business calendar
    business_hours_start: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_HOURS_START)
    business_hours_end: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_HOURS_END)
    business_days: Mapped[list] = mapped_column(JSON, nullable=False, default=lambda: list(DEFAULT_WORKING_WEEKDAYS))
    holidays: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        UniqueConstraint("organization_id", "priority", "ticket_type", name="uq_sla_policy_key"),
    )


class SLAViolationModel(Base):
    """
    Database model for SLAViolation entity.

    Maps to the 'sla_violations' table.
    """
    __tablename__ = "sla_violations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    kind: Mapped[str] = mapped_column(String(50), nullable=False)  # response or resolution
    expected_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    overdue_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, index=True)

    __table_args__ = (
        Index("ix_sla_violations_ticket_kind", "ticket_id", "kind"),
    )
