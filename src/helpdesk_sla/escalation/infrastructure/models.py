"""
Escalation Infrastructure Models
=================================

SQLAlchemy ORM models for escalation rules and the firing ledger.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk_sla.infrastructure.database import Base

# Unreleased firings; the claim uniqueness applies to these only
OPEN_FIRING = text("released_at IS NULL")


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EscalationRuleModel(Base):
    """
    Database model for EscalationRule entity.

    Maps to the 'escalation_rules' table.
    """
    __tablename__ = "escalation_rules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Trigger
    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    trigger_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    trigger_priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    trigger_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Action
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    target_role_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    new_priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notification_recipients: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class EscalationFiringModel(Base):
    """
    Database model for EscalationFiring entity.

    Maps to the 'escalation_firings' table. Rows are never deleted once the
    action ran; released rows stay as escalation history. The partial unique
    index over unreleased rows is what makes a claim atomic across
    concurrent requests.
    """
    __tablename__ = "escalation_firings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    rule_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    trigger_key: Mapped[str] = mapped_column(String(128), nullable=False)

    # Ticket state at firing time, for reporting
    ticket_priority: Mapped[str] = mapped_column(String(50), nullable=False)
    ticket_status: Mapped[str] = mapped_column(String(50), nullable=False)

    fired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_escalation_firing_open",
            "rule_id", "ticket_id", "trigger_key",
            unique=True,
            postgresql_where=OPEN_FIRING,
            sqlite_where=OPEN_FIRING,
        ),
    )
