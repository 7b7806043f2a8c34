"""
SLA Domain Entities
====================

Pure Python domain entities for SLA compliance tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from helpdesk_sla.config import OPEN_STATUSES, TicketStatus, ViolationKind
from helpdesk_sla.shared.clock import as_utc
from helpdesk_sla.sla.domain.value_objects import BusinessCalendar


@dataclass
class Ticket:
    """
    Ticket entity representing a helpdesk ticket.

    Owned by the ticket-management layer. The engine reads priority, type,
    status and timestamps, and writes assigned_to/priority/status only as
    escalation side effects.
    """

    id: str
    organization_id: str
    priority: str
    ticket_type: str
    status: str
    created_at: datetime

    number: str = ""
    subject: str = ""
    updated_at: Optional[datetime] = None
    first_responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    assigned_to: Optional[str] = None

    def __post_init__(self):
        """Validate ticket timestamps."""
        if self.first_responded_at and self.first_responded_at < self.created_at:
            raise ValueError("first_responded_at cannot be before created_at")

        if self.resolved_at and self.resolved_at < self.created_at:
            raise ValueError("resolved_at cannot be before created_at")

    @property
    def is_open(self) -> bool:
        """Check if ticket is still open."""
        return self.status in OPEN_STATUSES

    @property
    def is_resolved(self) -> bool:
        return self.status in (TicketStatus.RESOLVED, TicketStatus.CLOSED)

    def age_hours(self, now: datetime) -> float:
        """
        Ticket age in (fractional) hours at `now`.

        Age is elapsed wall time with no calendar to interpret local times,
        so naive timestamps are read as UTC, the way the store keeps them.
        Deadlines instead read naive values in the policy calendar's zone.
        """
        return (as_utc(now) - as_utc(self.created_at)).total_seconds() / 3600

    def completion_time(self, kind: str) -> Optional[datetime]:
        """Timestamp that satisfies the given SLA clock, if any."""
        if kind == ViolationKind.RESPONSE:
            return self.first_responded_at
        return self.resolved_at


@dataclass
class SLAPolicy:
    """
    Response and resolution budgets for one (organization, priority,
    ticket type) key, measured in business hours of `calendar`.
    """

    id: Optional[str]
    organization_id: str
    priority: str
    ticket_type: str
    response_hours: float
    resolution_hours: float
    calendar: BusinessCalendar = field(default_factory=BusinessCalendar)
    name: str = ""
    active: bool = True

    def __post_init__(self):
        if self.response_hours < 0 or self.resolution_hours < 0:
            raise ValueError("SLA hour budgets cannot be negative")

    def budget_hours(self, kind: str) -> float:
        """Hour budget for an SLA clock."""
        if kind == ViolationKind.RESPONSE:
            return self.response_hours
        return self.resolution_hours

    @property
    def key(self) -> tuple:
        return (self.organization_id, self.priority, self.ticket_type)


@dataclass
class SLAViolation:
    """
    Record that a response or resolution deadline was missed.

    Lifecycle: created -> open -> resolved. Resolved is terminal.
    """

    id: Optional[str]
    ticket_id: str
    organization_id: str
    kind: str
    expected_deadline: datetime
    overdue_minutes: int
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict = field(default_factory=dict)

    def __post_init__(self):
        if self.overdue_minutes < 0:
            raise ValueError("overdue_minutes cannot be negative")

    @property
    def is_open(self) -> bool:
        return not self.resolved

    @property
    def breach_time(self) -> str:
        """Overdue time formatted as '<h>h <m>m'."""
        hours, minutes = divmod(self.overdue_minutes, 60)
        return f"{hours}h {minutes}m"

    def mark_resolved(self, timestamp: Optional[datetime] = None) -> None:
        """Mark violation as resolved; resolving twice keeps the first stamp."""
        if self.resolved:
            return
        self.resolved = True
        self.resolved_at = timestamp or datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        """Convert to dictionary for notifications and logs."""
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "organization_id": self.organization_id,
            "kind": self.kind,
            "expected_deadline": self.expected_deadline.isoformat(),
            "overdue_minutes": self.overdue_minutes,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass
class SLAStats:
    """Violation statistics for an organization over a time window."""

    total_tickets: int
    total_violations: int
    resolved_violations: int
    violations_by_kind: Dict[str, int] = field(default_factory=dict)

    @property
    def violation_rate(self) -> float:
        """Violations per created ticket, as a percentage."""
        if self.total_tickets == 0:
            return 0.0
        return round(self.total_violations / self.total_tickets * 100, 2)
