"""
Escalation Domain Entities
===========================

Escalation rules, the firing ledger entry, and escalation statistics.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from helpdesk_sla.config import TriggerKind

MANUAL_TRIGGER_PREFIX = "manual@"


@dataclass
class EscalationRule:
    """
    Organization-scoped condition-action pair.

    trigger_kind and action_kind are plain strings so that a rule stored
    with a kind this version does not know still reaches the executor,
    which ignores it with a warning.
    """

    id: str
    organization_id: str
    name: str
    trigger_kind: str
    action_kind: str

    # Trigger parameters
    trigger_hours: Optional[int] = None
    trigger_priority: Optional[str] = None
    trigger_status: Optional[str] = None

    # Action parameters
    target_user_id: Optional[str] = None
    target_role_id: Optional[str] = None
    new_priority: Optional[str] = None
    notification_recipients: List[str] = field(default_factory=list)

    description: str = ""
    active: bool = True

    @property
    def trigger_parameter(self):
        """The parameter the trigger compares against."""
        if self.trigger_kind == TriggerKind.AGE:
            return self.trigger_hours
        if self.trigger_kind == TriggerKind.PRIORITY_EQUALS:
            return self.trigger_priority
        if self.trigger_kind == TriggerKind.STATUS_EQUALS:
            return self.trigger_status
        return None


@dataclass
class EscalationFiring:
    """
    Ledger entry recording that a rule fired for a ticket.

    At most one unreleased entry exists per (rule_id, ticket_id, trigger_key).
    When the rule's condition stops holding the entry is stamped
    `released_at`, which re-arms the rule for the next qualifying transition
    and keeps the firing in the escalation history.
    """

    rule_id: str
    ticket_id: str
    organization_id: str
    trigger_key: str
    ticket_priority: str
    ticket_status: str
    fired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    released_at: Optional[datetime] = None
    id: Optional[str] = None

    @property
    def is_manual(self) -> bool:
        return self.trigger_key.startswith(MANUAL_TRIGGER_PREFIX)

    @property
    def is_released(self) -> bool:
        return self.released_at is not None


@dataclass
class EscalationStats:
    """Escalation counts for an organization over a time window."""

    total_escalations: int
    escalations_by_priority: Dict[str, int] = field(default_factory=dict)
    escalations_by_status: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_firings(cls, firings: List[EscalationFiring]) -> "EscalationStats":
        by_priority: Dict[str, int] = {}
        by_status: Dict[str, int] = {}
        for firing in firings:
            by_priority[firing.ticket_priority] = by_priority.get(firing.ticket_priority, 0) + 1
            by_status[firing.ticket_status] = by_status.get(firing.ticket_status, 0) + 1
        return cls(
            total_escalations=len(firings),
            escalations_by_priority=by_priority,
            escalations_by_status=by_status,
        )
