"""
Escalation Application Layer
=============================

Contains:
- Services: EscalationRuleEngine, EscalationExecutor, EscalationStatsService
- DTOs: Notification payloads
- Repository interfaces for rules and the firing ledger
"""

from helpdesk_sla.escalation.application.dto import (
    EscalationNotification,
)
from helpdesk_sla.escalation.application.services import (
    EscalationExecutor,
    EscalationRuleEngine,
    EscalationStatsService,
    IEscalationRuleRepository,
    IEscalationFiringRepository,
    pick_least_recently_assigned,
)

__all__ = [
    # DTOs
    "EscalationNotification",
    # Services
    "EscalationExecutor",
    "EscalationRuleEngine",
    "EscalationStatsService",
    "pick_least_recently_assigned",
    # Repository Interfaces
    "IEscalationRuleRepository",
    "IEscalationFiringRepository",
]
