"""
Escalation Domain Layer
=======================

Contains:
- Entities: EscalationRule, EscalationFiring, EscalationStats
- Domain Services: RuleEvaluator (trigger predicates)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk_sla.escalation.domain.entities import (
    EscalationRule,
    EscalationFiring,
    EscalationStats,
    MANUAL_TRIGGER_PREFIX,
)
from helpdesk_sla.escalation.domain.value_objects import RuleEvaluator

__all__ = [
    "EscalationRule",
    "EscalationFiring",
    "EscalationStats",
    "RuleEvaluator",
    "MANUAL_TRIGGER_PREFIX",
]
