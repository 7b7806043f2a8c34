"""
Escalation Infrastructure Layer
================================

- Models: SQLAlchemy ORM models for rules and the firing ledger
- Repositories: SQLAlchemy data access
"""

from helpdesk_sla.escalation.infrastructure.models import (
    EscalationRuleModel,
    EscalationFiringModel,
)
from helpdesk_sla.escalation.infrastructure.repositories import (
    SQLAlchemyEscalationRuleRepository,
    SQLAlchemyEscalationFiringRepository,
)

__all__ = [
    "EscalationRuleModel",
    "EscalationFiringModel",
    "SQLAlchemyEscalationRuleRepository",
    "SQLAlchemyEscalationFiringRepository",
]
