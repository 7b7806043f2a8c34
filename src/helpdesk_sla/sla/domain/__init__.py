"""
SLA Domain Layer
================

Domain layer for SLA compliance tracking.

Contains:
- Entities: Core business objects with identity (Ticket, SLAPolicy, SLAViolation)
- Value Objects: Immutable objects defined by attributes (BusinessCalendar, SLADeadline)
- Domain Services: Stateless business logic (DeadlineCalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk_sla.sla.domain.entities import Ticket, SLAPolicy, SLAViolation, SLAStats
from helpdesk_sla.sla.domain.value_objects import (
    BusinessCalendar,
    DeadlineCalculator,
    SLADeadline,
)

__all__ = [
    # Entities
    "Ticket",
    "SLAPolicy",
    "SLAViolation",
    "SLAStats",
    # Value Objects & Services
    "BusinessCalendar",
    "DeadlineCalculator",
    "SLADeadline",
]
