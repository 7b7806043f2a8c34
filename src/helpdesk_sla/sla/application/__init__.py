"""
SLA Application Layer
======================

Application layer for SLA compliance tracking.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Policy documents and notification payloads

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk_sla.sla.application.dto import (
    BusinessCalendarConfig,
    SLAPolicyConfig,
    SLAPolicyDocument,
    ViolationNotification,
)
from helpdesk_sla.sla.application.services import (
    DirectoryUser,
    SLAPolicyLookup,
    ViolationNotifier,
    ViolationTracker,
    SLAStatsService,
    ITicketRepository,
    IUserDirectory,
    INotificationDispatcher,
    ISLAPolicyRepository,
    ISLAViolationRepository,
)

__all__ = [
    # DTOs
    "BusinessCalendarConfig",
    "SLAPolicyConfig",
    "SLAPolicyDocument",
    "ViolationNotification",
    # Services
    "DirectoryUser",
    "SLAPolicyLookup",
    "ViolationNotifier",
    "ViolationTracker",
    "SLAStatsService",
    # Collaborator Interfaces
    "ITicketRepository",
    "IUserDirectory",
    "INotificationDispatcher",
    "ISLAPolicyRepository",
    "ISLAViolationRepository",
]
