"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from helpdesk_sla.config import VALID_VIOLATION_KINDS, ViolationKind, settings
from helpdesk_sla.core import NotificationDispatchException, ValidationException
from helpdesk_sla.shared.clock import Clock, utcnow
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application.dto import ViolationNotification
from helpdesk_sla.sla.domain import (
    DeadlineCalculator, SLADeadline, SLAPolicy, SLAStats, SLAViolation, Ticket
)

logger = get_logger(__name__)


# ========== Collaborator Interfaces (Dependency Inversion) ==========

@dataclass
class DirectoryUser:
    """A user as seen through the user/role directory."""
    id: str
    organization_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    last_assigned_at: Optional[datetime] = None

    @property
    def address(self) -> str:
        """Best address to notify this user at."""
        return self.email or self.phone or self.id


class ITicketRepository(ABC):
    """Interface to the ticket-management layer's ticket store."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def update_fields(self, ticket_id: str, **fields: Any) -> None:
        """Update assigned_to/priority/status/timestamps of a ticket."""

    @abstractmethod
    async def add_comment(self, ticket_id: str, content: str, is_internal: bool = True) -> None:
        """Append a system comment to a ticket."""

    @abstractmethod
    async def list_open(self, limit: int = 100, offset: int = 0) -> List[Ticket]:
        """List open tickets, oldest first."""

    @abstractmethod
    async def count_created(self, organization_id: str, start: datetime, end: datetime) -> int:
        """Count tickets created in [start, end]."""


class IUserDirectory(ABC):
    """Interface for user and role lookups."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        """Fetch a user by ID."""

    @abstractmethod
    async def get_users_by_role(self, organization_id: str, role_id: str) -> List[DirectoryUser]:
        """Fetch every user holding a role within an organization."""


class INotificationDispatcher(ABC):
    """Interface for notification delivery."""

    @abstractmethod
    async def send(self, recipient: str, payload: Dict[str, Any]) -> bool:
        """
        Send a payload to an address or user ID.

        Returns False when the notification was skipped; raises
        NotificationDispatchException when the transport fails.
        """


class ISLAPolicyRepository(ABC):
    """Interface for SLA policy lookup."""

    @abstractmethod
    async def find_active(
        self,
        organization_id: str,
        priority: str,
        ticket_type: str
    ) -> Optional[SLAPolicy]:
        """First active policy for the key, or None."""


class ISLAViolationRepository(ABC):
    """Interface for SLA violation data access."""

    @abstractmethod
    async def create(self, violation: SLAViolation) -> SLAViolation:
        """Persist a new violation."""

    @abstractmethod
    async def has_violation(self, ticket_id: str, kind: str) -> bool:
        """Whether any violation (open or resolved) of kind exists for the ticket."""

    @abstractmethod
    async def list_open(self, ticket_id: str, kind: Optional[str] = None) -> List[SLAViolation]:
        """Open violations for a ticket, optionally of one kind."""

    @abstractmethod
    async def mark_resolved(self, ticket_id: str, kind: str, resolved_at: datetime) -> int:
        """Resolve open violations of kind for the ticket; returns rows changed."""

    @abstractmethod
    async def count_by_kind(
        self,
        organization_id: str,
        start: datetime,
        end: datetime
    ) -> Dict[str, int]:
        """Violations created in [start, end], grouped by kind."""

    @abstractmethod
    async def count_resolved(self, organization_id: str, start: datetime, end: datetime) -> int:
        """Resolved violations among those created in [start, end]."""


# ========== Application Services ==========

class SLAPolicyLookup:
    """
    Resolves the SLA policy that applies to a ticket.

    Absence of a policy is not an error: it means "no obligation".
    """

    def __init__(self, policy_repository: ISLAPolicyRepository):
        self._policy_repo = policy_repository

    async def find(
        self,
        organization_id: str,
        priority: str,
        ticket_type: str
    ) -> Optional[SLAPolicy]:
        policy = await self._policy_repo.find_active(organization_id, priority, ticket_type)
        if policy is None:
            logger.debug(
                "No SLA policy for key",
                extra={
                    "organization_id": organization_id,
                    "priority": priority,
                    "ticket_type": ticket_type
                }
            )
        return policy

    async def calculate_deadline(
        self,
        organization_id: str,
        priority: str,
        ticket_type: str,
        start: datetime
    ) -> Optional[datetime]:
        """
        Resolution deadline for a ticket starting at `start`.

        Returns:
            The deadline, or None when no policy applies
        """
        policy = await self.find(organization_id, priority, ticket_type)
        if policy is None:
            return None
        return DeadlineCalculator.compute_deadline(start, policy.resolution_hours, policy.calendar)


class ViolationNotifier:
    """
    Notifies the assignee and the organization's escalation role holders
    about a new violation.

    Best effort: every failure is logged and swallowed per recipient.
    """

    def __init__(
        self,
        dispatcher: INotificationDispatcher,
        user_directory: IUserDirectory,
        notify_role_id: Optional[str] = None,
        frontend_url: Optional[str] = None
    ):
        self._dispatcher = dispatcher
        self._users = user_directory
        self._notify_role_id = notify_role_id
        self._frontend_url = (frontend_url or settings.frontend_url).rstrip("/")

    async def notify(self, ticket: Ticket, violation: SLAViolation) -> int:
        """
        Send the violation notice.

        Returns:
            Number of recipients that accepted the notification
        """
        try:
            recipients = await self._recipients(ticket)
        except Exception as e:
            logger.error(
                "Could not resolve violation notification recipients",
                extra={"ticket_id": ticket.id, "error": str(e)}
            )
            return 0

        payload = ViolationNotification(
            ticket_id=ticket.id,
            ticket_number=ticket.number or ticket.id,
            priority=ticket.priority,
            violation_kind=violation.kind,
            breach_time=violation.breach_time,
            expected_deadline=violation.expected_deadline,
            ticket_url=f"{self._frontend_url}/tickets/{ticket.id}",
        ).model_dump(mode="json")

        delivered = 0
        for user in recipients:
            try:
                if await self._dispatcher.send(user.address, payload):
                    delivered += 1
                else:
                    logger.warning(
                        "Violation notification not delivered",
                        extra={"ticket_id": ticket.id, "user_id": user.id}
                    )
            except NotificationDispatchException as e:
                logger.error(
                    "Violation notification rejected by transport",
                    extra={"ticket_id": ticket.id, "user_id": user.id, "error": e.message}
                )
            except Exception as e:
                logger.error(
                    "Failed to send violation notification",
                    extra={"ticket_id": ticket.id, "user_id": user.id, "error": str(e)}
                )
        return delivered

    async def _recipients(self, ticket: Ticket) -> List[DirectoryUser]:
        recipients: List[DirectoryUser] = []
        seen = set()

        if ticket.assigned_to:
            assignee = await self._users.get_user(ticket.assigned_to)
            if assignee:
                recipients.append(assignee)
                seen.add(assignee.id)

        if self._notify_role_id:
            for user in await self._users.get_users_by_role(
                ticket.organization_id, self._notify_role_id
            ):
                if user.id not in seen:
                    recipients.append(user)
                    seen.add(user.id)

        return recipients


class ViolationTracker:
    """
    Detects breached response/resolution deadlines and records violations.

    Store failures propagate to the caller; notification failures never do.
    """

    def __init__(
        self,
        policy_lookup: SLAPolicyLookup,
        violation_repository: ISLAViolationRepository,
        notifier: Optional[ViolationNotifier] = None,
        clock: Clock = utcnow
    ):
        self._policy_lookup = policy_lookup
        self._violation_repo = violation_repository
        self._notifier = notifier
        self._clock = clock

    def deadlines_for(self, ticket: Ticket, policy: SLAPolicy) -> List[SLADeadline]:
        """Response and resolution deadlines of a ticket under a policy."""
        return [
            SLADeadline(
                ticket_id=ticket.id,
                kind=kind,
                deadline=DeadlineCalculator.compute_deadline(
                    ticket.created_at, policy.budget_hours(kind), policy.calendar
                ),
                budget_hours=policy.budget_hours(kind),
                policy_id=policy.id,
            )
            for kind in VALID_VIOLATION_KINDS
        ]

    async def check(self, ticket: Ticket) -> List[SLAViolation]:
        """
        Evaluate a ticket against its SLA policy.

        Args:
            ticket: Ticket to evaluate

        Returns:
            Violations created by this call (empty when no policy applies)
        """
        policy = await self._policy_lookup.find(
            ticket.organization_id, ticket.priority, ticket.ticket_type
        )
        if policy is None:
            return []

        now = self._clock()
        created: List[SLAViolation] = []

        for deadline in self.deadlines_for(ticket, policy):
            # A zero budget means the policy does not run this clock
            if deadline.budget_hours <= 0:
                continue
            if ticket.completion_time(deadline.kind) is not None:
                continue
            if not deadline.is_past(now):
                continue
            if await self._violation_repo.has_violation(ticket.id, deadline.kind):
                continue

            violation = SLAViolation(
                id=None,
                ticket_id=ticket.id,
                organization_id=ticket.organization_id,
                kind=deadline.kind,
                expected_deadline=deadline.deadline,
                overdue_minutes=deadline.overdue_minutes(now),
                created_at=now,
                details={
                    "sla_policy_id": policy.id,
                    f"{deadline.kind}_hours": deadline.budget_hours,
                },
            )
            violation = await self._violation_repo.create(violation)
            created.append(violation)

            logger.info(
                "SLA violation recorded",
                extra={
                    "ticket_id": ticket.id,
                    "organization_id": ticket.organization_id,
                    "violation_kind": violation.kind,
                    "overdue_minutes": violation.overdue_minutes
                }
            )

        if self._notifier is not None:
            for violation in created:
                await self._notifier.notify(ticket, violation)

        return created

    async def resolve(self, ticket_id: str, kind: str) -> int:
        """
        Resolve every open violation of `kind` for a ticket.

        Returns:
            Number of violations resolved (0 when none were open)
        """
        if kind not in VALID_VIOLATION_KINDS:
            raise ValidationException(
                f"Unknown violation kind: {kind}", {"kind": kind}
            )

        resolved = await self._violation_repo.mark_resolved(ticket_id, kind, self._clock())
        if resolved:
            logger.info(
                "SLA violations resolved",
                extra={"ticket_id": ticket_id, "violation_kind": kind, "count": resolved}
            )
        return resolved


class SLAStatsService:
    """Violation statistics per organization."""

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        violation_repository: ISLAViolationRepository
    ):
        self._ticket_repo = ticket_repository
        self._violation_repo = violation_repository

    async def get_stats(self, organization_id: str, start: datetime, end: datetime) -> SLAStats:
        by_kind = await self._violation_repo.count_by_kind(organization_id, start, end)
        return SLAStats(
            total_tickets=await self._ticket_repo.count_created(organization_id, start, end),
            total_violations=sum(by_kind.values()),
            resolved_violations=await self._violation_repo.count_resolved(organization_id, start, end),
            violations_by_kind={
                kind: by_kind.get(kind, 0)
                for kind in (ViolationKind.RESPONSE, ViolationKind.RESOLUTION)
            },
        )
