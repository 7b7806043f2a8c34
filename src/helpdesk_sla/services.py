"""
Helpdesk SLA Engine
===================

Facade over the SLA and escalation bounded contexts.

The ticket-management layer talks to this module only:
- HelpdeskSLAEngine exposes every engine operation
- TicketLifecycleHooks is the call-site error boundary run after a ticket save
- build_engine wires the SQLAlchemy repositories for one session
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.config import ViolationKind, settings
from helpdesk_sla.core import ResourceNotFoundException, ValidationException
from helpdesk_sla.escalation.application import (
    EscalationExecutor,
    EscalationRuleEngine,
    EscalationStatsService,
    IEscalationRuleRepository,
)
from helpdesk_sla.escalation.domain import EscalationRule, EscalationStats
from helpdesk_sla.escalation.infrastructure import (
    SQLAlchemyEscalationFiringRepository,
    SQLAlchemyEscalationRuleRepository,
)
from helpdesk_sla.shared.clock import Clock, utcnow
from helpdesk_sla.shared.infrastructure.logging import (
    get_context_logger, get_logger, log_latency
)
from helpdesk_sla.sla.application import (
    INotificationDispatcher,
    ISLAPolicyRepository,
    ITicketRepository,
    IUserDirectory,
    SLAPolicyLookup,
    SLAStatsService,
    ViolationNotifier,
    ViolationTracker,
)
from helpdesk_sla.sla.domain import SLAStats, SLAViolation, Ticket
from helpdesk_sla.sla.infrastructure import (
    SQLAlchemySLAPolicyRepository,
    SQLAlchemyViolationRepository,
)

logger = get_logger(__name__)


class TicketLockRegistry:
    """
    One asyncio.Lock per ticket id.

    Locks are held weakly, so a ticket nobody is processing costs nothing.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _get(self, ticket_id: str) -> asyncio.Lock:
        lock = self._locks.get(ticket_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ticket_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, ticket_id: str) -> AsyncIterator[None]:
        lock = self._get(ticket_id)
        async with lock:
            yield

    def is_locked(self, ticket_id: str) -> bool:
        lock = self._locks.get(ticket_id)
        return lock is not None and lock.locked()


@dataclass
class TicketProcessingResult:
    """Outcome of one pass of the violation check and the escalation check."""
    ticket_id: str
    violations: List[SLAViolation] = field(default_factory=list)
    fired_rules: List[EscalationRule] = field(default_factory=list)
    resolved_violations: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class HelpdeskSLAEngine:
    """
    Entry point of the SLA compliance and escalation engine.

    Violation and escalation checks on one ticket never interleave within a
    process: both run under the ticket's lock.

    With a database session, every step that writes runs in its own
    SAVEPOINT. A failed step rolls back alone and leaves the session's
    transaction usable for the next step or ticket.
    """

    def __init__(
        self,
        policy_lookup: SLAPolicyLookup,
        violation_tracker: ViolationTracker,
        rule_engine: EscalationRuleEngine,
        rule_repository: IEscalationRuleRepository,
        ticket_repository: ITicketRepository,
        sla_stats: Optional[SLAStatsService] = None,
        escalation_stats: Optional[EscalationStatsService] = None,
        locks: Optional[TicketLockRegistry] = None,
        sweep_batch_size: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ):
        self._policy_lookup = policy_lookup
        self._violations = violation_tracker
        self._rules = rule_engine
        self._rule_repo = rule_repository
        self._ticket_repo = ticket_repository
        self._sla_stats = sla_stats
        self._escalation_stats = escalation_stats
        self._locks = locks or TicketLockRegistry()
        self._sweep_batch_size = sweep_batch_size or settings.sla_sweep_batch_size
        self._session = session

    @property
    def locks(self) -> TicketLockRegistry:
        return self._locks

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """Run a block in a nested transaction; no-op without a session."""
        if self._session is None:
            yield
            return
        async with self._session.begin_nested():
            yield

    # ========== SLA ==========

    async def calculate_deadline(
        self,
        organization_id: str,
        priority: str,
        ticket_type: str,
        start: datetime
    ) -> Optional[datetime]:
        """Resolution deadline, or None when no active policy matches."""
        return await self._policy_lookup.calculate_deadline(
            organization_id, priority, ticket_type, start
        )

    async def check_sla_violations(self, ticket: Ticket) -> List[SLAViolation]:
        async with self._locks.hold(ticket.id), self.savepoint():
            return await self._violations.check(ticket)

    async def resolve_sla_violation(self, ticket_id: str, kind: str) -> int:
        async with self._locks.hold(ticket_id), self.savepoint():
            return await self._violations.resolve(ticket_id, kind)

    async def get_sla_stats(self, organization_id: str, start: datetime, end: datetime) -> SLAStats:
        if self._sla_stats is None:
            raise ValidationException("SLA statistics are not configured for this engine")
        return await self._sla_stats.get_stats(organization_id, start, end)

    # ========== Escalation ==========

    async def check_escalation_rules(self, ticket: Ticket) -> List[EscalationRule]:
        async with self._locks.hold(ticket.id), self.savepoint():
            return await self._rules.check(ticket)

    def would_rule_fire(self, rule: EscalationRule, ticket: Ticket) -> bool:
        """Dry run: evaluate one rule's trigger without executing anything."""
        return self._rules.would_fire(rule, ticket)

    async def fire_escalation_rule(self, rule_id: str, ticket: Ticket) -> EscalationRule:
        """
        Manually execute a rule against a ticket, regardless of its trigger.

        Raises:
            ResourceNotFoundException: rule does not exist
            ValidationException: rule belongs to another organization
        """
        rule = await self._rule_repo.get_by_id(rule_id)
        if rule is None:
            raise ResourceNotFoundException("EscalationRule", rule_id)
        if rule.organization_id != ticket.organization_id:
            raise ValidationException(
                "Escalation rule belongs to another organization",
                {"rule_id": rule_id, "ticket_id": ticket.id}
            )

        async with self._locks.hold(ticket.id), self.savepoint():
            await self._rules.fire(rule, ticket)
        return rule

    async def get_escalation_stats(
        self,
        organization_id: str,
        start: datetime,
        end: datetime
    ) -> EscalationStats:
        if self._escalation_stats is None:
            raise ValidationException("Escalation statistics are not configured for this engine")
        return await self._escalation_stats.get_stats(organization_id, start, end)

    # ========== Processing ==========

    async def process_ticket(self, ticket: Ticket) -> TicketProcessingResult:
        """
        Violation check followed by escalation check, under the ticket lock.

        Store failures propagate; callers that need isolation use
        TicketLifecycleHooks or the sweep.
        """
        async with self._locks.hold(ticket.id):
            async with self.savepoint():
                violations = await self._violations.check(ticket)
            async with self.savepoint():
                fired = await self._rules.check(ticket)
        return TicketProcessingResult(ticket_id=ticket.id, violations=violations, fired_rules=fired)

    async def sweep_open_tickets(self) -> Dict[str, Any]:
        """
        Re-check every open ticket, page by page.

        A failing ticket is logged and skipped; the step that failed is rolled
        back to its savepoint, so earlier tickets keep their writes.
        """
        sweep_id = f"sweep-{uuid4().hex[:12]}"
        sweep_logger = get_context_logger(__name__, sweep_id)
        summary = {
            "sweep_id": sweep_id,
            "tickets_checked": 0,
            "violations_recorded": 0,
            "rules_fired": 0,
            "failed_tickets": [],
        }

        with log_latency(sweep_logger, "sla_sweep"):
            offset = 0
            while True:
                batch = await self._ticket_repo.list_open(limit=self._sweep_batch_size, offset=offset)
                for ticket in batch:
                    summary["tickets_checked"] += 1
                    try:
                        result = await self.process_ticket(ticket)
                    except Exception as e:
                        summary["failed_tickets"].append(ticket.id)
                        sweep_logger.error(
                            f"Sweep failed for ticket {ticket.id}: {e}",
                            exc_info=True
                        )
                        continue
                    summary["violations_recorded"] += len(result.violations)
                    summary["rules_fired"] += len(result.fired_rules)

                if len(batch) < self._sweep_batch_size:
                    break
                offset += self._sweep_batch_size

        sweep_logger.info(
            f"SLA sweep finished: {summary['tickets_checked']} tickets, "
            f"{summary['violations_recorded']} violations, {summary['rules_fired']} escalations, "
            f"{len(summary['failed_tickets'])} failures"
        )
        return summary


class TicketLifecycleHooks:
    """
    Runs the engine after the ticket-management layer saves a ticket.

    Every step is isolated: a failure is logged, the step is rolled back to
    its savepoint and the next step still runs, so the save that triggered
    the hook never fails because of the engine.
    """

    def __init__(self, engine: HelpdeskSLAEngine):
        self._engine = engine

    async def on_ticket_saved(
        self,
        ticket: Ticket,
        previous: Optional[Ticket] = None
    ) -> TicketProcessingResult:
        result = TicketProcessingResult(ticket_id=ticket.id)
        hook_logger = get_context_logger(__name__, ticket.id)

        for kind, became_set in (
            (ViolationKind.RESPONSE, self._newly_set(ticket, previous, "first_responded_at")),
            (ViolationKind.RESOLUTION, self._newly_set(ticket, previous, "resolved_at")),
        ):
            if not became_set:
                continue
            try:
                result.resolved_violations += await self._engine.resolve_sla_violation(ticket.id, kind)
            except Exception as e:
                result.errors.append(f"resolve_{kind}: {e}")
                hook_logger.error(f"Error resolving {kind} violations: {e}", exc_info=True)

        try:
            result.violations = await self._engine.check_sla_violations(ticket)
        except Exception as e:
            result.errors.append(f"check_sla_violations: {e}")
            hook_logger.error(f"Error checking SLA violations: {e}", exc_info=True)

        try:
            result.fired_rules = await self._engine.check_escalation_rules(ticket)
        except Exception as e:
            result.errors.append(f"check_escalation_rules: {e}")
            hook_logger.error(f"Error checking escalation rules: {e}", exc_info=True)

        return result

    @staticmethod
    def _newly_set(ticket: Ticket, previous: Optional[Ticket], attribute: str) -> bool:
        if getattr(ticket, attribute) is None:
            return False
        return previous is None or getattr(previous, attribute) is None


def build_engine(
    session: AsyncSession,
    ticket_repository: ITicketRepository,
    user_directory: IUserDirectory,
    dispatcher: INotificationDispatcher,
    policy_repository: Optional[ISLAPolicyRepository] = None,
    locks: Optional[TicketLockRegistry] = None,
    clock: Clock = utcnow
) -> HelpdeskSLAEngine:
    """
    Wire an engine on one database session.

    Policies come from the database unless another policy repository (for
    instance the YAML one) is passed in.
    """
    policy_lookup = SLAPolicyLookup(policy_repository or SQLAlchemySLAPolicyRepository(session))
    violation_repo = SQLAlchemyViolationRepository(session)
    rule_repo = SQLAlchemyEscalationRuleRepository(session)
    firing_repo = SQLAlchemyEscalationFiringRepository(session)

    notifier = ViolationNotifier(
        dispatcher,
        user_directory,
        notify_role_id=settings.violation_notify_role_id,
        frontend_url=settings.frontend_url,
    )
    executor = EscalationExecutor(
        ticket_repository, user_directory, dispatcher,
        frontend_url=settings.frontend_url, clock=clock
    )

    return HelpdeskSLAEngine(
        policy_lookup=policy_lookup,
        violation_tracker=ViolationTracker(policy_lookup, violation_repo, notifier, clock=clock),
        rule_engine=EscalationRuleEngine(rule_repo, executor, firing_repo, clock=clock),
        rule_repository=rule_repo,
        ticket_repository=ticket_repository,
        sla_stats=SLAStatsService(ticket_repository, violation_repo),
        escalation_stats=EscalationStatsService(firing_repo),
        locks=locks,
        session=session,
    )
