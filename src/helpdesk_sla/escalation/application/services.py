"""
Escalation Application Services
================================

Rule evaluation and action execution for ticket escalation.

The rule engine decides which rules fire for a ticket; the executor applies
a fired rule's action through the ticket store, the user directory and the
notification dispatcher.
"""

import dataclasses
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from helpdesk_sla.config import ActionKind, TriggerKind, settings
from helpdesk_sla.core import NotificationDispatchException
from helpdesk_sla.escalation.application.dto import EscalationNotification
from helpdesk_sla.escalation.domain import (
    MANUAL_TRIGGER_PREFIX, EscalationFiring, EscalationRule, EscalationStats, RuleEvaluator
)
from helpdesk_sla.shared.clock import Clock, utcnow
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application import (
    DirectoryUser, INotificationDispatcher, ITicketRepository, IUserDirectory
)
from helpdesk_sla.sla.domain import Ticket

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IEscalationRuleRepository(ABC):
    """Interface for escalation rule data access."""

    @abstractmethod
    async def list_active(self, organization_id: str) -> List[EscalationRule]:
        """Active rules of an organization, in store order."""

    @abstractmethod
    async def get_by_id(self, rule_id: str) -> Optional[EscalationRule]:
        """Get rule by ID."""


class IEscalationFiringRepository(ABC):
    """Interface for the escalation firing ledger."""

    @abstractmethod
    async def claim(self, firing: EscalationFiring) -> bool:
        """
        Record a firing atomically.

        Returns:
            False when an unreleased firing with the same
            (rule_id, ticket_id, trigger_key) is already recorded
        """

    @abstractmethod
    async def release(self, rule_id: str, ticket_id: str, released_at: datetime) -> int:
        """
        Stamp the unreleased, non-manual firings of a rule for a ticket as
        released; returns rows changed. Released firings stay in the history.
        """

    @abstractmethod
    async def discard(self, firing: EscalationFiring) -> None:
        """Delete a claimed firing whose action never completed."""

    @abstractmethod
    async def list_between(
        self,
        organization_id: str,
        start: datetime,
        end: datetime
    ) -> List[EscalationFiring]:
        """Every firing of an organization within [start, end], released or not."""


# ========== Helpers ==========

def pick_least_recently_assigned(candidates: List[DirectoryUser]) -> Optional[DirectoryUser]:
    """
    Tie-break among users sharing a role: never-assigned users first, then
    the oldest last assignment, then the lowest user id.
    """
    if not candidates:
        return None

    def sort_key(user: DirectoryUser):
        if user.last_assigned_at is None:
            return (0, 0.0, user.id)
        return (1, user.last_assigned_at.timestamp(), user.id)

    return min(candidates, key=sort_key)


# ========== Application Services ==========

class EscalationExecutor:
    """
    Applies the action of a fired escalation rule.

    Ticket-store failures propagate. Notification failures are logged and
    never abort the action.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        user_directory: IUserDirectory,
        dispatcher: INotificationDispatcher,
        frontend_url: Optional[str] = None,
        clock: Clock = utcnow
    ):
        self._ticket_repo = ticket_repository
        self._users = user_directory
        self._dispatcher = dispatcher
        self._frontend_url = (frontend_url or settings.frontend_url).rstrip("/")
        self._clock = clock

        self._handlers = {
            ActionKind.NOTIFY_USER: self._notify_user,
            ActionKind.REASSIGN: self._reassign,
            ActionKind.CHANGE_PRIORITY: self._change_priority,
            ActionKind.NOTIFY_LIST: self._notify_list,
        }

    async def execute(self, rule: EscalationRule, ticket: Ticket) -> None:
        """
        Run a rule's action against a ticket, then append the escalation-log
        comment. Unknown action kinds are skipped with a warning.
        """
        handler = self._handlers.get(rule.action_kind)
        if handler is None:
            logger.warning(
                f"Unknown escalation action type: {rule.action_kind}",
                extra={"rule_id": rule.id, "ticket_id": ticket.id}
            )
            return

        await handler(rule, ticket)
        await self._log_escalation(rule, ticket)

    async def _notify_user(self, rule: EscalationRule, ticket: Ticket) -> None:
        if not rule.target_user_id:
            return

        user = await self._users.get_user(rule.target_user_id)
        if user is None:
            logger.info(
                "Escalation target user not found",
                extra={"rule_id": rule.id, "user_id": rule.target_user_id}
            )
            return

        await self._dispatch(user.address, self._payload(rule, ticket, user.name), rule, ticket)

    async def _reassign(self, rule: EscalationRule, ticket: Ticket) -> None:
        new_assignee = await self._resolve_assignee(rule, ticket)

        if new_assignee is None or new_assignee == ticket.assigned_to:
            return

        previous = ticket.assigned_to
        now = self._clock()
        await self._ticket_repo.update_fields(ticket.id, assigned_to=new_assignee, updated_at=now)
        ticket.assigned_to = new_assignee
        ticket.updated_at = now

        await self._ticket_repo.add_comment(
            ticket.id,
            f"Ticket escalated and reassigned from {previous or 'unassigned'} "
            f"to {new_assignee} due to rule: {rule.name}",
            is_internal=True
        )
        logger.info(
            "Ticket reassigned by escalation",
            extra={"ticket_id": ticket.id, "rule_id": rule.id, "assigned_to": new_assignee}
        )

    async def _resolve_assignee(self, rule: EscalationRule, ticket: Ticket) -> Optional[str]:
        if rule.target_user_id:
            return rule.target_user_id

        if rule.target_role_id:
            candidates = await self._users.get_users_by_role(
                ticket.organization_id, rule.target_role_id
            )
            chosen = pick_least_recently_assigned(candidates)
            if chosen is not None:
                return chosen.id
            logger.info(
                "No user holds escalation target role",
                extra={"rule_id": rule.id, "role_id": rule.target_role_id}
            )

        return None

    async def _change_priority(self, rule: EscalationRule, ticket: Ticket) -> None:
        if not rule.new_priority or rule.new_priority == ticket.priority:
            return

        previous = ticket.priority
        now = self._clock()
        await self._ticket_repo.update_fields(ticket.id, priority=rule.new_priority, updated_at=now)
        ticket.priority = rule.new_priority
        ticket.updated_at = now

        await self._ticket_repo.add_comment(
            ticket.id,
            f"Priority changed from {previous} to {rule.new_priority} "
            f"due to escalation rule: {rule.name}",
            is_internal=True
        )

    async def _notify_list(self, rule: EscalationRule, ticket: Ticket) -> None:
        payload = self._payload(rule, ticket)
        for recipient in rule.notification_recipients or []:
            await self._dispatch(recipient, payload, rule, ticket)

    async def _log_escalation(self, rule: EscalationRule, ticket: Ticket) -> None:
        await self._ticket_repo.add_comment(
            ticket.id,
            f'Escalation rule "{rule.name}" executed: {rule.action_kind}',
            is_internal=True
        )

    def _payload(
        self,
        rule: EscalationRule,
        ticket: Ticket,
        recipient_name: Optional[str] = None
    ) -> Dict[str, Any]:
        return EscalationNotification(
            ticket_id=ticket.id,
            ticket_number=ticket.number or ticket.id,
            subject=ticket.subject,
            priority=ticket.priority,
            escalation_rule=rule.name,
            action=rule.action_kind,
            ticket_url=f"{self._frontend_url}/tickets/{ticket.id}",
            recipient_name=recipient_name,
        ).model_dump(mode="json")

    async def _dispatch(
        self,
        recipient: str,
        payload: Dict[str, Any],
        rule: EscalationRule,
        ticket: Ticket
    ) -> bool:
        """Send one notification; failures are logged, never raised."""
        try:
            delivered = await self._dispatcher.send(recipient, payload)
        except NotificationDispatchException as e:
            logger.error(
                "Escalation notification rejected by transport",
                extra={
                    "rule_id": rule.id,
                    "ticket_id": ticket.id,
                    "recipient": recipient,
                    "error": e.message,
                    "details": e.details
                }
            )
            return False
        except Exception as e:
            logger.error(
                "Escalation notification failed",
                extra={
                    "rule_id": rule.id,
                    "ticket_id": ticket.id,
                    "recipient": recipient,
                    "error": str(e)
                }
            )
            return False

        if not delivered:
            logger.warning(
                "Escalation notification not delivered",
                extra={"rule_id": rule.id, "ticket_id": ticket.id, "recipient": recipient}
            )
        return bool(delivered)


class EscalationRuleEngine:
    """
    Evaluates an organization's active rules against a ticket and executes
    the ones that fire.

    With a firing ledger, a rule fires once per qualifying transition:
    a claim suppresses repeats while the condition holds, and is released
    as soon as the condition stops holding. Without a ledger every scan
    that finds the condition true fires the rule again.
    """

    def __init__(
        self,
        rule_repository: IEscalationRuleRepository,
        executor: EscalationExecutor,
        firing_repository: Optional[IEscalationFiringRepository] = None,
        clock: Clock = utcnow
    ):
        self._rule_repo = rule_repository
        self._executor = executor
        self._firings = firing_repository
        self._clock = clock

    def would_fire(self, rule: EscalationRule, ticket: Ticket) -> bool:
        """Dry run of a rule's trigger; no side effects, ignores the ledger."""
        return RuleEvaluator.should_fire(rule, ticket, self._clock())

    async def check(self, ticket: Ticket) -> List[EscalationRule]:
        """
        Evaluate and execute the ticket organization's active rules.

        Every rule sees the ticket as it was before this pass; actions
        mutate the live ticket.

        Returns:
            Rules that fired, in store order
        """
        rules = await self._rule_repo.list_active(ticket.organization_id)
        snapshot = dataclasses.replace(ticket)
        now = self._clock()
        fired: List[EscalationRule] = []

        for rule in rules:
            if not rule.active or rule.organization_id != ticket.organization_id:
                continue

            if not RuleEvaluator.should_fire(rule, snapshot, now):
                if self._firings is not None and rule.trigger_kind != TriggerKind.MANUAL:
                    await self._firings.release(rule.id, ticket.id, now)
                continue

            firing = self._firing(rule, snapshot, RuleEvaluator.trigger_key(rule), now)
            if not await self._claim(firing):
                logger.debug(
                    "Escalation rule already fired for this condition",
                    extra={"rule_id": rule.id, "ticket_id": ticket.id, "trigger_key": firing.trigger_key}
                )
                continue

            await self._execute(rule, ticket, firing)

            fired.append(rule)
            logger.info(
                "Escalation rule fired",
                extra={
                    "rule_id": rule.id,
                    "rule_name": rule.name,
                    "ticket_id": ticket.id,
                    "action_kind": rule.action_kind
                }
            )

        return fired

    async def fire(self, rule: EscalationRule, ticket: Ticket) -> None:
        """Execute a rule explicitly (manual escalation), whatever its trigger."""
        now = self._clock()
        firing = self._firing(rule, ticket, f"{MANUAL_TRIGGER_PREFIX}{now.isoformat()}", now)
        await self._claim(firing)
        await self._execute(rule, ticket, firing)
        logger.info(
            "Escalation rule fired manually",
            extra={"rule_id": rule.id, "ticket_id": ticket.id, "action_kind": rule.action_kind}
        )

    async def _execute(self, rule: EscalationRule, ticket: Ticket, firing: EscalationFiring) -> None:
        try:
            await self._executor.execute(rule, ticket)
        except Exception:
            # The action never completed, so it is neither history nor a claim
            if self._firings is not None:
                try:
                    await self._firings.discard(firing)
                except Exception as e:
                    logger.warning(
                        "Could not discard escalation claim",
                        extra={"rule_id": rule.id, "ticket_id": ticket.id, "error": str(e)}
                    )
            raise

    async def _claim(self, firing: EscalationFiring) -> bool:
        if self._firings is None:
            return True
        return await self._firings.claim(firing)

    @staticmethod
    def _firing(rule: EscalationRule, ticket: Ticket, trigger_key: str, now: datetime) -> EscalationFiring:
        return EscalationFiring(
            rule_id=rule.id,
            ticket_id=ticket.id,
            organization_id=ticket.organization_id,
            trigger_key=trigger_key,
            ticket_priority=ticket.priority,
            ticket_status=ticket.status,
            fired_at=now,
        )


class EscalationStatsService:
    """Escalation statistics per organization, read from the firing ledger."""

    def __init__(self, firing_repository: IEscalationFiringRepository):
        self._firings = firing_repository

    async def get_stats(self, organization_id: str, start: datetime, end: datetime) -> EscalationStats:
        firings = await self._firings.list_between(organization_id, start, end)
        return EscalationStats.from_firings(firings)
