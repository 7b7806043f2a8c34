"""
Escalation Value Objects
=========================

Pure trigger evaluation for escalation rules.
"""

import math
from datetime import datetime
from typing import Optional

from helpdesk_sla.config import TriggerKind
from helpdesk_sla.escalation.domain.entities import EscalationRule
from helpdesk_sla.sla.domain import Ticket


class RuleEvaluator:
    """
    Stateless predicates deciding whether a rule's trigger holds.
    """

    @staticmethod
    def should_fire(rule: EscalationRule, ticket: Ticket, now: datetime) -> bool:
        """
        Evaluate a rule's trigger against a ticket.

        - age: whole hours since creation (floored) >= trigger_hours
        - priority_equals / status_equals: exact match
        - manual and unknown triggers never fire from a scan
        """
        if rule.trigger_kind == TriggerKind.AGE:
            if rule.trigger_hours is None:
                return False
            return math.floor(ticket.age_hours(now)) >= rule.trigger_hours

        if rule.trigger_kind == TriggerKind.PRIORITY_EQUALS:
            return rule.trigger_priority is not None and ticket.priority == rule.trigger_priority

        if rule.trigger_kind == TriggerKind.STATUS_EQUALS:
            return rule.trigger_status is not None and ticket.status == rule.trigger_status

        return False

    @staticmethod
    def trigger_key(rule: EscalationRule) -> str:
        """
        Identity of the condition a firing satisfied, e.g. 'age>=24' or
        'status_equals=open'. Editing a rule's parameter changes the key.
        """
        if rule.trigger_kind == TriggerKind.AGE:
            return f"age>={rule.trigger_hours}"
        parameter: Optional[str] = rule.trigger_parameter
        return f"{rule.trigger_kind}={parameter}" if parameter is not None else rule.trigger_kind
