import asyncio
import dataclasses
from datetime import datetime, timezone

import pytest

from helpdesk_sla.config import ActionKind, Priority, TicketStatus, TicketType, TriggerKind, ViolationKind
from helpdesk_sla.core import RepositoryException, ResourceNotFoundException, ValidationException
from helpdesk_sla.escalation.infrastructure import SQLAlchemyEscalationRuleRepository
from helpdesk_sla.services import TicketLifecycleHooks, build_engine
from helpdesk_sla.sla.infrastructure import SQLAlchemySLAPolicyRepository, SQLAlchemyViolationRepository

from conftest import MONDAY_10AM, ORG, OTHER_ORG, make_policy, make_rule, make_ticket


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


TUESDAY_NOON = utc(2024, 1, 2, 12)


@pytest.mark.asyncio
async def test_calculate_deadline(engine):
    deadline = await engine.calculate_deadline(ORG, Priority.HIGH, TicketType.INCIDENT, MONDAY_10AM)
    assert deadline == utc(2024, 1, 2, 10)
    assert await engine.calculate_deadline(ORG, Priority.LOW, TicketType.INCIDENT, MONDAY_10AM) is None


@pytest.mark.asyncio
async def test_process_ticket_runs_both_checks(engine, rules, clock):
    rule = rules.add(make_rule())
    clock.now = TUESDAY_NOON

    result = await engine.process_ticket(make_ticket())

    assert sorted(v.kind for v in result.violations) == [ViolationKind.RESOLUTION, ViolationKind.RESPONSE]
    assert result.fired_rules == [rule]
    assert result.ok


@pytest.mark.asyncio
async def test_concurrent_checks_fire_rule_once(engine, rules, clock, dispatcher):
    rules.add(make_rule())
    clock.now = TUESDAY_NOON
    ticket = make_ticket()

    results = await asyncio.gather(
        engine.check_escalation_rules(ticket),
        engine.check_escalation_rules(ticket),
        engine.check_escalation_rules(ticket),
    )

    assert sum(len(fired) for fired in results) == 1
    assert len(dispatcher.sent) == 1


@pytest.mark.asyncio
async def test_ticket_lock_is_held_during_processing(engine):
    async with engine.locks.hold("T-1"):
        assert engine.locks.is_locked("T-1")
        assert not engine.locks.is_locked("T-2")
    assert not engine.locks.is_locked("T-1")


def test_would_rule_fire_is_a_dry_run(engine, clock, tickets):
    clock.now = TUESDAY_NOON
    assert engine.would_rule_fire(make_rule(), make_ticket())
    assert not engine.would_rule_fire(make_rule(trigger_hours=48), make_ticket())
    assert tickets.comments == []


@pytest.mark.asyncio
async def test_fire_escalation_rule_by_id(engine, rules, tickets):
    rules.add(make_rule(
        id="rule-manual",
        name="Manual bump",
        trigger_kind=TriggerKind.MANUAL,
        action_kind=ActionKind.CHANGE_PRIORITY,
        new_priority=Priority.CRITICAL,
    ))
    ticket = make_ticket()

    rule = await engine.fire_escalation_rule("rule-manual", ticket)

    assert rule.id == "rule-manual"
    assert ticket.priority == Priority.CRITICAL
    assert tickets.comments_for("T-1")[-1] == 'Escalation rule "Manual bump" executed: change_priority'


@pytest.mark.asyncio
async def test_fire_unknown_rule_raises(engine):
    with pytest.raises(ResourceNotFoundException):
        await engine.fire_escalation_rule("nope", make_ticket())


@pytest.mark.asyncio
async def test_fire_rule_of_other_organization_rejected(engine, rules):
    rules.add(make_rule(id="rule-foreign", organization_id=OTHER_ORG))
    with pytest.raises(ValidationException):
        await engine.fire_escalation_rule("rule-foreign", make_ticket())


@pytest.mark.asyncio
async def test_stats(engine, rules, tickets, clock):
    ticket = tickets.add(make_ticket())
    rules.add(make_rule())
    clock.now = TUESDAY_NOON

    await engine.process_ticket(ticket)
    await engine.resolve_sla_violation(ticket.id, ViolationKind.RESPONSE)

    sla_stats = await engine.get_sla_stats(ORG, utc(2024, 1, 1), utc(2024, 1, 3))
    assert sla_stats.total_tickets == 1
    assert sla_stats.total_violations == 2
    assert sla_stats.resolved_violations == 1
    assert sla_stats.violations_by_kind == {ViolationKind.RESPONSE: 1, ViolationKind.RESOLUTION: 1}
    assert sla_stats.violation_rate == 200.0

    escalation_stats = await engine.get_escalation_stats(ORG, utc(2024, 1, 1), utc(2024, 1, 3))
    assert escalation_stats.total_escalations == 1
    assert escalation_stats.escalations_by_priority == {Priority.HIGH: 1}
    assert escalation_stats.escalations_by_status == {TicketStatus.OPEN: 1}


# ========== Lifecycle hooks ==========

@pytest.mark.asyncio
async def test_first_response_resolves_response_violation(engine, violations, clock):
    hooks = TicketLifecycleHooks(engine)
    clock.now = utc(2024, 1, 1, 13)
    ticket = make_ticket()
    await hooks.on_ticket_saved(ticket)

    previous = dataclasses.replace(ticket)
    ticket.first_responded_at = utc(2024, 1, 1, 14)
    clock.now = utc(2024, 1, 1, 14)
    result = await hooks.on_ticket_saved(ticket, previous)

    assert result.resolved_violations == 1
    assert violations.violations[0].resolved
    assert violations.violations[0].resolved_at == utc(2024, 1, 1, 14)


@pytest.mark.asyncio
async def test_hook_keeps_going_when_violation_check_fails(engine, violations, rules, clock, dispatcher):
    rules.add(make_rule())
    violations.fail = True
    clock.now = TUESDAY_NOON

    result = await TicketLifecycleHooks(engine).on_ticket_saved(make_ticket())

    assert not result.ok
    assert len(result.errors) == 1
    assert result.errors[0].startswith("check_sla_violations")
    assert len(result.fired_rules) == 1
    assert dispatcher.recipients == ["lead@example.com"]


@pytest.mark.asyncio
async def test_hook_survives_escalation_failure(engine, rules, tickets, clock):
    rules.add(make_rule(action_kind=ActionKind.CHANGE_PRIORITY, new_priority=Priority.CRITICAL))
    tickets.fail_updates = True
    clock.now = TUESDAY_NOON

    result = await TicketLifecycleHooks(engine).on_ticket_saved(make_ticket())

    assert len(result.violations) == 2
    assert result.fired_rules == []
    assert result.errors[0].startswith("check_escalation_rules")


# ========== Sweep ==========

@pytest.mark.asyncio
async def test_sweep_pages_through_open_tickets_and_isolates_failures(
    engine, tickets, policies, clock, monkeypatch
):
    tickets.add(make_ticket(id="T-1"))
    tickets.add(make_ticket(id="T-2", created_at=utc(2024, 1, 1, 10, 5)))
    tickets.add(make_ticket(id="T-3", created_at=utc(2024, 1, 1, 10, 10), ticket_type=TicketType.PROBLEM))
    tickets.add(make_ticket(id="T-4", status=TicketStatus.RESOLVED, resolved_at=utc(2024, 1, 1, 11)))
    clock.now = TUESDAY_NOON

    original_find = policies.find_active

    async def find_active(organization_id, priority, ticket_type):
        if ticket_type == TicketType.PROBLEM:
            raise RuntimeError("policy store unavailable")
        return await original_find(organization_id, priority, ticket_type)

    monkeypatch.setattr(policies, "find_active", find_active)

    summary = await engine.sweep_open_tickets()

    assert summary["sweep_id"].startswith("sweep-")
    assert summary["tickets_checked"] == 3
    assert summary["violations_recorded"] == 4
    assert summary["rules_fired"] == 0
    assert summary["failed_tickets"] == ["T-3"]


# ========== SQLAlchemy wiring ==========

@pytest.mark.asyncio
async def test_build_engine_against_database(db_session, tickets, users, dispatcher, clock):
    await SQLAlchemySLAPolicyRepository(db_session).save(make_policy(id=None))
    await SQLAlchemyEscalationRuleRepository(db_session).save(make_rule(id=None))
    engine = build_engine(db_session, tickets, users, dispatcher, clock=clock)
    ticket = make_ticket()
    clock.now = TUESDAY_NOON

    first = await engine.process_ticket(ticket)
    second = await engine.process_ticket(ticket)

    assert len(first.violations) == 2
    assert len(first.fired_rules) == 1
    assert second.violations == []
    assert second.fired_rules == []
    assert dispatcher.recipients.count("lead@example.com") == 1


@pytest.mark.asyncio
async def test_failed_step_rolls_back_alone(db_session, tickets, users, dispatcher, clock, monkeypatch):
    await SQLAlchemySLAPolicyRepository(db_session).save(make_policy(id=None))
    tickets.add(make_ticket(id="T-1"))
    tickets.add(make_ticket(id="T-2", created_at=utc(2024, 1, 1, 10, 5)))
    clock.now = TUESDAY_NOON
    create = SQLAlchemyViolationRepository.create

    async def create_then_fail(self, violation):
        created = await create(self, violation)
        if violation.ticket_id == "T-1" and violation.kind == ViolationKind.RESOLUTION:
            raise RepositoryException("disk full")
        return created

    monkeypatch.setattr(SQLAlchemyViolationRepository, "create", create_then_fail)
    engine = build_engine(db_session, tickets, users, dispatcher, clock=clock)

    summary = await engine.sweep_open_tickets()

    stored = SQLAlchemyViolationRepository(db_session)
    assert summary["failed_tickets"] == ["T-1"]
    assert not await stored.has_violation("T-1", ViolationKind.RESPONSE)
    assert not await stored.has_violation("T-1", ViolationKind.RESOLUTION)
    assert len(await stored.list_open("T-2")) == 2


@pytest.mark.asyncio
async def test_escalation_history_survives_condition_change(db_session, tickets, users, dispatcher, clock):
    await SQLAlchemyEscalationRuleRepository(db_session).save(make_rule(
        id=None,
        trigger_kind=TriggerKind.STATUS_EQUALS,
        trigger_status=TicketStatus.WAITING_ON_CLIENT,
        trigger_hours=None,
    ))
    engine = build_engine(db_session, tickets, users, dispatcher, clock=clock)
    ticket = make_ticket(status=TicketStatus.WAITING_ON_CLIENT)

    assert len(await engine.check_escalation_rules(ticket)) == 1

    ticket.status = TicketStatus.IN_PROGRESS
    clock.advance(hours=1)
    assert await engine.check_escalation_rules(ticket) == []
    stats = await engine.get_escalation_stats(ORG, MONDAY_10AM, clock.now)
    assert stats.total_escalations == 1

    ticket.status = TicketStatus.WAITING_ON_CLIENT
    clock.advance(hours=1)
    assert len(await engine.check_escalation_rules(ticket)) == 1
    stats = await engine.get_escalation_stats(ORG, MONDAY_10AM, clock.now)
    assert stats.total_escalations == 2
    assert stats.escalations_by_status == {TicketStatus.WAITING_ON_CLIENT: 2}
