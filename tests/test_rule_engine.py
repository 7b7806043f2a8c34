from datetime import datetime, timedelta

import pytest

from helpdesk_sla.config import ActionKind, Priority, TicketStatus, TriggerKind
from helpdesk_sla.escalation.application import EscalationRuleEngine, EscalationStatsService
from helpdesk_sla.escalation.domain import RuleEvaluator

from conftest import MONDAY_10AM, OTHER_ORG, make_rule, make_ticket


@pytest.mark.parametrize("age_hours, expected", [
    (10, False),
    (23.99, False),
    (24, True),
    (25, True),
])
def test_age_trigger_uses_whole_hours(age_hours, expected):
    rule = make_rule(trigger_hours=24)
    now = MONDAY_10AM + timedelta(hours=age_hours)
    assert RuleEvaluator.should_fire(rule, make_ticket(), now) is expected


def test_naive_created_at_is_read_as_utc():
    rule = make_rule(trigger_hours=24)
    ticket = make_ticket(created_at=datetime(2024, 1, 1, 10))

    assert ticket.age_hours(MONDAY_10AM + timedelta(hours=23)) == 23
    assert not RuleEvaluator.should_fire(rule, ticket, MONDAY_10AM + timedelta(hours=23))
    assert RuleEvaluator.should_fire(rule, ticket, MONDAY_10AM + timedelta(hours=24))


def test_priority_and_status_triggers_match_exactly():
    ticket = make_ticket(priority=Priority.CRITICAL, status=TicketStatus.IN_PROGRESS)

    assert RuleEvaluator.should_fire(
        make_rule(trigger_kind=TriggerKind.PRIORITY_EQUALS, trigger_priority=Priority.CRITICAL),
        ticket, MONDAY_10AM,
    )
    assert not RuleEvaluator.should_fire(
        make_rule(trigger_kind=TriggerKind.PRIORITY_EQUALS, trigger_priority=Priority.HIGH),
        ticket, MONDAY_10AM,
    )
    assert RuleEvaluator.should_fire(
        make_rule(trigger_kind=TriggerKind.STATUS_EQUALS, trigger_status=TicketStatus.IN_PROGRESS),
        ticket, MONDAY_10AM,
    )


def test_manual_and_unknown_triggers_never_fire():
    ticket = make_ticket()
    assert not RuleEvaluator.should_fire(make_rule(trigger_kind=TriggerKind.MANUAL), ticket, MONDAY_10AM)
    assert not RuleEvaluator.should_fire(make_rule(trigger_kind="moon_phase"), ticket, MONDAY_10AM)


def test_trigger_keys():
    assert RuleEvaluator.trigger_key(make_rule(trigger_hours=48)) == "age>=48"
    assert RuleEvaluator.trigger_key(
        make_rule(trigger_kind=TriggerKind.STATUS_EQUALS, trigger_status="open")
    ) == "status_equals=open"


@pytest.mark.asyncio
async def test_young_ticket_does_not_escalate(rule_engine, rules, clock, dispatcher):
    rules.add(make_rule())
    clock.advance(hours=10)

    assert await rule_engine.check(make_ticket()) == []
    assert dispatcher.attempted == []


@pytest.mark.asyncio
async def test_aged_ticket_escalates(rule_engine, rules, clock, dispatcher, tickets):
    rule = rules.add(make_rule())
    clock.advance(hours=25)

    fired = await rule_engine.check(make_ticket())

    assert fired == [rule]
    assert dispatcher.recipients == ["lead@example.com"]
    assert tickets.comments_for("T-1") == ['Escalation rule "Aged tickets" executed: notify_user']


@pytest.mark.asyncio
async def test_would_fire_has_no_side_effects(rule_engine, clock, dispatcher, tickets, firings):
    clock.advance(hours=30)

    assert rule_engine.would_fire(make_rule(), make_ticket())
    assert dispatcher.attempted == []
    assert tickets.comments == []
    assert firings.firings == []


@pytest.mark.asyncio
async def test_age_rule_fires_once_while_condition_holds(rule_engine, rules, clock, dispatcher):
    rules.add(make_rule())
    ticket = make_ticket()

    clock.advance(hours=25)
    assert len(await rule_engine.check(ticket)) == 1
    clock.advance(hours=5)
    assert await rule_engine.check(ticket) == []

    assert len(dispatcher.sent) == 1


@pytest.mark.asyncio
async def test_status_rule_rearms_after_leaving_status(rule_engine, rules, firings):
    rules.add(make_rule(
        trigger_kind=TriggerKind.STATUS_EQUALS,
        trigger_status=TicketStatus.WAITING_ON_CLIENT,
        trigger_hours=None,
    ))
    ticket = make_ticket(status=TicketStatus.WAITING_ON_CLIENT)

    assert len(await rule_engine.check(ticket)) == 1
    assert await rule_engine.check(ticket) == []

    ticket.status = TicketStatus.IN_PROGRESS
    assert await rule_engine.check(ticket) == []
    assert firings.open_firings() == []
    assert len(firings.firings) == 1

    ticket.status = TicketStatus.WAITING_ON_CLIENT
    assert len(await rule_engine.check(ticket)) == 1
    assert len(firings.firings) == 2


@pytest.mark.asyncio
async def test_without_ledger_every_scan_fires(rules, executor, clock, dispatcher):
    engine = EscalationRuleEngine(rules, executor, clock=clock)
    rules.add(make_rule())
    ticket = make_ticket()
    clock.advance(hours=25)

    await engine.check(ticket)
    await engine.check(ticket)

    assert len(dispatcher.sent) == 2


@pytest.mark.asyncio
async def test_inactive_and_foreign_rules_are_skipped(rule_engine, rules, clock):
    rules.add(make_rule(id="rule-off", active=False))
    rules.add(make_rule(id="rule-other", organization_id=OTHER_ORG))
    clock.advance(hours=48)

    assert await rule_engine.check(make_ticket()) == []


@pytest.mark.asyncio
async def test_rules_see_ticket_as_it_was_before_the_pass(rule_engine, rules, tickets):
    bump = rules.add(make_rule(
        id="rule-bump",
        name="Bump incidents",
        trigger_kind=TriggerKind.PRIORITY_EQUALS,
        trigger_priority=Priority.HIGH,
        action_kind=ActionKind.CHANGE_PRIORITY,
        new_priority=Priority.CRITICAL,
    ))
    page = rules.add(make_rule(
        id="rule-page",
        name="Page on critical",
        trigger_kind=TriggerKind.PRIORITY_EQUALS,
        trigger_priority=Priority.CRITICAL,
    ))
    ticket = make_ticket()

    assert await rule_engine.check(ticket) == [bump]
    assert ticket.priority == Priority.CRITICAL

    assert await rule_engine.check(ticket) == [page]


@pytest.mark.asyncio
async def test_failed_execution_discards_claim(rule_engine, rules, tickets, firings):
    rules.add(make_rule(
        trigger_kind=TriggerKind.PRIORITY_EQUALS,
        trigger_priority=Priority.HIGH,
        action_kind=ActionKind.CHANGE_PRIORITY,
        new_priority=Priority.CRITICAL,
    ))
    ticket = make_ticket()
    tickets.fail_updates = True

    with pytest.raises(RuntimeError):
        await rule_engine.check(ticket)
    assert firings.firings == []

    tickets.fail_updates = False
    assert len(await rule_engine.check(ticket)) == 1


@pytest.mark.asyncio
async def test_manual_fire_ignores_trigger(rule_engine, clock, dispatcher, firings):
    rule = make_rule(trigger_kind=TriggerKind.MANUAL, trigger_hours=None)
    ticket = make_ticket()

    await rule_engine.fire(rule, ticket)

    assert dispatcher.recipients == ["lead@example.com"]
    assert [f.trigger_key for f in firings.firings] == [f"manual@{clock.now.isoformat()}"]

    # Manual firings survive the release that scans perform
    assert await firings.release(rule.id, ticket.id, clock.now) == 0
    assert firings.firings[0].released_at is None


@pytest.mark.asyncio
async def test_released_firings_stay_in_escalation_stats(rule_engine, rules, firings, clock):
    rules.add(make_rule(
        trigger_kind=TriggerKind.STATUS_EQUALS,
        trigger_status=TicketStatus.WAITING_ON_CLIENT,
        trigger_hours=None,
    ))
    ticket = make_ticket(status=TicketStatus.WAITING_ON_CLIENT)
    await rule_engine.check(ticket)

    ticket.status = TicketStatus.IN_PROGRESS
    clock.advance(hours=1)
    await rule_engine.check(ticket)

    stats = await EscalationStatsService(firings).get_stats(
        ticket.organization_id, MONDAY_10AM, clock.now
    )
    assert stats.total_escalations == 1
    assert stats.escalations_by_status == {TicketStatus.WAITING_ON_CLIENT: 1}
    assert firings.firings[0].released_at == clock.now
