from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from helpdesk_sla.config import ActionKind, Priority, TicketStatus, TicketType, TriggerKind
from helpdesk_sla.core import NotificationDispatchException
from helpdesk_sla.escalation.application import (
    EscalationExecutor,
    EscalationRuleEngine,
    EscalationStatsService,
    IEscalationFiringRepository,
    IEscalationRuleRepository,
)
from helpdesk_sla.escalation.domain import EscalationFiring, EscalationRule
from helpdesk_sla.infrastructure.database import Base
from helpdesk_sla.services import HelpdeskSLAEngine
from helpdesk_sla.sla.application import (
    DirectoryUser,
    INotificationDispatcher,
    ISLAPolicyRepository,
    ISLAViolationRepository,
    ITicketRepository,
    IUserDirectory,
    SLAPolicyLookup,
    SLAStatsService,
    ViolationNotifier,
    ViolationTracker,
)
from helpdesk_sla.sla.domain import BusinessCalendar, SLAPolicy, SLAViolation, Ticket
import helpdesk_sla.sla.infrastructure.models  # noqa: F401 - register tables
import helpdesk_sla.escalation.infrastructure.models  # noqa: F401 - register tables

ORG = "org-1"
OTHER_ORG = "org-2"

# Monday 2024-01-01 10:00 UTC
MONDAY_10AM = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Injectable clock whose time only moves when a test says so."""

    def __init__(self, now: datetime = MONDAY_10AM):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ========== Port fakes ==========

class FakeTicketRepository(ITicketRepository):
    def __init__(self, tickets: Optional[List[Ticket]] = None):
        self.tickets: Dict[str, Ticket] = {t.id: t for t in tickets or []}
        self.comments: List[tuple] = []
        self.updates: List[tuple] = []
        self.fail_updates = False

    def add(self, ticket: Ticket) -> Ticket:
        self.tickets[ticket.id] = ticket
        return ticket

    def comments_for(self, ticket_id: str) -> List[str]:
        return [content for tid, content, _ in self.comments if tid == ticket_id]

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        return self.tickets.get(ticket_id)

    async def update_fields(self, ticket_id: str, **fields: Any) -> None:
        if self.fail_updates:
            raise RuntimeError("ticket store unavailable")
        self.updates.append((ticket_id, fields))

    async def add_comment(self, ticket_id: str, content: str, is_internal: bool = True) -> None:
        self.comments.append((ticket_id, content, is_internal))

    async def list_open(self, limit: int = 100, offset: int = 0) -> List[Ticket]:
        open_tickets = sorted(
            (t for t in self.tickets.values() if t.is_open),
            key=lambda t: t.created_at
        )
        return open_tickets[offset:offset + limit]

    async def count_created(self, organization_id: str, start: datetime, end: datetime) -> int:
        return sum(
            1 for t in self.tickets.values()
            if t.organization_id == organization_id and start <= t.created_at <= end
        )


class FakeUserDirectory(IUserDirectory):
    def __init__(self, users: Optional[List[DirectoryUser]] = None):
        self.users: Dict[str, DirectoryUser] = {u.id: u for u in users or []}
        self.roles: Dict[tuple, List[str]] = {}

    def add(self, user: DirectoryUser, *roles: str) -> DirectoryUser:
        self.users[user.id] = user
        for role in roles:
            self.roles.setdefault((user.organization_id, role), []).append(user.id)
        return user

    async def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        return self.users.get(user_id)

    async def get_users_by_role(self, organization_id: str, role_id: str) -> List[DirectoryUser]:
        return [self.users[uid] for uid in self.roles.get((organization_id, role_id), [])]


class FakeDispatcher(INotificationDispatcher):
    def __init__(self, failing: Optional[set] = None, raising: Optional[set] = None):
        self.sent: List[tuple] = []
        self.attempted: List[str] = []
        self.failing = failing or set()
        self.raising = raising or set()

    @property
    def recipients(self) -> List[str]:
        return [recipient for recipient, _ in self.sent]

    async def send(self, recipient: str, payload: Dict[str, Any]) -> bool:
        self.attempted.append(recipient)
        if recipient in self.raising:
            raise NotificationDispatchException(f"cannot reach {recipient}", {"recipient": recipient})
        if recipient in self.failing:
            return False
        self.sent.append((recipient, payload))
        return True


class InMemoryPolicyRepository(ISLAPolicyRepository):
    def __init__(self, policies: Optional[List[SLAPolicy]] = None):
        self.policies = list(policies or [])

    async def find_active(self, organization_id: str, priority: str, ticket_type: str) -> Optional[SLAPolicy]:
        for policy in self.policies:
            if policy.active and policy.key == (organization_id, priority, ticket_type):
                return policy
        return None


class InMemoryViolationRepository(ISLAViolationRepository):
    def __init__(self):
        self.violations: List[SLAViolation] = []
        self.fail = False

    async def create(self, violation: SLAViolation) -> SLAViolation:
        if self.fail:
            raise RuntimeError("violation store unavailable")
        violation.id = violation.id or f"v-{len(self.violations) + 1}"
        self.violations.append(violation)
        return violation

    async def has_violation(self, ticket_id: str, kind: str) -> bool:
        if self.fail:
            raise RuntimeError("violation store unavailable")
        return any(v.ticket_id == ticket_id and v.kind == kind for v in self.violations)

    async def list_open(self, ticket_id: str, kind: Optional[str] = None) -> List[SLAViolation]:
        return [
            v for v in self.violations
            if v.ticket_id == ticket_id and v.is_open and (kind is None or v.kind == kind)
        ]

    async def mark_resolved(self, ticket_id: str, kind: str, resolved_at: datetime) -> int:
        open_violations = await self.list_open(ticket_id, kind)
        for violation in open_violations:
            violation.mark_resolved(resolved_at)
        return len(open_violations)

    async def count_by_kind(self, organization_id: str, start: datetime, end: datetime) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for v in self._window(organization_id, start, end):
            counts[v.kind] = counts.get(v.kind, 0) + 1
        return counts

    async def count_resolved(self, organization_id: str, start: datetime, end: datetime) -> int:
        return sum(1 for v in self._window(organization_id, start, end) if v.resolved)

    def _window(self, organization_id, start, end):
        return [
            v for v in self.violations
            if v.organization_id == organization_id and start <= v.created_at <= end
        ]


class InMemoryRuleRepository(IEscalationRuleRepository):
    def __init__(self, rules: Optional[List[EscalationRule]] = None):
        self.rules = list(rules or [])

    def add(self, rule: EscalationRule) -> EscalationRule:
        self.rules.append(rule)
        return rule

    async def list_active(self, organization_id: str) -> List[EscalationRule]:
        return [r for r in self.rules if r.active and r.organization_id == organization_id]

    async def get_by_id(self, rule_id: str) -> Optional[EscalationRule]:
        return next((r for r in self.rules if r.id == rule_id), None)


class InMemoryFiringRepository(IEscalationFiringRepository):
    def __init__(self):
        self.firings: List[EscalationFiring] = []

    def open_firings(self) -> List[EscalationFiring]:
        return [f for f in self.firings if not f.is_released]

    async def claim(self, firing: EscalationFiring) -> bool:
        key = (firing.rule_id, firing.ticket_id, firing.trigger_key)
        if any((f.rule_id, f.ticket_id, f.trigger_key) == key for f in self.open_firings()):
            return False
        firing.id = firing.id or f"f-{len(self.firings) + 1}"
        self.firings.append(firing)
        return True

    async def release(self, rule_id: str, ticket_id: str, released_at: datetime) -> int:
        released = [
            f for f in self.open_firings()
            if f.rule_id == rule_id and f.ticket_id == ticket_id and not f.is_manual
        ]
        for firing in released:
            firing.released_at = released_at
        return len(released)

    async def discard(self, firing: EscalationFiring) -> None:
        self.firings = [f for f in self.firings if f is not firing]

    async def list_between(self, organization_id: str, start: datetime, end: datetime) -> List[EscalationFiring]:
        return [
            f for f in self.firings
            if f.organization_id == organization_id and start <= f.fired_at <= end
        ]


# ========== Builders ==========

def make_ticket(**overrides) -> Ticket:
    values = dict(
        id="T-1",
        organization_id=ORG,
        number="1001",
        subject="Printer on fire",
        priority=Priority.HIGH,
        ticket_type=TicketType.INCIDENT,
        status=TicketStatus.OPEN,
        created_at=MONDAY_10AM,
    )
    values.update(overrides)
    return Ticket(**values)


def make_policy(**overrides) -> SLAPolicy:
    values = dict(
        id="policy-1",
        organization_id=ORG,
        priority=Priority.HIGH,
        ticket_type=TicketType.INCIDENT,
        response_hours=2,
        resolution_hours=8,
        calendar=BusinessCalendar(timezone="UTC"),
        name="High incidents",
    )
    values.update(overrides)
    return SLAPolicy(**values)


def make_rule(**overrides) -> EscalationRule:
    values = dict(
        id="rule-1",
        organization_id=ORG,
        name="Aged tickets",
        trigger_kind=TriggerKind.AGE,
        trigger_hours=24,
        action_kind=ActionKind.NOTIFY_USER,
        target_user_id="u-lead",
    )
    values.update(overrides)
    return EscalationRule(**values)


# ========== Fixtures ==========

@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def tickets():
    return FakeTicketRepository()


@pytest.fixture
def users():
    directory = FakeUserDirectory()
    directory.add(DirectoryUser(id="u-lead", organization_id=ORG, name="Lead", email="lead@example.com"))
    return directory


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def policies():
    return InMemoryPolicyRepository([make_policy()])


@pytest.fixture
def violations():
    return InMemoryViolationRepository()


@pytest.fixture
def rules():
    return InMemoryRuleRepository()


@pytest.fixture
def firings():
    return InMemoryFiringRepository()


@pytest.fixture
def executor(tickets, users, dispatcher, clock):
    return EscalationExecutor(tickets, users, dispatcher, frontend_url="https://helpdesk.test", clock=clock)


@pytest.fixture
def rule_engine(rules, executor, firings, clock):
    return EscalationRuleEngine(rules, executor, firings, clock=clock)


@pytest.fixture
def tracker(policies, violations, users, dispatcher, clock):
    notifier = ViolationNotifier(dispatcher, users, notify_role_id="admin", frontend_url="https://helpdesk.test")
    return ViolationTracker(SLAPolicyLookup(policies), violations, notifier, clock=clock)


@pytest.fixture
def engine(policies, tracker, rule_engine, rules, tickets, violations, firings):
    return HelpdeskSLAEngine(
        policy_lookup=SLAPolicyLookup(policies),
        violation_tracker=tracker,
        rule_engine=rule_engine,
        rule_repository=rules,
        ticket_repository=tickets,
        sla_stats=SLAStatsService(tickets, violations),
        escalation_stats=EscalationStatsService(firings),
        sweep_batch_size=2,
    )


@pytest.fixture
async def db_session():
    db_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()

    await db_engine.dispose()
