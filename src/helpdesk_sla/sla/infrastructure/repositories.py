"""
SLA Infrastructure Repositories
=================================

Concrete implementations of the SLA repository interfaces.

This layer contains the data access logic - how we store and retrieve
policies and violations, from the database or from a YAML file.
"""

import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError
from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.core import ApplicationException, ConfigurationException
from helpdesk_sla.infrastructure.database import as_utc, repository_errors
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application import (
    ISLAPolicyRepository, ISLAViolationRepository, SLAPolicyDocument
)
from helpdesk_sla.sla.domain import BusinessCalendar, SLAPolicy, SLAViolation
from helpdesk_sla.sla.infrastructure.models import SLAPolicyModel, SLAViolationModel

logger = get_logger(__name__)


class SQLAlchemySLAPolicyRepository(ISLAPolicyRepository):
    """
    SQLAlchemy implementation of the SLA policy repository.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_active(
        self,
        organization_id: str,
        priority: str,
        ticket_type: str
    ) -> Optional[SLAPolicy]:
        """First active policy for (organization, priority, ticket type)."""
        stmt = (
            select(SLAPolicyModel)
            .where(and_(
                SLAPolicyModel.organization_id == organization_id,
                SLAPolicyModel.priority == priority,
                SLAPolicyModel.ticket_type == ticket_type,
                SLAPolicyModel.is_active.is_(True),
            ))
            .order_by(SLAPolicyModel.created_at.asc())
            .limit(1)
        )
        with repository_errors("find SLA policy"):
            result = await self._session.execute(stmt)
            model = result.scalar_one_or_none()

        return self._to_domain(model) if model else None

    async def save(self, policy: SLAPolicy) -> SLAPolicy:
        """Insert or update a policy."""
        model = None
        with repository_errors("save SLA policy"):
            if policy.id:
                model = await self._session.get(SLAPolicyModel, policy.id)
            if model is None:
                model = SLAPolicyModel(organization_id=policy.organization_id)
                if policy.id:
                    model.id = policy.id
                self._session.add(model)

            model.name = policy.name
            model.priority = policy.priority
            model.ticket_type = policy.ticket_type
            model.response_hours = policy.response_hours
            model.resolution_hours = policy.resolution_hours
            model.business_hours_start = policy.calendar.hours_start
            model.business_hours_end = policy.calendar.hours_end
            model.business_days = sorted(policy.calendar.working_weekdays)
            model.holidays = sorted(h.isoformat() for h in policy.calendar.holidays)
            model.timezone = policy.calendar.timezone
            model.is_active = policy.active
            await self._session.flush()

        policy.id = model.id
        return policy

    @staticmethod
    def _to_domain(model: SLAPolicyModel) -> SLAPolicy:
        return SLAPolicy(
            id=model.id,
            organization_id=model.organization_id,
            name=model.name,
            priority=model.priority,
            ticket_type=model.ticket_type,
            response_hours=model.response_hours,
            resolution_hours=model.resolution_hours,
            calendar=BusinessCalendar.from_values(
                hours_start=model.business_hours_start,
                hours_end=model.business_hours_end,
                working_weekdays=model.business_days,
                holidays=model.holidays,
                timezone=model.timezone,
            ),
            active=model.is_active,
        )


class SQLAlchemyViolationRepository(ISLAViolationRepository):
    """
    SQLAlchemy implementation of the SLA violation repository.

    All timestamps are written as UTC.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, violation: SLAViolation) -> SLAViolation:
        """Create new violation."""
        model = SLAViolationModel(
            ticket_id=violation.ticket_id,
            organization_id=violation.organization_id,
            kind=violation.kind,
            expected_deadline=as_utc(violation.expected_deadline),
            overdue_minutes=violation.overdue_minutes,
            details=violation.details,
            is_resolved=violation.resolved,
            resolved_at=as_utc(violation.resolved_at),
            created_at=as_utc(violation.created_at),
        )
        if violation.id:
            model.id = violation.id

        with repository_errors("create SLA violation"):
            self._session.add(model)
            await self._session.flush()

        violation.id = model.id
        return violation

    async def has_violation(self, ticket_id: str, kind: str) -> bool:
        stmt = select(SLAViolationModel.id).where(and_(
            SLAViolationModel.ticket_id == ticket_id,
            SLAViolationModel.kind == kind,
        )).limit(1)
        with repository_errors("check SLA violation"):
            result = await self._session.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def list_open(self, ticket_id: str, kind: Optional[str] = None) -> List[SLAViolation]:
        stmt = select(SLAViolationModel).where(and_(
            SLAViolationModel.ticket_id == ticket_id,
            SLAViolationModel.is_resolved.is_(False),
        ))
        if kind:
            stmt = stmt.where(SLAViolationModel.kind == kind)
        stmt = stmt.order_by(SLAViolationModel.created_at.asc())

        with repository_errors("list open SLA violations"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()

        return [self._to_domain(m) for m in models]

    async def mark_resolved(self, ticket_id: str, kind: str, resolved_at: datetime) -> int:
        stmt = (
            update(SLAViolationModel)
            .where(and_(
                SLAViolationModel.ticket_id == ticket_id,
                SLAViolationModel.kind == kind,
                SLAViolationModel.is_resolved.is_(False),
            ))
            .values(is_resolved=True, resolved_at=as_utc(resolved_at))
            .execution_options(synchronize_session=False)
        )
        with repository_errors("resolve SLA violations"):
            result = await self._session.execute(stmt)
            await self._session.flush()
        return result.rowcount or 0

    async def count_by_kind(
        self,
        organization_id: str,
        start: datetime,
        end: datetime
    ) -> Dict[str, int]:
        stmt = (
            select(SLAViolationModel.kind, func.count())
            .where(self._window(organization_id, start, end))
            .group_by(SLAViolationModel.kind)
        )
        with repository_errors("count SLA violations"):
            result = await self._session.execute(stmt)
            return {kind: count for kind, count in result.all()}

    async def count_resolved(self, organization_id: str, start: datetime, end: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(SLAViolationModel)
            .where(and_(
                self._window(organization_id, start, end),
                SLAViolationModel.is_resolved.is_(True),
            ))
        )
        with repository_errors("count resolved SLA violations"):
            result = await self._session.execute(stmt)
            return result.scalar_one()

    @staticmethod
    def _window(organization_id: str, start: datetime, end: datetime):
        return and_(
            SLAViolationModel.organization_id == organization_id,
            SLAViolationModel.created_at >= as_utc(start),
            SLAViolationModel.created_at <= as_utc(end),
        )

    @staticmethod
    def _to_domain(model: SLAViolationModel) -> SLAViolation:
        return SLAViolation(
            id=model.id,
            ticket_id=model.ticket_id,
            organization_id=model.organization_id,
            kind=model.kind,
            expected_deadline=as_utc(model.expected_deadline),
            overdue_minutes=model.overdue_minutes,
            resolved=model.is_resolved,
            resolved_at=as_utc(model.resolved_at),
            created_at=as_utc(model.created_at),
            details=dict(model.details or {}),
        )


class YAMLPolicyRepository(ISLAPolicyRepository):
    """
    SLA policy repository backed by a YAML file.

    Thread-safe: the watchdog observer thread calls reload() while request
    coroutines read policies.
    """

    def __init__(self, policy_path: Path):
        self._path = Path(policy_path)
        self._lock = threading.Lock()
        self._policies: List[SLAPolicy] = self._load_from_file(self._path)

    @property
    def path(self) -> Path:
        return self._path

    def _load_from_file(self, path: Path) -> List[SLAPolicy]:
        """Load and validate the policy document."""
        if not path.exists():
            logger.warning(f"SLA policy file not found: {path}, no policies loaded")
            return []

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        try:
            document = SLAPolicyDocument(**data)
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid SLA policy file: {path}", {"errors": e.errors()}
            ) from e

        try:
            return [p.to_domain() for p in document.policies]
        except (ApplicationException, ValueError) as e:
            raise ConfigurationException(
                f"Invalid SLA policy in {path}: {e}", {"error": str(e)}
            ) from e

    def reload(self) -> bool:
        """Reload policies from file; keeps the previous set on failure."""
        try:
            policies = self._load_from_file(self._path)
        except (ConfigurationException, yaml.YAMLError, OSError) as e:
            logger.error(f"Failed to reload SLA policies: {e}")
            return False

        with self._lock:
            self._policies = policies
        logger.info("SLA policies reloaded", extra={"policy_count": len(policies)})
        return True

    def all(self) -> List[SLAPolicy]:
        with self._lock:
            return list(self._policies)

    async def find_active(
        self,
        organization_id: str,
        priority: str,
        ticket_type: str
    ) -> Optional[SLAPolicy]:
        key = (organization_id, priority, ticket_type)
        for policy in self.all():
            if policy.active and policy.key == key:
                return policy
        return None
