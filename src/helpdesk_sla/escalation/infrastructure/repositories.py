"""
Escalation Infrastructure Repositories
=======================================

SQLAlchemy implementations of the escalation repository interfaces.
"""

from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import and_, delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.escalation.application import (
    IEscalationFiringRepository, IEscalationRuleRepository
)
from helpdesk_sla.escalation.domain import MANUAL_TRIGGER_PREFIX, EscalationFiring, EscalationRule
from helpdesk_sla.escalation.infrastructure.models import (
    EscalationFiringModel, EscalationRuleModel
)
from helpdesk_sla.infrastructure.database import as_utc, repository_errors


class SQLAlchemyEscalationRuleRepository(IEscalationRuleRepository):
    """
    SQLAlchemy implementation of the escalation rule repository.

    Store order is creation order.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_active(self, organization_id: str) -> List[EscalationRule]:
        stmt = (
            select(EscalationRuleModel)
            .where(and_(
                EscalationRuleModel.organization_id == organization_id,
                EscalationRuleModel.is_active.is_(True),
            ))
            .order_by(EscalationRuleModel.created_at.asc(), EscalationRuleModel.id.asc())
        )
        with repository_errors("list escalation rules"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()

        return [self._to_domain(m) for m in models]

    async def get_by_id(self, rule_id: str) -> Optional[EscalationRule]:
        with repository_errors("get escalation rule"):
            model = await self._session.get(EscalationRuleModel, rule_id)
        return self._to_domain(model) if model else None

    async def save(self, rule: EscalationRule) -> EscalationRule:
        """Insert or update a rule."""
        with repository_errors("save escalation rule"):
            model = await self._session.get(EscalationRuleModel, rule.id) if rule.id else None
            if model is None:
                model = EscalationRuleModel(organization_id=rule.organization_id)
                if rule.id:
                    model.id = rule.id
                self._session.add(model)

            model.name = rule.name
            model.description = rule.description
            model.trigger_type = rule.trigger_kind
            model.trigger_hours = rule.trigger_hours
            model.trigger_priority = rule.trigger_priority
            model.trigger_status = rule.trigger_status
            model.action_type = rule.action_kind
            model.target_user_id = rule.target_user_id
            model.target_role_id = rule.target_role_id
            model.new_priority = rule.new_priority
            model.notification_recipients = list(rule.notification_recipients or [])
            model.is_active = rule.active
            await self._session.flush()

        rule.id = model.id
        return rule

    @staticmethod
    def _to_domain(model: EscalationRuleModel) -> EscalationRule:
        return EscalationRule(
            id=model.id,
            organization_id=model.organization_id,
            name=model.name,
            description=model.description or "",
            trigger_kind=model.trigger_type,
            trigger_hours=model.trigger_hours,
            trigger_priority=model.trigger_priority,
            trigger_status=model.trigger_status,
            action_kind=model.action_type,
            target_user_id=model.target_user_id,
            target_role_id=model.target_role_id,
            new_priority=model.new_priority,
            notification_recipients=list(model.notification_recipients or []),
            active=model.is_active,
        )


class SQLAlchemyEscalationFiringRepository(IEscalationFiringRepository):
    """
    SQLAlchemy implementation of the escalation firing ledger.

    claim() uses INSERT ... ON CONFLICT DO NOTHING against the partial unique
    index of unreleased firings on PostgreSQL and SQLite, so two requests
    racing on one ticket cannot both win.
    """

    _UNIQUE_COLUMNS = ["rule_id", "ticket_id", "trigger_key"]

    def __init__(self, session: AsyncSession):
        self._session = session

    async def claim(self, firing: EscalationFiring) -> bool:
        values = {
            "id": firing.id or str(uuid4()),
            "rule_id": firing.rule_id,
            "ticket_id": firing.ticket_id,
            "organization_id": firing.organization_id,
            "trigger_key": firing.trigger_key,
            "ticket_priority": firing.ticket_priority,
            "ticket_status": firing.ticket_status,
            "fired_at": as_utc(firing.fired_at),
            "released_at": None,
        }
        dialect = self._session.get_bind().dialect.name

        with repository_errors("claim escalation firing"):
            if dialect in ("postgresql", "sqlite"):
                insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
                stmt = (
                    insert(EscalationFiringModel)
                    .values(**values)
                    .on_conflict_do_nothing(
                        index_elements=self._UNIQUE_COLUMNS,
                        index_where=EscalationFiringModel.released_at.is_(None),
                    )
                )
                result = await self._session.execute(stmt)
                claimed = (result.rowcount or 0) > 0
            else:
                claimed = not await self._is_claimed(firing)
                if claimed:
                    self._session.add(EscalationFiringModel(**values))
                    await self._session.flush()

        if claimed:
            firing.id = values["id"]
            firing.released_at = None
        return claimed

    async def _is_claimed(self, firing: EscalationFiring) -> bool:
        stmt = select(EscalationFiringModel.id).where(and_(
            EscalationFiringModel.rule_id == firing.rule_id,
            EscalationFiringModel.ticket_id == firing.ticket_id,
            EscalationFiringModel.trigger_key == firing.trigger_key,
            EscalationFiringModel.released_at.is_(None),
        )).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def release(self, rule_id: str, ticket_id: str, released_at: datetime) -> int:
        stmt = (
            update(EscalationFiringModel)
            .where(and_(
                EscalationFiringModel.rule_id == rule_id,
                EscalationFiringModel.ticket_id == ticket_id,
                EscalationFiringModel.released_at.is_(None),
                EscalationFiringModel.trigger_key.not_like(f"{MANUAL_TRIGGER_PREFIX}%"),
            ))
            .values(released_at=as_utc(released_at))
            .execution_options(synchronize_session=False)
        )
        with repository_errors("release escalation firing"):
            result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def discard(self, firing: EscalationFiring) -> None:
        if not firing.id:
            return
        stmt = delete(EscalationFiringModel).where(EscalationFiringModel.id == firing.id)
        with repository_errors("discard escalation firing"):
            await self._session.execute(stmt)
        firing.id = None

    async def list_between(
        self,
        organization_id: str,
        start: datetime,
        end: datetime
    ) -> List[EscalationFiring]:
        stmt = (
            select(EscalationFiringModel)
            .where(and_(
                EscalationFiringModel.organization_id == organization_id,
                EscalationFiringModel.fired_at >= as_utc(start),
                EscalationFiringModel.fired_at <= as_utc(end),
            ))
            .order_by(EscalationFiringModel.fired_at.asc())
        )
        with repository_errors("list escalation firings"):
            result = await self._session.execute(stmt)
            models = result.scalars().all()

        return [
            EscalationFiring(
                id=m.id,
                rule_id=m.rule_id,
                ticket_id=m.ticket_id,
                organization_id=m.organization_id,
                trigger_key=m.trigger_key,
                ticket_priority=m.ticket_priority,
                ticket_status=m.ticket_status,
                fired_at=as_utc(m.fired_at),
                released_at=as_utc(m.released_at),
            )
            for m in models
        ]
