"""
Escalation Infrastructure Repositories
=======================================

Concrete implementations of repository interfaces using SQLAlchemy, plus a
rule repository backed by the hot-reloaded YAML rule file.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core import RepositoryException, ResourceNotFoundException
from src.escalation.application import (
    IEscalationEventRepository,
    IEscalationRuleRepository,
    ITicketRepository,
    IUnitOfWork,
)
from src.escalation.domain import (
    ActionResult,
    EscalationEvent,
    EscalationRule,
    RuleAction,
    RuleCondition,
    Ticket,
    parse_timestamp,
)
from src.escalation.infrastructure.models import (
    EscalationEventModel,
    EscalationRuleModel,
    TicketModel,
)

# Ticket columns a coarse candidate filter may constrain
_FILTERABLE_COLUMNS = {
    "status": TicketModel.status,
    "priority": TicketModel.priority,
    "assignee_id": TicketModel.assignee_id,
}


def _rule_from_model(model: EscalationRuleModel) -> EscalationRule:
    return EscalationRule(
        id=model.id,
        name=model.name,
        description=model.description,
        priority=model.priority,
        active=model.active,
        conditions=tuple(
            RuleCondition(
                type=c.get("type", ""),
                operator=c.get("operator"),
                value=c.get("value"),
                unit=c.get("unit"),
            )
            for c in (model.conditions or [])
        ),
        actions=tuple(
            RuleAction(type=a.get("type", ""), config=a.get("config") or {})
            for a in (model.actions or [])
        ),
    )


def _ticket_from_model(model: TicketModel) -> Ticket:
    return Ticket.from_record({
        "id": model.id,
        "tenant_id": model.tenant_id,
        "title": model.title,
        "status": model.status,
        "priority": model.priority,
        "assignee_id": model.assignee_id,
        "created_at": model.created_at,
        "updated_at": model.updated_at,
        "replies": model.replies or [],
    })


class SQLAlchemyEscalationRuleRepository(IEscalationRuleRepository):
    """Loads active rules from the 'escalation_rules' table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_active_rules(self) -> List[EscalationRule]:
        stmt = (
            select(EscalationRuleModel)
            .where(EscalationRuleModel.active.is_(True))
            .order_by(EscalationRuleModel.priority.desc())
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to query escalation rules: {e}") from e

        return [_rule_from_model(model) for model in result.scalars().all()]


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket store.

    Only targeted column updates are issued so that concurrent writers of
    other fields are not overwritten.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_candidates(self, filters: Dict[str, Any], limit: int) -> List[Ticket]:
        """List tickets matching a coarse filter, oldest first."""
        stmt = select(TicketModel)

        conditions = []
        for key, value in filters.items():
            column = _FILTERABLE_COLUMNS.get(key)
            if column is None:
                continue
            if isinstance(value, list):
                conditions.append(column.in_(value))
            else:
                conditions.append(column == value)

        if conditions:
            stmt = stmt.where(and_(*conditions))

        stmt = stmt.order_by(TicketModel.created_at.asc()).limit(limit)

        result = await self._session.execute(stmt)
        return [_ticket_from_model(model) for model in result.scalars().all()]

    async def update_fields(self, ticket_id: str, fields: Dict[str, Any], updated_at: datetime) -> None:
        unknown = set(fields) - set(_FILTERABLE_COLUMNS)
        if unknown:
            raise RepositoryException(f"Cannot update ticket fields: {sorted(unknown)}")

        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(**fields, updated_at=updated_at)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ResourceNotFoundException("Ticket", ticket_id)
        await self._session.flush()


class SQLAlchemyEscalationEventRepository(IEscalationEventRepository):
    """Append-only store of escalation events."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def save(self, event: EscalationEvent) -> EscalationEvent:
        model = EscalationEventModel(
            id=event.id,
            ticket_id=event.ticket_id,
            tenant_id=event.tenant_id,
            rule_id=event.rule_id,
            rule_name=event.rule_name,
            executed_at=event.executed_at,
            success=event.success,
            error=event.error,
            action_results=[r.to_dict() for r in event.action_results],
            ticket_snapshot=event.ticket_snapshot,
            conditions=event.conditions,
            actions=event.actions,
        )

        self._session.add(model)
        await self._session.flush()

        return event

    async def exists_since(self, ticket_id: str, rule_id: str, since: datetime) -> bool:
        stmt = (
            select(EscalationEventModel.id)
            .where(
                EscalationEventModel.ticket_id == ticket_id,
                EscalationEventModel.rule_id == rule_id,
                EscalationEventModel.executed_at > since,
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_events(
        self,
        ticket_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        limit: int = 50
    ) -> List[EscalationEvent]:
        stmt = select(EscalationEventModel)

        if ticket_id:
            stmt = stmt.where(EscalationEventModel.ticket_id == ticket_id)
        if rule_id:
            stmt = stmt.where(EscalationEventModel.rule_id == rule_id)

        stmt = stmt.order_by(EscalationEventModel.executed_at.desc()).limit(limit)

        result = await self._session.execute(stmt)

        events = []
        for model in result.scalars().all():
            events.append(EscalationEvent(
                id=model.id,
                ticket_id=model.ticket_id,
                tenant_id=model.tenant_id,
                rule_id=model.rule_id,
                rule_name=model.rule_name,
                executed_at=parse_timestamp(model.executed_at),
                success=model.success,
                error=model.error,
                action_results=[ActionResult(**r) for r in (model.action_results or [])],
                ticket_snapshot=model.ticket_snapshot or {},
                conditions=model.conditions or [],
                actions=model.actions or [],
            ))

        return events


class YAMLRuleRepository(IEscalationRuleRepository):
    """
    Escalation rules from the YAML rule file.

    Reads the current rule set held by a ``YAMLRuleManager``, which reloads
    the file when it changes on disk.
    """

    def __init__(self, rule_manager):
        self._rule_manager = rule_manager

    async def get_active_rules(self) -> List[EscalationRule]:
        rules = [rule for rule in self._rule_manager.rules if rule.active]
        return sorted(rules, key=lambda rule: rule.priority, reverse=True)


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """Commits or rolls back the session shared by the tick's repositories."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def commit(self) -> None:
        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise RepositoryException(f"Failed to commit escalation: {e}") from e

    async def rollback(self) -> None:
        await self._session.rollback()
