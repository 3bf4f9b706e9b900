"""
Escalation Infrastructure Models
=================================

SQLAlchemy ORM models for the escalation module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import TicketStatus


def _uuid() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TicketModel(Base):
    """
    Database model for tickets.

    Maps to the 'tickets' table, which is owned by ticket management. This
    service reads candidates and applies targeted field updates.
    """
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN.value, index=True)
    priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # List of {author_role, author_id, created_at}
    replies: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class EscalationRuleModel(Base):
    """
    Database model for escalation rules.

    Maps to the 'escalation_rules' table.
    """
    __tablename__ = "escalation_rules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # [{type, operator, value, unit?}] and [{type, config}]
    conditions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class EscalationEventModel(Base):
    """
    Database model for escalation events.

    Maps to the 'escalation_events' table. Rows are append-only.
    """
    __tablename__ = "escalation_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    rule_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rule_name: Mapped[str] = mapped_column(String(255), nullable=False)

    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    action_results: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    ticket_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    conditions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Dedup lookback: (ticket_id, rule_id, executed_at > since)
    __table_args__ = (
        Index("ix_escalation_events_dedup", "ticket_id", "rule_id", "executed_at"),
    )
