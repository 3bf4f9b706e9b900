"""
Escalation Infrastructure Layer
================================

Infrastructure implementations for the escalation engine:
- Models: SQLAlchemy ORM models
- Repositories: rules (database or YAML), tickets, escalation events,
  per-firing unit of work
- External: YAML rule hot-reload, notification gateway
"""

from src.escalation.infrastructure.external import (
    LoggingNotificationGateway,
    RuleFileHandler,
    YAMLRuleManager,
)
from src.escalation.infrastructure.models import (
    EscalationEventModel,
    EscalationRuleModel,
    TicketModel,
)
from src.escalation.infrastructure.repositories import (
    SQLAlchemyEscalationEventRepository,
    SQLAlchemyEscalationRuleRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyUnitOfWork,
    YAMLRuleRepository,
)

__all__ = [
    "LoggingNotificationGateway",
    "RuleFileHandler",
    "YAMLRuleManager",
    "EscalationEventModel",
    "EscalationRuleModel",
    "TicketModel",
    "SQLAlchemyEscalationEventRepository",
    "SQLAlchemyEscalationRuleRepository",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyUnitOfWork",
    "YAMLRuleRepository",
]
