"""
Escalation Application Layer
=============================

Application layer for the escalation rule engine.

Contains:
- Services: DeduplicationGuard, ActionExecutor, EscalationScheduler
- DTOs: rule authoring models and API responses

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.escalation.application.dto import (
    ActionDTO,
    ActionResultResponse,
    ConditionDTO,
    EscalationEventListResponse,
    EscalationEventResponse,
    EscalationRuleDTO,
    EscalationRuleSetDTO,
    TickReportResponse,
)
from src.escalation.application.services import (
    DEFAULT_DEDUP_WINDOW_MS,
    ActionExecutor,
    DeduplicationGuard,
    EscalationScheduler,
    IEscalationEventRepository,
    IEscalationRuleRepository,
    IEventDispatcher,
    INotificationGateway,
    ITicketRepository,
    IUnitOfWork,
    utcnow,
)

__all__ = [
    # DTOs
    "ActionDTO",
    "ActionResultResponse",
    "ConditionDTO",
    "EscalationEventListResponse",
    "EscalationEventResponse",
    "EscalationRuleDTO",
    "EscalationRuleSetDTO",
    "TickReportResponse",
    # Services
    "DEFAULT_DEDUP_WINDOW_MS",
    "ActionExecutor",
    "DeduplicationGuard",
    "EscalationScheduler",
    "utcnow",
    # Repository Interfaces
    "IEscalationEventRepository",
    "IEscalationRuleRepository",
    "IEventDispatcher",
    "INotificationGateway",
    "ITicketRepository",
    "IUnitOfWork",
]
