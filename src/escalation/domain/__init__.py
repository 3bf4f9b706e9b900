"""
Escalation Domain Layer
=======================

Domain layer for the escalation rule engine.

Contains:
- Entities: Ticket, EscalationRule, EscalationEvent, TickContext, TickReport
- Value Objects: condition kinds and the stateless ConditionEvaluator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.escalation.domain.entities import (
    ActionResult,
    EscalationEvent,
    EscalationRule,
    Reply,
    RuleAction,
    RuleCondition,
    Ticket,
    TickContext,
    TickReport,
    parse_timestamp,
)
from src.escalation.domain.value_objects import (
    Condition,
    ConditionEvaluator,
    ElapsedTimeCondition,
    FieldCondition,
    NoResponseCondition,
    UnrecognizedCondition,
    build_condition,
    convert_time_to_ms,
)

__all__ = [
    # Entities
    "ActionResult",
    "EscalationEvent",
    "EscalationRule",
    "Reply",
    "RuleAction",
    "RuleCondition",
    "Ticket",
    "TickContext",
    "TickReport",
    "parse_timestamp",
    # Value Objects & Services
    "Condition",
    "ConditionEvaluator",
    "ElapsedTimeCondition",
    "FieldCondition",
    "NoResponseCondition",
    "UnrecognizedCondition",
    "build_condition",
    "convert_time_to_ms",
]
