"""
Escalation Value Objects
=========================

Immutable condition objects and the stateless evaluator that reduces a
rule's conditions over a ticket.

Each condition kind is its own class with a single ``matches(ticket, now)``
predicate. Equality and membership conditions can also describe a coarse
store-side filter; the in-memory check is always authoritative.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from numbers import Number
from typing import Any, Dict, List, Optional

from src.config import (
    ConditionOperator,
    ConditionType,
    TIME_UNIT_MS,
    TimeUnit,
)
from src.core import ConfigurationException, EvaluationException
from src.escalation.domain.entities import EscalationRule, RuleCondition, Ticket


def convert_time_to_ms(value: float, unit: Optional[str]) -> float:
    """Convert a threshold to milliseconds. Unknown units count as hours."""
    return value * TIME_UNIT_MS.get(unit, TIME_UNIT_MS[TimeUnit.HOURS.value])


class Condition(ABC):
    """A single predicate over a ticket."""

    @abstractmethod
    def matches(self, ticket: Ticket, now: datetime) -> bool:
        """Return True when the ticket satisfies this condition at ``now``."""

    def query_filter(self) -> Dict[str, Any]:
        """Coarse filter the ticket store may apply before evaluation."""
        return {}


@dataclass(frozen=True)
class FieldCondition(Condition):
    """Equality or membership test on status, priority, or assignee."""

    field: str
    operator: str
    value: Any

    SUPPORTED_OPERATORS = (
        ConditionOperator.EQUALS.value,
        ConditionOperator.NOT_EQUALS.value,
        ConditionOperator.IN.value,
        ConditionOperator.NOT_IN.value,
    )

    def __post_init__(self):
        if self.operator not in self.SUPPORTED_OPERATORS:
            raise ConfigurationException(
                f"Unsupported operator '{self.operator}' for {self.field} condition",
                {"field": self.field, "operator": self.operator}
            )
        if self.operator in (ConditionOperator.IN.value, ConditionOperator.NOT_IN.value):
            if not isinstance(self.value, (list, tuple, set, frozenset)):
                raise ConfigurationException(
                    f"Operator '{self.operator}' requires a list value",
                    {"field": self.field, "value": self.value}
                )

    def matches(self, ticket: Ticket, now: datetime) -> bool:
        actual = getattr(ticket, self.field)

        if self.operator == ConditionOperator.EQUALS.value:
            return actual == self.value
        if self.operator == ConditionOperator.NOT_EQUALS.value:
            return actual != self.value
        if self.operator == ConditionOperator.IN.value:
            return actual in self.value
        return actual not in self.value

    def query_filter(self) -> Dict[str, Any]:
        if self.operator == ConditionOperator.EQUALS.value:
            return {self.field: self.value}
        if self.operator == ConditionOperator.IN.value:
            return {self.field: list(self.value)}
        return {}


@dataclass(frozen=True)
class ElapsedTimeCondition(Condition):
    """Compares time elapsed since a ticket timestamp against a threshold."""

    timestamp_field: str
    operator: str
    threshold_ms: float

    def __post_init__(self):
        if self.operator not in (
            ConditionOperator.GREATER_THAN.value,
            ConditionOperator.LESS_THAN.value,
        ):
            raise ConfigurationException(
                f"Unsupported operator '{self.operator}' for time condition",
                {"field": self.timestamp_field, "operator": self.operator}
            )

    def matches(self, ticket: Ticket, now: datetime) -> bool:
        timestamp = getattr(ticket, self.timestamp_field)
        if timestamp is None:
            raise EvaluationException(ticket.id, f"missing {self.timestamp_field}")

        elapsed_ms = (now - timestamp).total_seconds() * 1000

        if self.operator == ConditionOperator.GREATER_THAN.value:
            return elapsed_ms > self.threshold_ms
        return elapsed_ms < self.threshold_ms


@dataclass(frozen=True)
class NoResponseCondition(Condition):
    """Holds while no tech or admin has replied. Only enforced when required."""

    required: bool

    def matches(self, ticket: Ticket, now: datetime) -> bool:
        if not self.required:
            return True
        return not ticket.has_support_reply


@dataclass(frozen=True)
class UnrecognizedCondition(Condition):
    """Condition type this engine does not know. Always satisfied."""

    type: str

    def matches(self, ticket: Ticket, now: datetime) -> bool:
        return True


_FIELD_CONDITIONS = {
    ConditionType.STATUS.value: "status",
    ConditionType.PRIORITY.value: "priority",
    ConditionType.ASSIGNEE.value: "assignee_id",
}

_TIME_CONDITIONS = {
    ConditionType.TIME_SINCE_CREATED.value: "created_at",
    ConditionType.TIME_SINCE_UPDATED.value: "updated_at",
}


def build_condition(raw: RuleCondition) -> Condition:
    """
    Build a condition object from its authored form.

    Raises:
        ConfigurationException: For a known condition type with an invalid
            operator or value.
    """
    if raw.type in _FIELD_CONDITIONS:
        return FieldCondition(_FIELD_CONDITIONS[raw.type], raw.operator, raw.value)

    if raw.type in _TIME_CONDITIONS:
        if isinstance(raw.value, bool) or not isinstance(raw.value, Number):
            raise ConfigurationException(
                f"Time condition value must be numeric, got {raw.value!r}",
                {"type": raw.type}
            )
        return ElapsedTimeCondition(
            _TIME_CONDITIONS[raw.type],
            raw.operator,
            convert_time_to_ms(raw.value, raw.unit),
        )

    if raw.type == ConditionType.NO_RESPONSE.value:
        return NoResponseCondition(
            required=raw.operator == ConditionOperator.EQUALS.value and raw.value is True
        )

    return UnrecognizedCondition(raw.type)


class ConditionEvaluator:
    """
    Stateless evaluator for escalation rule conditions.

    All conditions of a rule are ANDed; an empty list matches every ticket.
    """

    @staticmethod
    def compile(rule: EscalationRule) -> List[Condition]:
        """Build condition objects for a rule; raises ConfigurationException."""
        return [build_condition(c) for c in rule.conditions]

    @staticmethod
    def matches_all(conditions: List[Condition], ticket: Ticket, now: datetime) -> bool:
        return all(condition.matches(ticket, now) for condition in conditions)

    def matches(self, ticket: Ticket, rule: EscalationRule, now: datetime) -> bool:
        """Check whether a ticket satisfies every condition of a rule."""
        return self.matches_all(self.compile(rule), ticket, now)

    @staticmethod
    def candidate_filter(conditions: List[Condition]) -> Dict[str, Any]:
        """
        Merge the coarse store filters of a rule's conditions.

        When two conditions constrain the same field the first one wins;
        the in-memory pass still applies both.
        """
        filters: Dict[str, Any] = {}
        for condition in conditions:
            for key, value in condition.query_filter().items():
                filters.setdefault(key, value)
        return filters
