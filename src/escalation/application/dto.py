"""
Escalation Application DTOs
============================

Pydantic models for authored escalation rules and for the escalation API.

Rules authored in YAML are validated here before they reach the engine;
rules stored in the database are trusted and checked when compiled.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from src.config import ActionType, ConditionOperator, ConditionType
from src.escalation.domain import (
    EscalationEvent,
    EscalationRule,
    RuleAction,
    RuleCondition,
)


_FIELD_TYPES = {
    ConditionType.STATUS.value,
    ConditionType.PRIORITY.value,
    ConditionType.ASSIGNEE.value,
}
_TIME_TYPES = {
    ConditionType.TIME_SINCE_CREATED.value,
    ConditionType.TIME_SINCE_UPDATED.value,
}
_FIELD_OPERATORS = {
    ConditionOperator.EQUALS.value,
    ConditionOperator.NOT_EQUALS.value,
    ConditionOperator.IN.value,
    ConditionOperator.NOT_IN.value,
}
_TIME_OPERATORS = {
    ConditionOperator.GREATER_THAN.value,
    ConditionOperator.LESS_THAN.value,
}

# Required config key per action type
_REQUIRED_ACTION_CONFIG = {
    ActionType.ASSIGN.value: "assignee_id",
    ActionType.PRIORITY_CHANGE.value: "priority",
    ActionType.STATUS_CHANGE.value: "status",
}


# ========== Rule Authoring DTOs ==========

class ConditionDTO(BaseModel):
    """One authored condition."""
    type: str = Field(..., min_length=1, description="Condition kind")
    operator: Optional[str] = Field(None, description="Comparison operator")
    value: Any = Field(None, description="Comparison value")
    unit: Optional[str] = Field(None, description="Time unit (minutes, hours, days)")

    @model_validator(mode="after")
    def validate_operator(self) -> "ConditionDTO":
        """Check the operator and value against the condition kind."""
        if self.type in _FIELD_TYPES:
            if self.operator not in _FIELD_OPERATORS:
                raise ValueError(f"{self.type} condition does not support operator '{self.operator}'")
            if self.operator in (ConditionOperator.IN.value, ConditionOperator.NOT_IN.value) \
                    and not isinstance(self.value, list):
                raise ValueError(f"operator '{self.operator}' requires a list value")
        elif self.type in _TIME_TYPES:
            if self.operator not in _TIME_OPERATORS:
                raise ValueError(f"{self.type} condition does not support operator '{self.operator}'")
            if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
                raise ValueError(f"{self.type} condition requires a numeric value")
        elif self.type == ConditionType.NO_RESPONSE.value:
            if self.value is not None and not isinstance(self.value, bool):
                raise ValueError("no_response condition requires a boolean value")
        return self

    def to_domain(self) -> RuleCondition:
        # YAML scalars such as dates become strings so audit records stay JSON
        data = self.model_dump(mode="json")
        return RuleCondition(
            type=data["type"],
            operator=data["operator"],
            value=data["value"],
            unit=data["unit"],
        )


class ActionDTO(BaseModel):
    """One authored action. Unknown types are kept and fail at execution."""
    type: str = Field(..., min_length=1, description="Action kind")
    config: Dict[str, Any] = Field(default_factory=dict, description="Type-specific settings")

    @model_validator(mode="after")
    def validate_config(self) -> "ActionDTO":
        """Ensure known action types carry their required config."""
        required = _REQUIRED_ACTION_CONFIG.get(self.type)
        if required and not self.config.get(required):
            raise ValueError(f"{self.type} action requires config.{required}")
        if self.type in (ActionType.EMAIL.value, ActionType.SMS.value):
            recipients = self.config.get("recipients", [])
            if not isinstance(recipients, list):
                raise ValueError(f"{self.type} action config.recipients must be a list")
        return self

    def to_domain(self) -> RuleAction:
        return RuleAction(type=self.type, config=self.model_dump(mode="json")["config"])


class EscalationRuleDTO(BaseModel):
    """Authored escalation rule."""
    id: str = Field(..., min_length=1, description="Rule ID")
    name: str = Field(..., min_length=1, description="Rule name")
    description: Optional[str] = Field(None, description="Rule description")
    priority: int = Field(default=0, description="Higher priorities run first")
    active: bool = Field(default=True, description="Inactive rules are skipped")
    conditions: List[ConditionDTO] = Field(default_factory=list)
    actions: List[ActionDTO] = Field(default_factory=list)

    def to_domain(self) -> EscalationRule:
        return EscalationRule(
            id=self.id,
            name=self.name,
            description=self.description,
            priority=self.priority,
            active=self.active,
            conditions=tuple(c.to_domain() for c in self.conditions),
            actions=tuple(a.to_domain() for a in self.actions),
        )


class EscalationRuleSetDTO(BaseModel):
    """Top-level document of a YAML rule file."""
    rules: List[EscalationRuleDTO] = Field(default_factory=list)

    @field_validator("rules")
    @classmethod
    def validate_unique_ids(cls, v: List[EscalationRuleDTO]) -> List[EscalationRuleDTO]:
        """Rule IDs key dedup history, so they must be unique."""
        seen = set()
        for rule in v:
            if rule.id in seen:
                raise ValueError(f"duplicate rule id '{rule.id}'")
            seen.add(rule.id)
        return v


# ========== Response DTOs ==========

class ActionResultResponse(BaseModel):
    """Outcome of one action in a firing."""
    action: str
    success: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class EscalationEventResponse(BaseModel):
    """Response model for an escalation event."""
    id: str = Field(..., description="Event ID")
    ticket_id: str
    tenant_id: str
    rule_id: str
    rule_name: str
    executed_at: datetime
    success: bool
    action_results: List[ActionResultResponse] = Field(default_factory=list)
    ticket_snapshot: Dict[str, Any] = Field(default_factory=dict)
    conditions: List[Dict[str, Any]] = Field(default_factory=list)
    actions: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def from_domain(cls, event: EscalationEvent) -> "EscalationEventResponse":
        return cls(
            id=event.id,
            ticket_id=event.ticket_id,
            tenant_id=event.tenant_id,
            rule_id=event.rule_id,
            rule_name=event.rule_name,
            executed_at=event.executed_at,
            success=event.success,
            action_results=[ActionResultResponse(**r.to_dict()) for r in event.action_results],
            ticket_snapshot=event.ticket_snapshot,
            conditions=event.conditions,
            actions=event.actions,
            error=event.error,
        )


class EscalationEventListResponse(BaseModel):
    """Response model for an event listing."""
    events: List[EscalationEventResponse]
    count: int


class TickReportResponse(BaseModel):
    """Counters of one escalation tick."""
    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    rules_loaded: int = 0
    rules_processed: int = 0
    rules_failed: int = 0
    tickets_considered: int = 0
    skipped_recent: int = 0
    evaluation_errors: int = 0
    matched: int = 0
    escalated: int = 0
    failed_escalations: int = 0
