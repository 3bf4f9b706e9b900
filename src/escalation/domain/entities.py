"""
Escalation Domain Entities
===========================

Pure Python domain entities for the escalation rule engine.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from src.config import SUPPORT_ROLES


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Coerce a stored timestamp into an aware UTC datetime.

    Accepts datetimes (naive values are taken as UTC), ISO-8601 strings,
    and epoch milliseconds. Returns None for missing values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


@dataclass
class Reply:
    """A reply on a ticket, tagged with its author's role."""

    author_role: str
    author_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_from_support(self) -> bool:
        return self.author_role in SUPPORT_ROLES


@dataclass
class Ticket:
    """
    Support ticket as seen by the escalation engine.

    Owned by the ticket-management collaborator; this service only reads it
    and applies targeted field updates.
    """

    id: str
    tenant_id: str
    status: Optional[str]
    priority: Optional[str]
    assignee_id: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    replies: List[Reply] = field(default_factory=list)
    title: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Ticket":
        """Build a ticket from a collaborator record (snake or camel case)."""
        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in record:
                    return record[key]
            return default

        known = {
            "id", "tenant_id", "tenantId", "status", "priority", "assignee_id",
            "assigneeId", "created_at", "createdAt", "updated_at", "updatedAt",
            "replies", "title",
        }
        replies = [
            Reply(
                author_role=r.get("author_role", r.get("authorRole", "")),
                author_id=r.get("author_id", r.get("authorId")),
                created_at=parse_timestamp(r.get("created_at", r.get("createdAt"))),
            )
            for r in (pick("replies", default=[]) or [])
        ]

        return cls(
            id=str(pick("id", default="")),
            tenant_id=str(pick("tenant_id", "tenantId", default="")),
            status=pick("status"),
            priority=pick("priority"),
            assignee_id=pick("assignee_id", "assigneeId"),
            created_at=parse_timestamp(pick("created_at", "createdAt")),
            updated_at=parse_timestamp(pick("updated_at", "updatedAt")),
            replies=replies,
            title=pick("title"),
            attributes={k: v for k, v in record.items() if k not in known},
        )

    @property
    def has_support_reply(self) -> bool:
        return any(reply.is_from_support for reply in self.replies)

    def apply_updates(self, updates: Dict[str, Any], at: datetime) -> None:
        """Mirror a targeted store update onto this in-memory copy."""
        for key, value in updates.items():
            setattr(self, key, value)
        self.updated_at = at

    def snapshot(self) -> Dict[str, Any]:
        """Fields recorded on an escalation event at decision time."""
        return {
            "status": self.status,
            "priority": self.priority,
            "assignee_id": self.assignee_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for webhook payloads."""
        return {
            **self.attributes,
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "assignee_id": self.assignee_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "replies": [
                {
                    "author_role": r.author_role,
                    "author_id": r.author_id,
                    "created_at": r.created_at.isoformat() if r.created_at else None,
                }
                for r in self.replies
            ],
        }


@dataclass(frozen=True)
class RuleCondition:
    """One authored condition, as stored. Interpreted by domain conditions."""

    type: str
    operator: Optional[str] = None
    value: Any = None
    unit: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type, "operator": self.operator, "value": self.value}
        if self.unit is not None:
            data["unit"] = self.unit
        return data


@dataclass(frozen=True)
class RuleAction:
    """One authored action with its type-specific config."""

    type: str
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "config": dict(self.config)}


@dataclass(frozen=True)
class EscalationRule:
    """
    Declarative condition + action policy.

    Immutable for the duration of an evaluation pass.
    """

    id: str
    name: str
    priority: int
    active: bool
    conditions: tuple = ()
    actions: tuple = ()
    description: Optional[str] = None


@dataclass
class ActionResult:
    """Outcome of one action in a firing."""

    action: str
    success: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "success": self.success,
            "result": self.result,
            "error": self.error,
        }


@dataclass
class EscalationEvent:
    """
    Audit record of one rule firing on one ticket.

    Written once, never mutated. The DeduplicationGuard reads these to
    enforce the cooldown window.
    """

    ticket_id: str
    tenant_id: str
    rule_id: str
    rule_name: str
    executed_at: datetime
    success: bool
    action_results: List[ActionResult] = field(default_factory=list)
    ticket_snapshot: Dict[str, Any] = field(default_factory=dict)
    conditions: List[Dict[str, Any]] = field(default_factory=list)
    actions: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    @classmethod
    def from_results(
        cls,
        ticket: Ticket,
        rule: EscalationRule,
        results: List[ActionResult],
        executed_at: datetime,
        snapshot: Dict[str, Any],
    ) -> "EscalationEvent":
        return cls(
            ticket_id=ticket.id,
            tenant_id=ticket.tenant_id,
            rule_id=rule.id,
            rule_name=rule.name,
            executed_at=executed_at,
            success=all(r.success for r in results),
            action_results=results,
            ticket_snapshot=snapshot,
            conditions=[c.to_dict() for c in rule.conditions],
            actions=[a.to_dict() for a in rule.actions],
        )


@dataclass
class TickContext:
    """
    Explicit run context threaded through one escalation tick.

    Holds the tick's clock reading and limits so that every component of
    the pipeline evaluates against the same "now".
    """

    now: datetime
    candidate_limit: int = 100
    dedup_window: timedelta = timedelta(hours=24)
    run_id: str = field(default_factory=lambda: uuid4().hex)


@dataclass
class TickReport:
    """Counters for one escalation tick."""

    run_id: str
    started_at: datetime
    rules_loaded: int = 0
    rules_processed: int = 0
    rules_failed: int = 0
    tickets_considered: int = 0
    skipped_recent: int = 0
    evaluation_errors: int = 0
    matched: int = 0
    escalated: int = 0
    failed_escalations: int = 0
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "rules_loaded": self.rules_loaded,
            "rules_processed": self.rules_processed,
            "rules_failed": self.rules_failed,
            "tickets_considered": self.tickets_considered,
            "skipped_recent": self.skipped_recent,
            "evaluation_errors": self.evaluation_errors,
            "matched": self.matched,
            "escalated": self.escalated,
            "failed_escalations": self.failed_escalations,
        }
