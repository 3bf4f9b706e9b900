"""
Escalation Application Services
================================

Application services orchestrate the escalation pipeline and coordinate
between domain objects and repositories.

Following SOLID principles:
- Single Responsibility: guard, executor, and scheduler each own one step
- Dependency Inversion: depend on repository and gateway abstractions
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.config import ActionType, WebhookEventType
from src.core import (
    ConfigurationException,
    EvaluationException,
    RuleLoadException,
    UnsupportedActionException,
)
from src.escalation.domain import (
    ActionResult,
    ConditionEvaluator,
    EscalationEvent,
    EscalationRule,
    RuleAction,
    Ticket,
    TickContext,
    TickReport,
)
from src.shared.infrastructure.logging import get_context_logger, get_logger, log_latency

logger = get_logger(__name__)

DEFAULT_DEDUP_WINDOW_MS = 86_400_000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IEscalationRuleRepository(ABC):
    """Interface for escalation rule access."""

    @abstractmethod
    async def get_active_rules(self) -> List[EscalationRule]:
        """Get active rules, highest priority first."""


class ITicketRepository(ABC):
    """Interface for the ticket store owned by ticket management."""

    @abstractmethod
    async def find_candidates(self, filters: Dict[str, Any], limit: int) -> List[Ticket]:
        """Get up to ``limit`` tickets matching a coarse filter."""

    @abstractmethod
    async def update_fields(self, ticket_id: str, fields: Dict[str, Any], updated_at: datetime) -> None:
        """Apply a targeted update to the given fields only."""


class IEscalationEventRepository(ABC):
    """Interface for escalation audit records."""

    @abstractmethod
    async def save(self, event: EscalationEvent) -> EscalationEvent:
        """Persist a new event."""

    @abstractmethod
    async def exists_since(self, ticket_id: str, rule_id: str, since: datetime) -> bool:
        """Check for an event on the pair executed strictly after ``since``."""

    @abstractmethod
    async def list_events(
        self,
        ticket_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        limit: int = 50
    ) -> List[EscalationEvent]:
        """List events, newest first."""


class IEventDispatcher(ABC):
    """Fan-out of ticket events to webhook subscribers."""

    @abstractmethod
    async def dispatch(self, event_type: str, ticket_data: Dict[str, Any], metadata: Dict[str, Any]) -> Any:
        """Dispatch an event; returns a summary with ``to_dict()``."""


class INotificationGateway(ABC):
    """Email and SMS collaborators."""

    @abstractmethod
    async def send_email(self, recipients: List[str], subject: str, ticket: Ticket, context: Dict[str, Any]) -> Dict[str, Any]:
        """Send an email notification about a ticket."""

    @abstractmethod
    async def send_sms(self, recipients: List[str], message: str, ticket: Ticket, context: Dict[str, Any]) -> Dict[str, Any]:
        """Send an SMS notification about a ticket."""


class IUnitOfWork(ABC):
    """Transaction boundary around one firing."""

    @abstractmethod
    async def commit(self) -> None:
        """Make the pending ticket updates and audit event durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard pending work so the next firing starts clean."""


# ========== Application Services ==========

class DeduplicationGuard:
    """
    Prevents a rule from re-firing on a ticket within the cooldown window.

    This is the only idempotency mechanism of the engine. It works at the
    firing level; deliveries are never deduplicated.
    """

    def __init__(self, event_repository: IEscalationEventRepository):
        self._event_repo = event_repository

    async def has_fired_recently(
        self,
        ticket_id: str,
        rule_id: str,
        now: datetime,
        window_ms: int = DEFAULT_DEDUP_WINDOW_MS
    ) -> bool:
        since = now - timedelta(milliseconds=window_ms)
        return await self._event_repo.exists_since(ticket_id, rule_id, since)


ActionHandler = Callable[[Ticket, EscalationRule, RuleAction, TickContext], Awaitable[Dict[str, Any]]]


class ActionExecutor:
    """
    Executes a rule's actions against a matched ticket.

    Best effort and non-transactional: every action runs, and each failure
    is recorded on its own ActionResult without stopping the rest.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        dispatcher: IEventDispatcher,
        notification_gateway: INotificationGateway
    ):
        self._ticket_repo = ticket_repository
        self._dispatcher = dispatcher
        self._notifier = notification_gateway
        self._handlers: Dict[ActionType, ActionHandler] = {
            ActionType.ASSIGN: self._assign,
            ActionType.PRIORITY_CHANGE: self._change_priority,
            ActionType.STATUS_CHANGE: self._change_status,
            ActionType.WEBHOOK: self._trigger_webhook,
            ActionType.EMAIL: self._send_email,
            ActionType.SMS: self._send_sms,
        }

        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise ConfigurationException(
                "Action types without handlers",
                {"missing": sorted(a.value for a in missing)}
            )

    async def execute(self, ticket: Ticket, rule: EscalationRule, context: TickContext) -> List[ActionResult]:
        """
        Run every action of a rule in order.

        Returns:
            One ActionResult per action, in rule order
        """
        results = []

        for action in rule.actions:
            try:
                handler = self._resolve(action)
                outcome = await handler(ticket, rule, action, context)
                results.append(ActionResult(action=action.type, success=True, result=outcome))
            except Exception as e:
                logger.warning(
                    "Escalation action failed",
                    extra={
                        "ticket_id": ticket.id,
                        "rule_id": rule.id,
                        "action": action.type,
                        "error": str(e),
                        "correlation_id": context.run_id
                    }
                )
                results.append(ActionResult(action=action.type, success=False, error=str(e)))

        return results

    def _resolve(self, action: RuleAction) -> ActionHandler:
        try:
            return self._handlers[ActionType(action.type)]
        except ValueError:
            raise UnsupportedActionException(action.type)

    async def _update_ticket(self, ticket: Ticket, fields: Dict[str, Any], context: TickContext) -> None:
        await self._ticket_repo.update_fields(ticket.id, fields, context.now)
        ticket.apply_updates(fields, context.now)

    @staticmethod
    def _require(action: RuleAction, *keys: str) -> Any:
        for key in keys:
            value = action.config.get(key)
            if value:
                return value
        raise ConfigurationException(
            f"{action.type} action requires config.{keys[0]}",
            {"action": action.type}
        )

    async def _assign(self, ticket, rule, action, context) -> Dict[str, Any]:
        assignee_id = self._require(action, "assignee_id", "assigneeId")
        await self._update_ticket(ticket, {"assignee_id": assignee_id}, context)
        return {"assignee_id": assignee_id}

    async def _change_priority(self, ticket, rule, action, context) -> Dict[str, Any]:
        priority = self._require(action, "priority")
        previous = ticket.priority
        await self._update_ticket(ticket, {"priority": priority}, context)
        return {"priority": priority, "previous_priority": previous}

    async def _change_status(self, ticket, rule, action, context) -> Dict[str, Any]:
        status = self._require(action, "status")
        previous = ticket.status
        await self._update_ticket(ticket, {"status": status}, context)
        return {"status": status, "previous_status": previous}

    async def _trigger_webhook(self, ticket, rule, action, context) -> Dict[str, Any]:
        executed_at = context.now.isoformat()
        metadata = {
            "source": "escalation_rule",
            "escalation": {
                "rule": {
                    "id": rule.id,
                    "name": rule.name,
                    "description": rule.description,
                },
                "trigger": {
                    "conditions": [c.to_dict() for c in rule.conditions],
                    "executed_at": executed_at,
                },
                "action": action.to_dict(),
            },
            "timestamp": executed_at,
        }
        summary = await self._dispatcher.dispatch(
            WebhookEventType.TICKET_ESCALATED.value,
            ticket.to_dict(),
            metadata
        )
        return summary.to_dict()

    async def _send_email(self, ticket, rule, action, context) -> Dict[str, Any]:
        recipients = action.config.get("recipients") or []
        subject = action.config.get("subject") or f"Ticket {ticket.id} escalated: {rule.name}"
        return await self._notifier.send_email(
            recipients, subject, ticket, {"rule_id": rule.id, "rule_name": rule.name}
        )

    async def _send_sms(self, ticket, rule, action, context) -> Dict[str, Any]:
        recipients = action.config.get("recipients") or []
        message = action.config.get("message") or f"Ticket {ticket.id} escalated by rule {rule.name}"
        return await self._notifier.send_sms(
            recipients, message, ticket, {"rule_id": rule.id, "rule_name": rule.name}
        )


class EscalationScheduler:
    """
    Periodic orchestrator of the escalation pipeline.

    One tick: load rules, then for each rule (highest priority first) fetch
    candidate tickets and drive dedup -> evaluate -> execute per ticket.

    A ticket escalated by one rule stays eligible for the other rules of
    the same tick. Failures are isolated per rule and per ticket; only a
    failure to load the rule set aborts the tick. The caller guarantees
    that ticks never overlap.

    With a unit of work, every firing is committed as soon as its event is
    saved, and a failing rule rolls back only its own pending work.
    """

    def __init__(
        self,
        rule_repository: IEscalationRuleRepository,
        ticket_repository: ITicketRepository,
        event_repository: IEscalationEventRepository,
        executor: ActionExecutor,
        evaluator: Optional[ConditionEvaluator] = None,
        dedup_guard: Optional[DeduplicationGuard] = None,
        candidate_limit: int = 100,
        dedup_window: timedelta = timedelta(hours=24),
        unit_of_work: Optional[IUnitOfWork] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._rule_repo = rule_repository
        self._ticket_repo = ticket_repository
        self._event_repo = event_repository
        self._executor = executor
        self._evaluator = evaluator or ConditionEvaluator()
        self._dedup = dedup_guard or DeduplicationGuard(event_repository)
        self._candidate_limit = candidate_limit
        self._dedup_window = dedup_window
        self._uow = unit_of_work
        self._clock = clock

    async def run_tick(self, now: Optional[datetime] = None) -> TickReport:
        """
        Run one escalation pass.

        Raises:
            RuleLoadException: If the active rule set cannot be loaded
        """
        context = TickContext(
            now=now or self._clock(),
            candidate_limit=self._candidate_limit,
            dedup_window=self._dedup_window,
        )
        report = TickReport(run_id=context.run_id, started_at=context.now)
        log = get_context_logger(__name__, correlation_id=context.run_id)

        with log_latency(log, "escalation_tick"):
            rules = await self._load_rules(log)
            report.rules_loaded = len(rules)

            for rule in rules:
                try:
                    await self._process_rule(rule, context, report, log)
                    report.rules_processed += 1
                except Exception as e:
                    report.rules_failed += 1
                    await self._rollback(log)
                    log.error(
                        "Escalation rule failed",
                        extra={
                            "rule_id": rule.id,
                            "rule_name": rule.name,
                            "error_type": type(e).__name__,
                            "error": str(e)
                        }
                    )

        report.finished_at = self._clock()
        log.info("Escalation tick finished", extra=report.to_dict())
        return report

    async def _load_rules(self, log) -> List[EscalationRule]:
        try:
            rules = await self._rule_repo.get_active_rules()
        except RuleLoadException as e:
            log.error("Failed to load escalation rules", extra={"error": str(e)})
            raise
        except Exception as e:
            log.error("Failed to load escalation rules", extra={"error": str(e)})
            raise RuleLoadException(f"Failed to load escalation rules: {e}") from e

        active = [rule for rule in rules if rule.active]
        return sorted(active, key=lambda rule: rule.priority, reverse=True)

    async def _rollback(self, log) -> None:
        if self._uow is None:
            return
        try:
            await self._uow.rollback()
        except Exception as e:
            log.error("Rollback after rule failure failed", extra={"error": str(e)})

    async def _process_rule(self, rule: EscalationRule, context: TickContext, report: TickReport, log) -> None:
        conditions = self._evaluator.compile(rule)
        filters = self._evaluator.candidate_filter(conditions)
        tickets = await self._ticket_repo.find_candidates(filters, context.candidate_limit)

        log.debug(
            "Evaluating escalation rule",
            extra={"rule_id": rule.id, "candidates": len(tickets), "filters": filters}
        )

        window_ms = int(context.dedup_window.total_seconds() * 1000)

        for ticket in tickets:
            report.tickets_considered += 1

            if await self._dedup.has_fired_recently(ticket.id, rule.id, context.now, window_ms):
                report.skipped_recent += 1
                continue

            try:
                matched = self._evaluator.matches_all(conditions, ticket, context.now)
            except EvaluationException as e:
                report.evaluation_errors += 1
                log.warning(
                    "Ticket evaluation failed",
                    extra={"rule_id": rule.id, "ticket_id": ticket.id, "error": e.message}
                )
                continue

            if not matched:
                continue

            report.matched += 1
            event = await self._escalate(ticket, rule, context, log)
            if event.success:
                report.escalated += 1
            else:
                report.failed_escalations += 1

    async def _escalate(self, ticket: Ticket, rule: EscalationRule, context: TickContext, log) -> EscalationEvent:
        snapshot = ticket.snapshot()

        try:
            results = await self._executor.execute(ticket, rule, context)
            event = EscalationEvent.from_results(ticket, rule, results, context.now, snapshot)
        except Exception as e:
            log.error(
                "Escalation failed",
                extra={"rule_id": rule.id, "ticket_id": ticket.id, "error": str(e)}
            )
            event = EscalationEvent.from_results(ticket, rule, [], context.now, snapshot)
            event.success = False
            event.error = str(e)

        await self._event_repo.save(event)
        if self._uow is not None:
            await self._uow.commit()

        log.info(
            "Escalation rule fired",
            extra={
                "rule_id": rule.id,
                "ticket_id": ticket.id,
                "tenant_id": ticket.tenant_id,
                "success": event.success,
                "actions": len(event.action_results)
            }
        )
        return event
