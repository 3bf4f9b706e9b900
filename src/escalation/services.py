"""
Escalation Services
===================

Construction of the escalation pipeline from settings and infrastructure,
shared by the API dependencies and the periodic tick job.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import Settings, settings as default_settings
from src.core import RuleLoadException
from src.escalation.application import (
    ActionExecutor,
    EscalationScheduler,
    IEscalationRuleRepository,
    IEventDispatcher,
    INotificationGateway,
)
from src.escalation.domain import TickReport
from src.escalation.infrastructure import (
    LoggingNotificationGateway,
    SQLAlchemyEscalationEventRepository,
    SQLAlchemyEscalationRuleRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyUnitOfWork,
    YAMLRuleManager,
    YAMLRuleRepository,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def build_rule_repository(
    session: AsyncSession,
    rule_manager: Optional[YAMLRuleManager] = None
) -> IEscalationRuleRepository:
    """YAML rules when a rule manager is configured, else the database."""
    if rule_manager is not None:
        return YAMLRuleRepository(rule_manager)
    return SQLAlchemyEscalationRuleRepository(session)


def build_escalation_scheduler(
    session: AsyncSession,
    dispatcher: IEventDispatcher,
    rule_manager: Optional[YAMLRuleManager] = None,
    notification_gateway: Optional[INotificationGateway] = None,
    config: Optional[Settings] = None
) -> EscalationScheduler:
    config = config or default_settings
    ticket_repo = SQLAlchemyTicketRepository(session)
    event_repo = SQLAlchemyEscalationEventRepository(session)

    executor = ActionExecutor(
        ticket_repository=ticket_repo,
        dispatcher=dispatcher,
        notification_gateway=notification_gateway or LoggingNotificationGateway(),
    )

    return EscalationScheduler(
        rule_repository=build_rule_repository(session, rule_manager),
        ticket_repository=ticket_repo,
        event_repository=event_repo,
        executor=executor,
        candidate_limit=config.escalation_candidate_limit,
        dedup_window=timedelta(hours=config.escalation_dedup_window_hours),
        unit_of_work=SQLAlchemyUnitOfWork(session),
    )


async def run_escalation_tick(
    session: AsyncSession,
    dispatcher: IEventDispatcher,
    rule_manager: Optional[YAMLRuleManager] = None,
    notification_gateway: Optional[INotificationGateway] = None
) -> Optional[TickReport]:
    """
    Background job: run one escalation tick.

    A rule-load failure has already been logged by the scheduler; the next
    scheduled tick is the retry.
    """
    scheduler = build_escalation_scheduler(session, dispatcher, rule_manager, notification_gateway)
    try:
        return await scheduler.run_tick()
    except RuleLoadException as e:
        logger.warning("Escalation tick aborted", extra={"error": e.message})
        return None
