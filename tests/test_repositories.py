"""Tests for the SQLAlchemy repositories against an in-memory SQLite database."""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from src.config import DeliveryStatus
from src.core import RepositoryException, ResourceNotFoundException
from src.escalation.application import ActionExecutor, EscalationScheduler
from src.escalation.domain import ActionResult, EscalationEvent, RuleAction, RuleCondition
from src.escalation.infrastructure import (
    SQLAlchemyEscalationEventRepository,
    SQLAlchemyEscalationRuleRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyUnitOfWork,
)
from src.escalation.infrastructure.models import EscalationRuleModel, TicketModel
from src.webhooks.domain import DeliveryAttempt, WebhookDelivery
from src.webhooks.infrastructure import (
    SQLAlchemyDeliveryRepository,
    SQLAlchemyRetryQueue,
    SQLAlchemyTenantDirectory,
    SQLAlchemyWebhookSubscriptionRepository,
)
from src.webhooks.infrastructure.models import TenantModel, WebhookSubscriptionModel

from fakes import (
    NOW,
    FixedClock,
    InMemoryRuleRepository,
    RecordingDispatcher,
    RecordingNotificationGateway,
    make_rule,
)


def ticket_row(ticket_id, status="Open", priority="Medium", age_hours=10, **kwargs):
    return TicketModel(
        id=ticket_id,
        tenant_id=kwargs.pop("tenant_id", "acme"),
        status=status,
        priority=priority,
        created_at=NOW - timedelta(hours=age_hours),
        updated_at=NOW - timedelta(hours=age_hours),
        **kwargs,
    )


class TestEscalationRuleRepository:
    @pytest.mark.asyncio
    async def test_active_rules_by_priority(self, db_session):
        db_session.add_all([
            EscalationRuleModel(id="R-1", name="low", priority=1, active=True,
                                conditions=[{"type": "status", "operator": "equals", "value": "Open"}],
                                actions=[{"type": "webhook", "config": {}}]),
            EscalationRuleModel(id="R-2", name="high", priority=9, active=True, conditions=[], actions=[]),
            EscalationRuleModel(id="R-3", name="off", priority=20, active=False, conditions=[], actions=[]),
        ])
        await db_session.flush()

        rules = await SQLAlchemyEscalationRuleRepository(db_session).get_active_rules()

        assert [r.id for r in rules] == ["R-2", "R-1"]
        assert rules[1].conditions[0].operator == "equals"
        assert rules[1].actions[0].type == "webhook"


class TestTicketRepository:
    @pytest.mark.asyncio
    async def test_find_candidates_filters_and_orders(self, db_session):
        db_session.add_all([
            ticket_row("T-new", age_hours=1),
            ticket_row("T-old", age_hours=50, replies=[{"author_role": "tech"}]),
            ticket_row("T-closed", status="Closed", age_hours=80),
        ])
        await db_session.flush()
        repo = SQLAlchemyTicketRepository(db_session)

        tickets = await repo.find_candidates({"status": "Open"}, limit=10)

        assert [t.id for t in tickets] == ["T-old", "T-new"]
        assert tickets[0].has_support_reply
        assert tickets[0].created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_find_candidates_list_filter_and_limit(self, db_session):
        db_session.add_all([
            ticket_row("T-1", priority="High", age_hours=5),
            ticket_row("T-2", priority="Urgent", age_hours=4),
            ticket_row("T-3", priority="Low", age_hours=3),
        ])
        await db_session.flush()
        repo = SQLAlchemyTicketRepository(db_session)

        tickets = await repo.find_candidates({"priority": ["High", "Urgent"]}, limit=1)

        assert [t.id for t in tickets] == ["T-1"]

    @pytest.mark.asyncio
    async def test_update_fields_is_targeted(self, db_session):
        db_session.add(ticket_row("T-1", title="Printer on fire"))
        await db_session.flush()
        repo = SQLAlchemyTicketRepository(db_session)

        await repo.update_fields("T-1", {"priority": "Urgent"}, NOW)

        [ticket] = await repo.find_candidates({}, limit=5)
        assert ticket.priority == "Urgent"
        assert ticket.status == "Open"
        assert ticket.title == "Printer on fire"

    @pytest.mark.asyncio
    async def test_update_missing_ticket(self, db_session):
        with pytest.raises(ResourceNotFoundException):
            await SQLAlchemyTicketRepository(db_session).update_fields("nope", {"status": "Open"}, NOW)

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, db_session):
        with pytest.raises(RepositoryException):
            await SQLAlchemyTicketRepository(db_session).update_fields("T-1", {"tenant_id": "x"}, NOW)


class TestEscalationEventRepository:
    @pytest.mark.asyncio
    async def test_save_and_dedup_lookup(self, db_session):
        repo = SQLAlchemyEscalationEventRepository(db_session)
        await repo.save(EscalationEvent(
            ticket_id="T-1", tenant_id="acme", rule_id="R-1", rule_name="stale",
            executed_at=NOW - timedelta(hours=2), success=False,
            action_results=[ActionResult(action="assign", success=False, error="boom")],
            error=None,
        ))

        assert await repo.exists_since("T-1", "R-1", NOW - timedelta(hours=24))
        assert not await repo.exists_since("T-1", "R-1", NOW - timedelta(hours=1))
        assert not await repo.exists_since("T-1", "R-2", NOW - timedelta(hours=24))

    @pytest.mark.asyncio
    async def test_list_events_newest_first(self, db_session):
        repo = SQLAlchemyEscalationEventRepository(db_session)
        for hours_ago, rule_id in [(3, "R-1"), (1, "R-2"), (2, "R-1")]:
            await repo.save(EscalationEvent(
                ticket_id="T-1", tenant_id="acme", rule_id=rule_id, rule_name=rule_id,
                executed_at=NOW - timedelta(hours=hours_ago), success=True,
            ))

        events = await repo.list_events(ticket_id="T-1")
        only_r1 = await repo.list_events(rule_id="R-1", limit=1)

        assert [e.rule_id for e in events] == ["R-2", "R-1", "R-1"]
        assert len(only_r1) == 1
        assert only_r1[0].executed_at == NOW - timedelta(hours=2)


class TestWebhookSubscriptionRepository:
    @pytest.mark.asyncio
    async def test_list_for_event_and_counters(self, session_factory):
        async with session_factory() as session:
            session.add_all([
                WebhookSubscriptionModel(id="W-1", tenant_id="acme", url="https://a", events=["ticket.created"]),
                WebhookSubscriptionModel(id="W-2", tenant_id="acme", url="https://b", events=["ticket.closed"]),
                WebhookSubscriptionModel(id="W-3", tenant_id="globex", url="https://c", events=["ticket.created"]),
                WebhookSubscriptionModel(id="W-4", tenant_id="acme", url="https://d", events=["ticket.created"],
                                         active=False),
            ])
            await session.commit()
        repo = SQLAlchemyWebhookSubscriptionRepository(session_factory)

        subscriptions = await repo.list_for_event("acme", "ticket.created")
        assert [s.id for s in subscriptions] == ["W-1"]

        await repo.record_success("W-1", NOW)
        await repo.record_success("W-1", NOW)
        await repo.record_failure("W-1", NOW)

        subscription = await repo.get("W-1")
        assert subscription.success_count == 2
        assert subscription.failure_count == 1
        assert subscription.last_triggered_at == NOW
        assert await repo.get("missing") is None

    @pytest.mark.asyncio
    async def test_tenant_directory(self, session_factory):
        async with session_factory() as session:
            session.add(TenantModel(id="acme", name="Acme Corp"))
            await session.commit()
        directory = SQLAlchemyTenantDirectory(session_factory)

        assert await directory.get_name("acme") == "Acme Corp"
        assert await directory.get_name("globex") is None


class TestDeliveryRepository:
    @pytest.mark.asyncio
    async def test_lifecycle_with_history(self, session_factory):
        repo = SQLAlchemyDeliveryRepository(session_factory)
        delivery = WebhookDelivery(
            webhook_id="W-1", tenant_id="acme", event_type="ticket.created",
            payload={"event": "ticket.created"}, max_attempts=4, created_at=NOW,
        )
        await repo.create(delivery)

        attempt = delivery.start_attempt(NOW)
        attempt.http_status = 500
        attempt.error = "HTTP 500: Internal Server Error"
        delivery.record(attempt)
        await repo.add_attempt(attempt)
        delivery.mark_retrying(NOW + timedelta(seconds=1))
        await repo.save(delivery)

        stored = await repo.get(delivery.id)

        assert stored.status == DeliveryStatus.RETRYING
        assert stored.attempts == 1
        assert stored.next_retry_at == NOW + timedelta(seconds=1)
        assert stored.payload == {"event": "ticket.created"}
        assert [a.attempt_number for a in stored.history] == [1]
        assert stored.history[0].http_status == 500

    @pytest.mark.asyncio
    async def test_save_unknown_delivery(self, session_factory):
        delivery = WebhookDelivery(
            webhook_id="W-1", tenant_id="acme", event_type="ticket.created", payload={}, max_attempts=1,
        )

        with pytest.raises(RepositoryException):
            await SQLAlchemyDeliveryRepository(session_factory).save(delivery)

    @pytest.mark.asyncio
    async def test_get_missing(self, session_factory):
        assert await SQLAlchemyDeliveryRepository(session_factory).get("nope") is None


class TestRetryQueue:
    @pytest.mark.asyncio
    async def test_claim_lease_and_ack(self, session_factory):
        queue = SQLAlchemyRetryQueue(session_factory)
        due = await queue.enqueue("D-1", NOW - timedelta(seconds=5))
        await queue.enqueue("D-2", NOW + timedelta(minutes=5))

        claimed = await queue.claim_due(NOW, limit=10, visibility_timeout=timedelta(seconds=120))
        assert [t.delivery_id for t in claimed] == ["D-1"]
        assert claimed[0].id == due.id

        assert await queue.claim_due(NOW, limit=10, visibility_timeout=timedelta(seconds=120)) == []

        reclaimed = await queue.claim_due(
            NOW + timedelta(seconds=121), limit=10, visibility_timeout=timedelta(seconds=120)
        )
        assert [t.delivery_id for t in reclaimed] == ["D-1"]

        await queue.ack(due.id)
        later = await queue.claim_due(NOW + timedelta(minutes=10), limit=10, visibility_timeout=timedelta(seconds=120))
        assert [t.delivery_id for t in later] == ["D-2"]


class TestTickCommitsPerFiring:
    @pytest.mark.asyncio
    async def test_earlier_firing_survives_later_rule_failure(self, session_factory):
        async with session_factory() as session:
            session.add(ticket_row("T-1"))
            await session.commit()

        good = make_rule("R-good", priority=10)
        # A date is not JSON serializable, so saving this rule's event fails on flush
        bad = make_rule(
            "R-bad",
            priority=5,
            conditions=[RuleCondition("business_calendar", "equals", date(2024, 1, 1))],
            actions=[RuleAction("status_change", {"status": "Waiting"})],
        )

        async with session_factory() as session:
            tickets = SQLAlchemyTicketRepository(session)
            events = SQLAlchemyEscalationEventRepository(session)
            scheduler = EscalationScheduler(
                rule_repository=InMemoryRuleRepository([good, bad]),
                ticket_repository=tickets,
                event_repository=events,
                executor=ActionExecutor(tickets, RecordingDispatcher(), RecordingNotificationGateway()),
                unit_of_work=SQLAlchemyUnitOfWork(session),
                clock=FixedClock(NOW),
            )

            report = await scheduler.run_tick()
            await session.commit()

        assert report.escalated == 1
        assert report.rules_failed == 1

        async with session_factory() as session:
            saved = await SQLAlchemyEscalationEventRepository(session).list_events(ticket_id="T-1")
            ticket = (await session.execute(select(TicketModel).where(TicketModel.id == "T-1"))).scalar_one()

        assert [e.rule_id for e in saved] == ["R-good"]
        assert ticket.priority == "High"
        assert ticket.status == "Open"
