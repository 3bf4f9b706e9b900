"""Tests for the HTTP API with application services overridden by fakes."""

import asyncio
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.escalation.application import ActionExecutor, EscalationScheduler
from src.escalation.domain import EscalationEvent
from src.escalation.interfaces.controllers import get_escalation_scheduler, get_event_repository
from src.main import app
from src.webhooks.application import DeliveryWorker, WebhookDispatcher, WebhookTester
from src.webhooks.domain import SIGNATURE_256_HEADER, SIGNATURE_HEADER, RetryPolicy, WebhookDelivery
from src.webhooks.interfaces.controllers import (
    get_delivery_repository,
    get_webhook_dispatcher,
    get_webhook_tester,
)

from fakes import (
    NOW,
    FixedClock,
    InMemoryDeliveryRepository,
    InMemoryEventRepository,
    InMemoryRetryQueue,
    InMemoryRuleRepository,
    InMemorySubscriptionRepository,
    InMemoryTenantDirectory,
    InMemoryTicketRepository,
    RecordingDispatcher,
    RecordingNotificationGateway,
    ScriptedTransport,
    make_rule,
    make_subscription,
    make_ticket,
    ok,
)


@pytest.fixture
def events() -> InMemoryEventRepository:
    return InMemoryEventRepository()


@pytest.fixture
def deliveries() -> InMemoryDeliveryRepository:
    return InMemoryDeliveryRepository()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport(ok())


@pytest_asyncio.fixture
async def client(events, deliveries, transport) -> AsyncGenerator[AsyncClient, None]:
    """API client with fakes wired in place of the database-backed services."""
    clock = FixedClock()
    tickets = InMemoryTicketRepository([make_ticket()])
    subscriptions = InMemorySubscriptionRepository([make_subscription()])
    worker = DeliveryWorker(
        subscription_repository=subscriptions,
        delivery_repository=deliveries,
        retry_queue=InMemoryRetryQueue(),
        transport=transport,
        retry_policy=RetryPolicy(rng=lambda: 0.0),
        clock=clock,
    )

    def scheduler_override():
        return EscalationScheduler(
            rule_repository=InMemoryRuleRepository([make_rule()]),
            ticket_repository=tickets,
            event_repository=events,
            executor=ActionExecutor(tickets, RecordingDispatcher(), RecordingNotificationGateway()),
            clock=clock,
        )

    app.state.escalation_lock = asyncio.Lock()
    app.dependency_overrides[get_escalation_scheduler] = scheduler_override
    app.dependency_overrides[get_event_repository] = lambda: events
    app.dependency_overrides[get_delivery_repository] = lambda: deliveries
    app.dependency_overrides[get_webhook_dispatcher] = lambda: WebhookDispatcher(
        subscriptions, InMemoryTenantDirectory(), worker, clock=clock
    )
    app.dependency_overrides[get_webhook_tester] = lambda: WebhookTester(transport, clock=clock)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class TestEscalationEndpoints:
    @pytest.mark.asyncio
    async def test_run_tick(self, client, events):
        response = await client.post("/escalations/run")

        assert response.status_code == 200
        body = response.json()
        assert body["rules_loaded"] == 1
        assert body["escalated"] == 1
        assert len(events.events) == 1

    @pytest.mark.asyncio
    async def test_run_conflicts_while_tick_active(self, client):
        async with app.state.escalation_lock:
            response = await client.post("/escalations/run")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_list_events(self, client, events):
        events.events.append(EscalationEvent(
            ticket_id="T-9", tenant_id="acme", rule_id="R-1", rule_name="stale",
            executed_at=NOW, success=True,
        ))

        response = await client.get("/escalations/events", params={"ticket_id": "T-9"})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["events"][0]["rule_id"] == "R-1"

    @pytest.mark.asyncio
    async def test_list_events_limit_validated(self, client):
        response = await client.get("/escalations/events", params={"limit": 0})

        assert response.status_code == 422


class TestWebhookEndpoints:
    @pytest.mark.asyncio
    async def test_dispatch_event(self, client, transport):
        response = await client.post("/webhooks/events", json={
            "eventType": "ticket.created",
            "ticket": {"id": "T-1", "tenantId": "acme"},
        })

        assert response.status_code == 200
        body = response.json()
        assert body["event"] == "ticket.created"
        assert body["tenant_id"] == "acme"
        assert body["subscriptions"] == 1
        assert body["deliveries"][0]["status"] == "success"
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_dispatch_rejects_unknown_event(self, client):
        response = await client.post("/webhooks/events", json={
            "eventType": "ticket.exploded",
            "ticket": {"id": "T-1", "tenantId": "acme"},
        })

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_send_test_delivery(self, client):
        response = await client.post("/webhooks/test", json={"url": "https://hooks.example.com/t"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["http_status"] == 200

    @pytest.mark.asyncio
    async def test_get_delivery(self, client, deliveries):
        delivery = WebhookDelivery(
            webhook_id="W-1", tenant_id="acme", event_type="ticket.created",
            payload={"event": "ticket.created"}, max_attempts=4, created_at=NOW,
        )
        await deliveries.create(delivery)

        response = await client.get(f"/webhooks/deliveries/{delivery.id}")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["max_attempts"] == 4

    @pytest.mark.asyncio
    async def test_get_missing_delivery(self, client):
        response = await client.get("/webhooks/deliveries/nope")

        assert response.status_code == 404
        assert "not found" in response.json()["detail"]
        assert "X-Correlation-ID" in response.headers


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert "job_scheduler" in body["checks"]


class TestApiDocs:
    def test_description_names_emitted_signature_headers(self):
        assert f"`{SIGNATURE_HEADER}`" in app.description
        assert f"`{SIGNATURE_256_HEADER}`" in app.description
        assert "X-Hub" not in app.description
