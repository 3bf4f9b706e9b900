"""Tests for webhook event fan-out."""

import json

import pytest

from src.webhooks.application import DeliveryWorker, WebhookDispatcher
from src.webhooks.domain import RetryPolicy

from fakes import (
    FixedClock,
    InMemoryDeliveryRepository,
    InMemoryRetryQueue,
    InMemorySubscriptionRepository,
    InMemoryTenantDirectory,
    ScriptedTransport,
    make_subscription,
    ok,
)


def make_dispatcher(subscriptions, transport=None, tenants=None, max_concurrency=10):
    clock = FixedClock()
    subscription_repo = InMemorySubscriptionRepository(subscriptions)
    deliveries = InMemoryDeliveryRepository()
    transport = transport or ScriptedTransport(ok())
    worker = DeliveryWorker(
        subscription_repository=subscription_repo,
        delivery_repository=deliveries,
        retry_queue=InMemoryRetryQueue(),
        transport=transport,
        retry_policy=RetryPolicy(rng=lambda: 0.0),
        clock=clock,
    )
    dispatcher = WebhookDispatcher(
        subscription_repository=subscription_repo,
        tenant_directory=InMemoryTenantDirectory(tenants),
        worker=worker,
        max_concurrency=max_concurrency,
        clock=clock,
    )
    return dispatcher, transport, deliveries


TICKET = {"id": "T-1", "tenant_id": "acme", "status": "Open"}


class TestTenantIsolation:
    @pytest.mark.asyncio
    async def test_only_same_tenant_subscriptions_receive_event(self):
        dispatcher, transport, _ = make_dispatcher([
            make_subscription("W-acme", tenant_id="acme", url="https://acme.example.com/hook"),
            make_subscription("W-globex", tenant_id="globex", url="https://globex.example.com/hook"),
        ])

        result = await dispatcher.dispatch("ticket.created", TICKET, {})

        assert [r["url"] for r in transport.requests] == ["https://acme.example.com/hook"]
        assert result.tenant_id == "acme"
        assert len(result.deliveries) == 1

    @pytest.mark.asyncio
    async def test_unsubscribed_and_inactive_subscriptions_skipped(self):
        dispatcher, transport, _ = make_dispatcher([
            make_subscription("W-1", events=["ticket.closed"]),
            make_subscription("W-2", active=False),
            make_subscription("W-3"),
        ])

        result = await dispatcher.dispatch("ticket.created", TICKET, {})

        assert [d.webhook_id for d in result.deliveries] == ["W-3"]
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_tenant_dispatches_nothing(self):
        dispatcher, transport, deliveries = make_dispatcher([make_subscription()])

        result = await dispatcher.dispatch("ticket.created", {"id": "T-1"}, {})

        assert result.tenant_id is None
        assert result.deliveries == []
        assert transport.requests == []
        assert deliveries.deliveries == {}

    @pytest.mark.asyncio
    async def test_camel_case_tenant_id_accepted(self):
        dispatcher, transport, _ = make_dispatcher([make_subscription()])

        await dispatcher.dispatch("ticket.created", {"id": "T-1", "tenantId": "acme"}, {})

        assert len(transport.requests) == 1


class TestPayload:
    @pytest.mark.asyncio
    async def test_body_built_once_with_per_subscription_identity(self):
        dispatcher, transport, _ = make_dispatcher([
            make_subscription("W-1"),
            make_subscription("W-2"),
        ])

        await dispatcher.dispatch("ticket.created", TICKET, {"actor": "u-9"})

        bodies = [json.loads(r["body"]) for r in transport.requests]
        assert sorted(b["webhook"]["id"] for b in bodies) == ["W-1", "W-2"]
        for body in bodies:
            assert body["event"] == "ticket.created"
            assert body["timestamp"] == "2024-01-15T12:00:00.000Z"
            assert body["tenant"] == {"id": "acme", "name": "Acme Corp"}
            assert body["data"] == TICKET
            assert body["metadata"] == {"actor": "u-9", "source": "system"}
        assert bodies[0]["timestamp"] == bodies[1]["timestamp"]

    @pytest.mark.asyncio
    async def test_unknown_tenant_name(self):
        dispatcher, transport, _ = make_dispatcher([make_subscription()], tenants={})

        await dispatcher.dispatch("ticket.created", TICKET, None)

        assert json.loads(transport.requests[0]["body"])["tenant"]["name"] == "Unknown"


class TestFanOut:
    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        subscriptions = [make_subscription(f"W-{i}") for i in range(6)]
        transport = ScriptedTransport(ok(), delay=0.01)
        dispatcher, _, _ = make_dispatcher(subscriptions, transport=transport, max_concurrency=2)

        result = await dispatcher.dispatch("ticket.created", TICKET, {})

        assert len(result.deliveries) == 6
        assert transport.max_in_flight <= 2

    @pytest.mark.asyncio
    async def test_deliveries_run_concurrently(self):
        subscriptions = [make_subscription(f"W-{i}") for i in range(4)]
        transport = ScriptedTransport(ok(), delay=0.01)
        dispatcher, _, _ = make_dispatcher(subscriptions, transport=transport, max_concurrency=4)

        await dispatcher.dispatch("ticket.created", TICKET, {})

        assert transport.max_in_flight > 1

    @pytest.mark.asyncio
    async def test_one_broken_delivery_does_not_block_others(self):
        dispatcher, transport, deliveries = make_dispatcher([make_subscription("W-1"), make_subscription("W-2")])

        original_create = deliveries.create

        async def flaky_create(delivery):
            if delivery.webhook_id == "W-1":
                raise RuntimeError("db hiccup")
            return await original_create(delivery)

        deliveries.create = flaky_create

        result = await dispatcher.dispatch("ticket.created", TICKET, {})

        assert [d.webhook_id for d in result.deliveries] == ["W-2"]
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_summary_dict(self):
        dispatcher, _, _ = make_dispatcher([make_subscription()])

        result = await dispatcher.dispatch("ticket.created", TICKET, {})
        summary = result.to_dict()

        assert summary["event"] == "ticket.created"
        assert summary["subscriptions"] == 1
        assert summary["deliveries"][0]["status"] == "success"
