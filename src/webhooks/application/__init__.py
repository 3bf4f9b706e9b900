"""
Webhook Application Layer
=========================

Application layer for webhook delivery.

Contains:
- Services: WebhookDispatcher, DeliveryWorker, WebhookTester
- DTOs: inbound trigger, test delivery, and delivery lookup models

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.webhooks.application.dto import (
    DeliveryAttemptResponse,
    DeliveryDetailResponse,
    DeliverySummaryResponse,
    DispatchResponse,
    TicketEventRequest,
    WebhookTestRequest,
    WebhookTestResponse,
)
from src.webhooks.application.services import (
    DEFAULT_USER_AGENT,
    DeliveryWorker,
    IDeliveryRepository,
    IRetryQueue,
    ITenantDirectory,
    IWebhookSubscriptionRepository,
    IWebhookTransport,
    WebhookDispatcher,
    WebhookTester,
    build_delivery_headers,
)

__all__ = [
    # DTOs
    "DeliveryAttemptResponse",
    "DeliveryDetailResponse",
    "DeliverySummaryResponse",
    "DispatchResponse",
    "TicketEventRequest",
    "WebhookTestRequest",
    "WebhookTestResponse",
    # Services
    "DEFAULT_USER_AGENT",
    "DeliveryWorker",
    "WebhookDispatcher",
    "WebhookTester",
    "build_delivery_headers",
    # Repository Interfaces
    "IDeliveryRepository",
    "IRetryQueue",
    "ITenantDirectory",
    "IWebhookSubscriptionRepository",
    "IWebhookTransport",
]
