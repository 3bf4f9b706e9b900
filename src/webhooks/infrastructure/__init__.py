"""
Webhook Infrastructure Layer
=============================

Infrastructure implementations for webhook delivery:
- Models: SQLAlchemy ORM models
- Repositories: subscriptions, tenants, deliveries, durable retry queue
- External: httpx transport
"""

from src.webhooks.infrastructure.external import HttpxWebhookTransport
from src.webhooks.infrastructure.models import (
    DeliveryAttemptModel,
    RetryTaskModel,
    TenantModel,
    WebhookDeliveryModel,
    WebhookSubscriptionModel,
)
from src.webhooks.infrastructure.repositories import (
    SQLAlchemyDeliveryRepository,
    SQLAlchemyRetryQueue,
    SQLAlchemyTenantDirectory,
    SQLAlchemyWebhookSubscriptionRepository,
)

__all__ = [
    "HttpxWebhookTransport",
    "DeliveryAttemptModel",
    "RetryTaskModel",
    "TenantModel",
    "WebhookDeliveryModel",
    "WebhookSubscriptionModel",
    "SQLAlchemyDeliveryRepository",
    "SQLAlchemyRetryQueue",
    "SQLAlchemyTenantDirectory",
    "SQLAlchemyWebhookSubscriptionRepository",
]
