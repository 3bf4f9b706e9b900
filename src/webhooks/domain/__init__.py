"""
Webhook Domain Layer
====================

Domain layer for webhook delivery.

Contains:
- Entities: WebhookSubscription, WebhookDelivery, DeliveryAttempt, RetryTask
- Value Objects: payload helpers, SignatureSigner, RetryPolicy

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.webhooks.domain.entities import (
    DeliveryAttempt,
    DispatchResult,
    RetryTask,
    Tenant,
    TestDeliveryResult,
    WebhookDelivery,
    WebhookSubscription,
    clamp,
)
from src.webhooks.domain.value_objects import (
    SIGNATURE_256_HEADER,
    SIGNATURE_HEADER,
    RetryPolicy,
    SignatureSigner,
    TransportResponse,
    build_event_payload,
    format_timestamp,
    is_valid_url,
    serialize_payload,
    truncate,
    with_webhook_identity,
)

__all__ = [
    # Entities
    "DeliveryAttempt",
    "DispatchResult",
    "RetryTask",
    "Tenant",
    "TestDeliveryResult",
    "WebhookDelivery",
    "WebhookSubscription",
    "clamp",
    # Value Objects
    "SIGNATURE_256_HEADER",
    "SIGNATURE_HEADER",
    "RetryPolicy",
    "SignatureSigner",
    "TransportResponse",
    "build_event_payload",
    "format_timestamp",
    "is_valid_url",
    "serialize_payload",
    "truncate",
    "with_webhook_identity",
]
