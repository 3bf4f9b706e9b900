"""
Webhook Services
================

Construction of the webhook services from settings and infrastructure,
shared by the API dependencies and the background retry poller.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings, settings as default_settings
from src.webhooks.application import (
    DeliveryWorker,
    IWebhookTransport,
    WebhookDispatcher,
    WebhookTester,
)
from src.webhooks.domain import RetryPolicy
from src.webhooks.infrastructure import (
    SQLAlchemyDeliveryRepository,
    SQLAlchemyRetryQueue,
    SQLAlchemyTenantDirectory,
    SQLAlchemyWebhookSubscriptionRepository,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def build_delivery_worker(
    session_factory: async_sessionmaker[AsyncSession],
    transport: IWebhookTransport,
    config: Optional[Settings] = None
) -> DeliveryWorker:
    config = config or default_settings
    return DeliveryWorker(
        subscription_repository=SQLAlchemyWebhookSubscriptionRepository(session_factory),
        delivery_repository=SQLAlchemyDeliveryRepository(session_factory),
        retry_queue=SQLAlchemyRetryQueue(session_factory),
        transport=transport,
        retry_policy=RetryPolicy(
            base_delay_ms=config.webhook_base_delay_ms,
            max_jitter_ms=config.webhook_max_jitter_ms,
            max_delay_ms=config.webhook_max_backoff_ms,
        ),
        user_agent=config.webhook_user_agent,
        response_max_chars=config.webhook_response_max_chars,
    )


def build_webhook_dispatcher(
    session_factory: async_sessionmaker[AsyncSession],
    transport: IWebhookTransport,
    config: Optional[Settings] = None
) -> WebhookDispatcher:
    config = config or default_settings
    return WebhookDispatcher(
        subscription_repository=SQLAlchemyWebhookSubscriptionRepository(session_factory),
        tenant_directory=SQLAlchemyTenantDirectory(session_factory),
        worker=build_delivery_worker(session_factory, transport, config),
        max_concurrency=config.webhook_max_concurrent_deliveries,
    )


def build_webhook_tester(transport: IWebhookTransport, config: Optional[Settings] = None) -> WebhookTester:
    config = config or default_settings
    return WebhookTester(
        transport=transport,
        user_agent=config.webhook_user_agent,
        timeout_seconds=config.webhook_test_timeout_seconds,
    )


async def process_retry_queue(
    session_factory: async_sessionmaker[AsyncSession],
    transport: IWebhookTransport,
    config: Optional[Settings] = None
) -> int:
    """Background job: run due webhook retries."""
    config = config or default_settings
    worker = build_delivery_worker(session_factory, transport, config)
    processed = await worker.process_due_retries(
        batch_size=config.webhook_retry_batch_size,
        visibility_timeout=timedelta(seconds=config.webhook_retry_visibility_timeout_seconds),
    )
    if processed:
        logger.info("Processed webhook retries", extra={"tasks": processed})
    return processed
