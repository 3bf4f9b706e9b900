"""
Webhook Infrastructure Repositories
====================================

Concrete implementations of the webhook repository interfaces using
SQLAlchemy.

Deliveries for one event run concurrently, so these repositories do not
share a session: each operation opens a short transaction from the
session factory and commits on exit.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncGenerator, List, Optional

from sqlalchemy import or_, select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import DeliveryStatus
from src.core import RepositoryException
from src.webhooks.application import (
    IDeliveryRepository,
    IRetryQueue,
    ITenantDirectory,
    IWebhookSubscriptionRepository,
)
from src.webhooks.domain import (
    DeliveryAttempt,
    RetryTask,
    WebhookDelivery,
    WebhookSubscription,
)
from src.webhooks.infrastructure.models import (
    DeliveryAttemptModel,
    RetryTaskModel,
    TenantModel,
    WebhookDeliveryModel,
    WebhookSubscriptionModel,
)
from src.escalation.domain import parse_timestamp


class _SessionScoped:
    """Base for repositories that run each call in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session


def _subscription_from_model(model: WebhookSubscriptionModel) -> WebhookSubscription:
    return WebhookSubscription(
        id=model.id,
        tenant_id=model.tenant_id,
        name=model.name,
        url=model.url,
        method=model.method,
        headers=model.headers or {},
        events=model.events or [],
        secret=model.secret,
        retry_count=model.retry_count,
        timeout_ms=model.timeout_ms,
        active=model.active,
        success_count=model.success_count,
        failure_count=model.failure_count,
        last_triggered_at=parse_timestamp(model.last_triggered_at),
    )


class SQLAlchemyWebhookSubscriptionRepository(_SessionScoped, IWebhookSubscriptionRepository):
    """Subscriptions and their atomic counters."""

    async def list_for_event(self, tenant_id: str, event_type: str) -> List[WebhookSubscription]:
        # The event allow-list is a JSON column; membership is checked in memory
        stmt = select(WebhookSubscriptionModel).where(
            WebhookSubscriptionModel.tenant_id == tenant_id,
            WebhookSubscriptionModel.active.is_(True),
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            models = result.scalars().all()

        return [
            _subscription_from_model(model)
            for model in models
            if event_type in (model.events or [])
        ]

    async def get(self, subscription_id: str) -> Optional[WebhookSubscription]:
        async with self._transaction() as session:
            model = await session.get(WebhookSubscriptionModel, subscription_id)
            return _subscription_from_model(model) if model else None

    async def record_success(self, subscription_id: str, at: datetime) -> None:
        stmt = (
            update(WebhookSubscriptionModel)
            .where(WebhookSubscriptionModel.id == subscription_id)
            .values(
                success_count=WebhookSubscriptionModel.success_count + 1,
                last_triggered_at=at,
            )
        )
        async with self._transaction() as session:
            await session.execute(stmt)

    async def record_failure(self, subscription_id: str, at: datetime) -> None:
        stmt = (
            update(WebhookSubscriptionModel)
            .where(WebhookSubscriptionModel.id == subscription_id)
            .values(failure_count=WebhookSubscriptionModel.failure_count + 1)
        )
        async with self._transaction() as session:
            await session.execute(stmt)


class SQLAlchemyTenantDirectory(_SessionScoped, ITenantDirectory):
    """Tenant display names from the 'tenants' table."""

    async def get_name(self, tenant_id: str) -> Optional[str]:
        stmt = select(TenantModel.name).where(TenantModel.id == tenant_id)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()


class SQLAlchemyDeliveryRepository(_SessionScoped, IDeliveryRepository):
    """Delivery records with per-attempt history."""

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        model = WebhookDeliveryModel(
            id=delivery.id,
            webhook_id=delivery.webhook_id,
            tenant_id=delivery.tenant_id,
            event_type=delivery.event_type,
            payload=delivery.payload,
            max_attempts=delivery.max_attempts,
        )
        if delivery.created_at:
            model.created_at = delivery.created_at
        self._copy_state(delivery, model)

        async with self._transaction() as session:
            session.add(model)

        return delivery

    async def save(self, delivery: WebhookDelivery) -> WebhookDelivery:
        async with self._transaction() as session:
            model = await session.get(WebhookDeliveryModel, delivery.id)
            if model is None:
                raise RepositoryException(f"Delivery {delivery.id} not found")
            self._copy_state(delivery, model)

        return delivery

    @staticmethod
    def _copy_state(delivery: WebhookDelivery, model: WebhookDeliveryModel) -> None:
        model.status = DeliveryStatus(delivery.status).value
        model.attempts = delivery.attempts
        model.http_status = delivery.http_status
        model.response = delivery.response
        model.error = delivery.error
        model.response_time_ms = delivery.response_time_ms
        model.next_retry_at = delivery.next_retry_at
        model.completed_at = delivery.completed_at

    async def get(self, delivery_id: str) -> Optional[WebhookDelivery]:
        async with self._transaction() as session:
            model = await session.get(WebhookDeliveryModel, delivery_id)
            if model is None:
                return None

            result = await session.execute(
                select(DeliveryAttemptModel)
                .where(DeliveryAttemptModel.delivery_id == delivery_id)
                .order_by(DeliveryAttemptModel.attempt_number.asc())
            )
            attempts = result.scalars().all()

            return WebhookDelivery(
                id=model.id,
                webhook_id=model.webhook_id,
                tenant_id=model.tenant_id,
                event_type=model.event_type,
                payload=model.payload,
                max_attempts=model.max_attempts,
                status=DeliveryStatus(model.status),
                attempts=model.attempts,
                http_status=model.http_status,
                response=model.response,
                error=model.error,
                response_time_ms=model.response_time_ms,
                next_retry_at=parse_timestamp(model.next_retry_at),
                created_at=parse_timestamp(model.created_at),
                completed_at=parse_timestamp(model.completed_at),
                history=[
                    DeliveryAttempt(
                        id=a.id,
                        delivery_id=a.delivery_id,
                        attempt_number=a.attempt_number,
                        attempted_at=parse_timestamp(a.attempted_at),
                        success=a.success,
                        http_status=a.http_status,
                        response=a.response,
                        error=a.error,
                        response_time_ms=a.response_time_ms,
                    )
                    for a in attempts
                ],
            )

    async def add_attempt(self, attempt: DeliveryAttempt) -> None:
        async with self._transaction() as session:
            session.add(DeliveryAttemptModel(
                id=attempt.id,
                delivery_id=attempt.delivery_id,
                attempt_number=attempt.attempt_number,
                attempted_at=attempt.attempted_at,
                success=attempt.success,
                http_status=attempt.http_status,
                response=attempt.response,
                error=attempt.error,
                response_time_ms=attempt.response_time_ms,
            ))


class SQLAlchemyRetryQueue(_SessionScoped, IRetryQueue):
    """
    Durable delayed-task queue on the 'webhook_retry_tasks' table.

    Claiming sets a lease instead of deleting, so a task survives a crash
    between claim and ack. On PostgreSQL, claims skip rows locked by other
    workers.
    """

    async def enqueue(self, delivery_id: str, run_at: datetime) -> RetryTask:
        task = RetryTask(delivery_id=delivery_id, run_at=run_at)
        async with self._transaction() as session:
            session.add(RetryTaskModel(id=task.id, delivery_id=delivery_id, run_at=run_at))
        return task

    async def claim_due(self, now: datetime, limit: int, visibility_timeout: timedelta) -> List[RetryTask]:
        locked_until = now + visibility_timeout

        async with self._transaction() as session:
            stmt = (
                select(RetryTaskModel)
                .where(
                    RetryTaskModel.run_at <= now,
                    or_(RetryTaskModel.locked_until.is_(None), RetryTaskModel.locked_until <= now),
                )
                .order_by(RetryTaskModel.run_at.asc())
                .limit(limit)
            )
            if session.get_bind().dialect.name == "postgresql":
                stmt = stmt.with_for_update(skip_locked=True)

            result = await session.execute(stmt)
            models = result.scalars().all()

            tasks = []
            for model in models:
                model.locked_until = locked_until
                tasks.append(RetryTask(
                    id=model.id,
                    delivery_id=model.delivery_id,
                    run_at=parse_timestamp(model.run_at),
                    locked_until=locked_until,
                ))

        return tasks

    async def ack(self, task_id: str) -> None:
        async with self._transaction() as session:
            await session.execute(delete(RetryTaskModel).where(RetryTaskModel.id == task_id))
