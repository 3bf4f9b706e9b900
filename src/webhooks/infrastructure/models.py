"""
Webhook Infrastructure Models
==============================

SQLAlchemy ORM models for the webhook module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import DEFAULT_RETRY_COUNT, DEFAULT_TIMEOUT_MS, DeliveryStatus


def _uuid() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TenantModel(Base):
    """
    Database model for tenants.

    Maps to the 'tenants' table. Only the display name is read here.
    """
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class WebhookSubscriptionModel(Base):
    """
    Database model for webhook subscriptions.

    Maps to the 'webhook_subscriptions' table.
    """
    __tablename__ = "webhook_subscriptions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Endpoint
    url: Mapped[str] = mapped_column(Text, nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False, default="POST")
    headers: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    secret: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Event allow-list
    events: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_RETRY_COUNT)
    timeout_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_TIMEOUT_MS)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Counters, changed only by atomic increments
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class WebhookDeliveryModel(Base):
    """
    Database model for webhook deliveries.

    Maps to the 'webhook_deliveries' table. Mirrors the latest attempt.
    """
    __tablename__ = "webhook_deliveries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    webhook_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DeliveryStatus.PENDING.value, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)

    # Latest attempt
    http_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class DeliveryAttemptModel(Base):
    """
    Database model for individual delivery attempts.

    Maps to the 'webhook_delivery_attempts' table.
    """
    __tablename__ = "webhook_delivery_attempts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    delivery_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("webhook_deliveries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    http_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class RetryTaskModel(Base):
    """
    Database model for the durable retry queue.

    Maps to the 'webhook_retry_tasks' table. A row is visible to workers
    once run_at has passed and any lease (locked_until) has expired.
    """
    __tablename__ = "webhook_retry_tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    delivery_id: Mapped[str] = mapped_column(String(64), nullable=False)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        Index("ix_webhook_retry_tasks_due", "run_at", "locked_until"),
    )
