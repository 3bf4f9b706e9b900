"""
Webhook Application DTOs
=========================

Pydantic models for the webhook API: the inbound event trigger, test
deliveries, and delivery lookups.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.config import VALID_EVENT_TYPES
from src.webhooks.domain import (
    TestDeliveryResult,
    WebhookDelivery,
)


# ========== Request DTOs ==========

class TicketEventRequest(BaseModel):
    """
    Inbound trigger from ticket management.

    Accepts the camelCase keys ticket management sends as well as
    snake_case.
    """
    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(..., alias="eventType", description="Webhook event type")
    ticket: Dict[str, Any] = Field(..., description="Ticket record")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form context")

    @field_validator("event_type")
    @classmethod
    def validate_event_type(cls, v: str) -> str:
        if v not in VALID_EVENT_TYPES:
            raise ValueError(f"event_type must be one of {VALID_EVENT_TYPES}")
        return v


class WebhookTestRequest(BaseModel):
    """Test delivery target."""
    url: str = Field(..., min_length=1, description="Endpoint URL")
    method: str = Field(default="POST", description="HTTP method")
    headers: Dict[str, str] = Field(default_factory=dict, description="Extra headers")
    secret: Optional[str] = Field(None, description="HMAC secret")


# ========== Response DTOs ==========

class DeliverySummaryResponse(BaseModel):
    """Delivery as returned from a dispatch."""
    id: str
    webhook_id: str
    status: str
    attempts: int
    max_attempts: int
    http_status: Optional[int] = None
    error: Optional[str] = None


class DispatchResponse(BaseModel):
    """Response model for an inbound event."""
    event: str
    tenant_id: Optional[str]
    subscriptions: int
    deliveries: List[DeliverySummaryResponse] = Field(default_factory=list)


class WebhookTestResponse(BaseModel):
    """Response model for a test delivery."""
    success: bool
    http_status: int
    response_time_ms: int
    response: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_domain(cls, result: TestDeliveryResult) -> "WebhookTestResponse":
        return cls(
            success=result.success,
            http_status=result.http_status,
            response_time_ms=result.response_time_ms,
            response=result.response,
            error=result.error,
        )


class DeliveryAttemptResponse(BaseModel):
    """One attempt of a delivery."""
    attempt_number: int
    attempted_at: datetime
    success: bool
    http_status: Optional[int] = None
    response: Optional[str] = None
    error: Optional[str] = None
    response_time_ms: Optional[int] = None


class DeliveryDetailResponse(BaseModel):
    """Response model for a delivery with its attempt history."""
    id: str
    webhook_id: str
    tenant_id: str
    event_type: str
    status: str
    attempts: int
    max_attempts: int
    http_status: Optional[int] = None
    response: Optional[str] = None
    error: Optional[str] = None
    response_time_ms: Optional[int] = None
    next_retry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    history: List[DeliveryAttemptResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, delivery: WebhookDelivery) -> "DeliveryDetailResponse":
        return cls(
            id=delivery.id,
            webhook_id=delivery.webhook_id,
            tenant_id=delivery.tenant_id,
            event_type=delivery.event_type,
            status=str(getattr(delivery.status, "value", delivery.status)),
            attempts=delivery.attempts,
            max_attempts=delivery.max_attempts,
            http_status=delivery.http_status,
            response=delivery.response,
            error=delivery.error,
            response_time_ms=delivery.response_time_ms,
            next_retry_at=delivery.next_retry_at,
            created_at=delivery.created_at,
            completed_at=delivery.completed_at,
            payload=delivery.payload,
            history=[
                DeliveryAttemptResponse(
                    attempt_number=a.attempt_number,
                    attempted_at=a.attempted_at,
                    success=a.success,
                    http_status=a.http_status,
                    response=a.response,
                    error=a.error,
                    response_time_ms=a.response_time_ms,
                )
                for a in sorted(delivery.history, key=lambda a: a.attempt_number)
            ],
        )
