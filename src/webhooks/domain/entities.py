"""
Webhook Domain Entities
========================

Pure Python domain entities for webhook delivery.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from src.config import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_TIMEOUT_MS,
    MAX_RETRY_COUNT,
    MAX_TIMEOUT_MS,
    MIN_RETRY_COUNT,
    MIN_TIMEOUT_MS,
    TERMINAL_DELIVERY_STATUSES,
    DeliveryStatus,
)


def _new_id() -> str:
    return str(uuid4())


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


@dataclass
class Tenant:
    """Isolation boundary owning tickets and subscriptions."""

    id: str
    name: str


@dataclass
class WebhookSubscription:
    """
    Tenant-registered HTTP endpoint for event notifications.

    Authored by tenant administrators; read-only here apart from the
    success/failure counters, which are changed by atomic increments.
    """

    id: str
    tenant_id: str
    url: str
    name: str = ""
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    events: List[str] = field(default_factory=list)
    secret: Optional[str] = None
    retry_count: int = DEFAULT_RETRY_COUNT
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    active: bool = True
    success_count: int = 0
    failure_count: int = 0
    last_triggered_at: Optional[datetime] = None

    def __post_init__(self):
        self.method = (self.method or "POST").upper()
        self.retry_count = clamp(int(self.retry_count), MIN_RETRY_COUNT, MAX_RETRY_COUNT)
        self.timeout_ms = clamp(int(self.timeout_ms), MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)
        self.headers = dict(self.headers or {})
        self.events = list(self.events or [])

    @property
    def max_attempts(self) -> int:
        return 1 + self.retry_count

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def listens_to(self, tenant_id: str, event_type: str) -> bool:
        """True if this subscription should receive the tenant's event."""
        return self.active and self.tenant_id == tenant_id and event_type in self.events


@dataclass
class DeliveryAttempt:
    """One HTTP attempt of a delivery."""

    delivery_id: str
    attempt_number: int
    attempted_at: datetime
    success: bool = False
    http_status: Optional[int] = None
    response: Optional[str] = None
    error: Optional[str] = None
    response_time_ms: Optional[int] = None
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "attempt_number": self.attempt_number,
            "attempted_at": self.attempted_at.isoformat(),
            "success": self.success,
            "http_status": self.http_status,
            "response": self.response,
            "error": self.error,
            "response_time_ms": self.response_time_ms,
        }


@dataclass
class WebhookDelivery:
    """
    One logical notification for a (subscription, event) pair.

    Mutated in place across attempts; terminal once status is success or
    failed. The latest attempt's details are mirrored on the record.
    """

    webhook_id: str
    tenant_id: str
    event_type: str
    payload: Dict[str, Any]
    max_attempts: int
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    http_status: Optional[int] = None
    response: Optional[str] = None
    error: Optional[str] = None
    response_time_ms: Optional[int] = None
    next_retry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    history: List[DeliveryAttempt] = field(default_factory=list)
    id: str = field(default_factory=_new_id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DELIVERY_STATUSES

    @property
    def has_attempts_left(self) -> bool:
        return self.attempts < self.max_attempts

    def start_attempt(self, at: datetime) -> DeliveryAttempt:
        self.attempts += 1
        self.status = DeliveryStatus.PENDING
        self.next_retry_at = None
        return DeliveryAttempt(delivery_id=self.id, attempt_number=self.attempts, attempted_at=at)

    def record(self, attempt: DeliveryAttempt) -> None:
        """Mirror an attempt's outcome onto the delivery."""
        self.http_status = attempt.http_status
        self.response = attempt.response
        self.error = attempt.error
        self.response_time_ms = attempt.response_time_ms
        self.history.append(attempt)

    def mark_success(self, at: datetime) -> None:
        self.status = DeliveryStatus.SUCCESS
        self.next_retry_at = None
        self.completed_at = at

    def mark_retrying(self, next_retry_at: datetime) -> None:
        self.status = DeliveryStatus.RETRYING
        self.next_retry_at = next_retry_at

    def mark_failed(self, at: datetime) -> None:
        self.status = DeliveryStatus.FAILED
        self.next_retry_at = None
        self.completed_at = at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "webhook_id": self.webhook_id,
            "tenant_id": self.tenant_id,
            "event_type": self.event_type,
            "status": DeliveryStatus(self.status).value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "http_status": self.http_status,
            "error": self.error,
        }


@dataclass
class RetryTask:
    """
    Durable delayed task that runs the next attempt of a delivery.

    A claimed task is hidden until ``locked_until``; if the worker dies
    before acknowledging it, the task becomes visible again.
    """

    delivery_id: str
    run_at: datetime
    locked_until: Optional[datetime] = None
    id: str = field(default_factory=_new_id)


@dataclass
class DispatchResult:
    """Summary of one event fan-out."""

    event_type: str
    tenant_id: Optional[str]
    deliveries: List[WebhookDelivery] = field(default_factory=list)

    @property
    def delivery_ids(self) -> List[str]:
        return [d.id for d in self.deliveries]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event_type,
            "tenant_id": self.tenant_id,
            "subscriptions": len(self.deliveries),
            "deliveries": [d.to_dict() for d in self.deliveries],
        }


@dataclass
class TestDeliveryResult:
    """Outcome of a one-shot, unpersisted test delivery."""

    __test__ = False

    success: bool
    http_status: int
    response_time_ms: int
    response: Optional[str] = None
    error: Optional[str] = None
