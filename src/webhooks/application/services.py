"""
Webhook Application Services
=============================

Application services for webhook fan-out and delivery.

- WebhookDispatcher: resolves subscriptions for an event and fans out
- DeliveryWorker: the per-delivery retry state machine
- WebhookTester: one-shot, unpersisted test deliveries

Following SOLID principles, services depend on the repository, queue and
transport abstractions declared here.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from src.config import (
    TERMINAL_DELIVERY_STATUSES,
    WEBHOOK_TEST_EVENT,
    DeliveryStatus,
)
from src.core import (
    ConfigurationException,
    PermanentDeliveryFailure,
    TransientDeliveryException,
)
from src.escalation.application import IEventDispatcher
from src.shared.infrastructure.logging import get_logger
from src.webhooks.domain import (
    DeliveryAttempt,
    DispatchResult,
    RetryPolicy,
    RetryTask,
    SignatureSigner,
    TestDeliveryResult,
    TransportResponse,
    WebhookDelivery,
    WebhookSubscription,
    build_event_payload,
    format_timestamp,
    is_valid_url,
    serialize_payload,
    truncate,
    with_webhook_identity,
)

logger = get_logger(__name__)

DEFAULT_USER_AGENT = "HelpDesk-Webhooks/1.0"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IWebhookSubscriptionRepository(ABC):
    """Interface for webhook subscription access."""

    @abstractmethod
    async def list_for_event(self, tenant_id: str, event_type: str) -> List[WebhookSubscription]:
        """Active subscriptions of a tenant listening to an event."""

    @abstractmethod
    async def get(self, subscription_id: str) -> Optional[WebhookSubscription]:
        """Get subscription by ID."""

    @abstractmethod
    async def record_success(self, subscription_id: str, at: datetime) -> None:
        """Atomically increment success_count and set last_triggered_at."""

    @abstractmethod
    async def record_failure(self, subscription_id: str, at: datetime) -> None:
        """Atomically increment failure_count."""


class ITenantDirectory(ABC):
    """Lookup of tenant display names."""

    @abstractmethod
    async def get_name(self, tenant_id: str) -> Optional[str]:
        """Tenant name, or None if unknown."""


class IDeliveryRepository(ABC):
    """Interface for delivery records and their attempt history."""

    @abstractmethod
    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Persist a new delivery."""

    @abstractmethod
    async def save(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Persist the current state of an existing delivery."""

    @abstractmethod
    async def get(self, delivery_id: str) -> Optional[WebhookDelivery]:
        """Get delivery by ID, including attempt history."""

    @abstractmethod
    async def add_attempt(self, attempt: DeliveryAttempt) -> None:
        """Append an attempt to a delivery's history."""


class IRetryQueue(ABC):
    """Durable delayed-task queue with visibility timeouts."""

    @abstractmethod
    async def enqueue(self, delivery_id: str, run_at: datetime) -> RetryTask:
        """Schedule the next attempt of a delivery."""

    @abstractmethod
    async def claim_due(self, now: datetime, limit: int, visibility_timeout: timedelta) -> List[RetryTask]:
        """Lease up to ``limit`` due, unleased tasks until now + timeout."""

    @abstractmethod
    async def ack(self, task_id: str) -> None:
        """Remove a processed task."""


class IWebhookTransport(ABC):
    """Outbound HTTP for webhook deliveries."""

    @abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes,
        timeout_seconds: float
    ) -> TransportResponse:
        """
        Issue one request.

        Raises:
            TransientDeliveryException: On timeout or network failure
        """


def build_delivery_headers(
    user_agent: str,
    event_type: str,
    delivery_id: str,
    timestamp: str,
    custom_headers: Mapping[str, str],
    signature_headers: Mapping[str, str],
) -> Dict[str, str]:
    """Standard headers, then subscription headers, then the signature."""
    headers = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        "X-Webhook-Event": event_type,
        "X-Webhook-Delivery": delivery_id,
        "X-Webhook-Timestamp": timestamp,
    }
    headers.update(custom_headers)
    headers.update(signature_headers)
    return headers


# ========== Application Services ==========

class DeliveryWorker:
    """
    Retry state machine for one webhook delivery.

    pending -> success, or pending -> retrying -> pending ... -> failed once
    attempts == max_attempts (1 + retry_count). Retries are persisted as
    RetryTasks so that they survive restarts.

    Subscription counters move once per delivery outcome: success_count on
    success, failure_count when the delivery ends failed.
    """

    def __init__(
        self,
        subscription_repository: IWebhookSubscriptionRepository,
        delivery_repository: IDeliveryRepository,
        retry_queue: IRetryQueue,
        transport: IWebhookTransport,
        signer: Optional[SignatureSigner] = None,
        retry_policy: Optional[RetryPolicy] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        response_max_chars: int = 1000,
        clock: Callable[[], datetime] = utcnow
    ):
        self._subscription_repo = subscription_repository
        self._delivery_repo = delivery_repository
        self._retry_queue = retry_queue
        self._transport = transport
        self._signer = signer or SignatureSigner()
        self._retry_policy = retry_policy or RetryPolicy()
        self._user_agent = user_agent
        self._response_max_chars = response_max_chars
        self._clock = clock

    async def start_delivery(self, subscription: WebhookSubscription, event_type: str, payload: Dict[str, Any]) -> WebhookDelivery:
        """Create the delivery record and run its first attempt."""
        delivery = WebhookDelivery(
            webhook_id=subscription.id,
            tenant_id=subscription.tenant_id,
            event_type=event_type,
            payload=payload,
            max_attempts=subscription.max_attempts,
            created_at=self._clock(),
        )
        await self._delivery_repo.create(delivery)
        return await self.attempt(delivery, subscription)

    async def attempt(self, delivery: WebhookDelivery, subscription: WebhookSubscription) -> WebhookDelivery:
        """
        Perform one HTTP attempt and move the delivery to its next state.

        Never raises for delivery failures; outcomes are recorded on the
        delivery and its attempt history.
        """
        now = self._clock()
        attempt = delivery.start_attempt(now)
        permanent = False
        started = time.perf_counter()

        try:
            if not is_valid_url(subscription.url):
                raise ConfigurationException(
                    f"Invalid webhook URL: {subscription.url}",
                    {"webhook_id": subscription.id}
                )

            body = serialize_payload(delivery.payload)
            headers = build_delivery_headers(
                self._user_agent,
                delivery.event_type,
                delivery.id,
                delivery.payload.get("timestamp", format_timestamp(now)),
                subscription.headers,
                self._signer.signature_headers(body, subscription.secret),
            )
            response = await self._transport.send(
                subscription.method,
                subscription.url,
                headers,
                body,
                subscription.timeout_seconds
            )

            attempt.http_status = response.status_code
            attempt.response = truncate(response.text, self._response_max_chars)
            if response.is_success:
                attempt.success = True
            else:
                attempt.error = f"HTTP {response.status_code}: {response.reason}"
        except ConfigurationException as e:
            permanent = True
            attempt.error = e.message
        except TransientDeliveryException as e:
            attempt.http_status = e.http_status
            attempt.error = e.message
        except Exception as e:
            # Anything else (e.g. a header httpx cannot encode) repeats on every attempt
            permanent = True
            attempt.error = f"{type(e).__name__}: {e}"
            logger.exception(
                "Unexpected error during webhook attempt",
                extra={"delivery_id": delivery.id, "webhook_id": subscription.id}
            )

        attempt.response_time_ms = int((time.perf_counter() - started) * 1000)
        delivery.record(attempt)
        await self._delivery_repo.add_attempt(attempt)

        if attempt.success:
            delivery.mark_success(now)
            await self._delivery_repo.save(delivery)
            await self._subscription_repo.record_success(subscription.id, now)
            logger.info(
                "Webhook delivered",
                extra={
                    "delivery_id": delivery.id,
                    "webhook_id": subscription.id,
                    "event": delivery.event_type,
                    "attempt": delivery.attempts,
                    "http_status": attempt.http_status,
                    "response_time_ms": attempt.response_time_ms
                }
            )
        elif not permanent and delivery.has_attempts_left:
            next_retry_at = self._retry_policy.next_retry_at(now, delivery.attempts - 1)
            delivery.mark_retrying(next_retry_at)
            await self._delivery_repo.save(delivery)
            await self._retry_queue.enqueue(delivery.id, next_retry_at)
            logger.warning(
                "Webhook attempt failed, retry scheduled",
                extra={
                    "delivery_id": delivery.id,
                    "webhook_id": subscription.id,
                    "attempt": delivery.attempts,
                    "max_attempts": delivery.max_attempts,
                    "error": attempt.error,
                    "next_retry_at": next_retry_at.isoformat()
                }
            )
        else:
            await self._fail(delivery, subscription.id, now)

        return delivery

    async def _fail(self, delivery: WebhookDelivery, subscription_id: str, now: datetime) -> None:
        delivery.mark_failed(now)
        await self._delivery_repo.save(delivery)
        await self._subscription_repo.record_failure(subscription_id, now)

        failure = PermanentDeliveryFailure(delivery.id, delivery.attempts)
        logger.error(
            failure.message,
            extra={
                "delivery_id": delivery.id,
                "webhook_id": subscription_id,
                "event": delivery.event_type,
                "attempts": delivery.attempts,
                "error": delivery.error
            }
        )

    async def process_due_retries(
        self,
        now: Optional[datetime] = None,
        batch_size: int = 50,
        visibility_timeout: timedelta = timedelta(seconds=120)
    ) -> int:
        """
        Run the next attempt for every due retry task.

        A task is acknowledged only after its attempt has been recorded; if
        the process dies first, the task reappears when its lease expires.

        Returns:
            Number of tasks processed
        """
        now = now or self._clock()
        tasks = await self._retry_queue.claim_due(now, batch_size, visibility_timeout)

        for task in tasks:
            try:
                await self._process_task(task, now)
            except Exception as e:
                logger.exception(
                    "Retry task failed",
                    extra={"delivery_id": task.delivery_id, "task_id": task.id}
                )
                await self._abandon(task, now, e)
            await self._retry_queue.ack(task.id)

        return len(tasks)

    async def _abandon(self, task: RetryTask, now: datetime, error: Exception) -> None:
        """Fail a delivery whose retry could not be processed."""
        try:
            delivery = await self._delivery_repo.get(task.delivery_id)
            if delivery is None or delivery.status in TERMINAL_DELIVERY_STATUSES:
                return
            delivery.error = f"Retry processing failed: {type(error).__name__}: {error}"
            await self._fail(delivery, delivery.webhook_id, now)
        except Exception as e:
            logger.error(
                "Could not mark delivery failed",
                extra={"delivery_id": task.delivery_id, "error": str(e)}
            )

    async def _process_task(self, task: RetryTask, now: datetime) -> None:
        delivery = await self._delivery_repo.get(task.delivery_id)
        if delivery is None or delivery.status in TERMINAL_DELIVERY_STATUSES:
            logger.info(
                "Dropping retry for missing or finished delivery",
                extra={"delivery_id": task.delivery_id, "task_id": task.id}
            )
            return

        subscription = await self._subscription_repo.get(delivery.webhook_id)
        if subscription is None or not subscription.active:
            delivery.error = "Webhook subscription removed or inactive"
            await self._fail(delivery, delivery.webhook_id, now)
            return

        await self.attempt(delivery, subscription)


class WebhookDispatcher(IEventDispatcher):
    """
    Fans an event out to every matching subscription of the ticket's tenant.

    The body is built once per event; only the ``webhook`` identity block
    differs per subscription. Deliveries run concurrently, bounded by a
    semaphore, and one failing endpoint never blocks the others.
    """

    def __init__(
        self,
        subscription_repository: IWebhookSubscriptionRepository,
        tenant_directory: ITenantDirectory,
        worker: DeliveryWorker,
        max_concurrency: int = 10,
        clock: Callable[[], datetime] = utcnow
    ):
        self._subscription_repo = subscription_repository
        self._tenant_directory = tenant_directory
        self._worker = worker
        self._max_concurrency = max_concurrency
        self._clock = clock

    async def dispatch(self, event_type: str, ticket_data: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> DispatchResult:
        tenant_id = ticket_data.get("tenant_id") or ticket_data.get("tenantId")
        if not tenant_id:
            logger.warning(
                "Ticket has no tenant_id, skipping webhook dispatch",
                extra={"event": event_type, "ticket_id": ticket_data.get("id")}
            )
            return DispatchResult(event_type=event_type, tenant_id=None)

        subscriptions = [
            s for s in await self._subscription_repo.list_for_event(tenant_id, event_type)
            if s.listens_to(tenant_id, event_type)
        ]
        result = DispatchResult(event_type=event_type, tenant_id=tenant_id)
        if not subscriptions:
            logger.debug("No webhooks subscribed", extra={"event": event_type, "tenant_id": tenant_id})
            return result

        tenant_name = await self._tenant_directory.get_name(tenant_id) or "Unknown"
        base_payload = build_event_payload(
            event_type, self._clock(), tenant_id, tenant_name, ticket_data, metadata
        )

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def deliver(subscription: WebhookSubscription) -> WebhookDelivery:
            async with semaphore:
                payload = with_webhook_identity(base_payload, subscription.id, subscription.name)
                return await self._worker.start_delivery(subscription, event_type, payload)

        outcomes = await asyncio.gather(
            *(deliver(s) for s in subscriptions),
            return_exceptions=True
        )

        for subscription, outcome in zip(subscriptions, outcomes):
            if isinstance(outcome, Exception):
                logger.error(
                    "Webhook delivery could not be started",
                    extra={"webhook_id": subscription.id, "event": event_type, "error": str(outcome)}
                )
            else:
                result.deliveries.append(outcome)

        logger.info(
            "Webhook event dispatched",
            extra={
                "event": event_type,
                "tenant_id": tenant_id,
                "subscriptions": len(subscriptions),
                "started": len(result.deliveries)
            }
        )
        return result


class WebhookTester:
    """
    Sends one test delivery to an arbitrary endpoint.

    Nothing is persisted and no retries are made.
    """

    def __init__(
        self,
        transport: IWebhookTransport,
        signer: Optional[SignatureSigner] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = 10.0,
        response_max_chars: int = 500,
        clock: Callable[[], datetime] = utcnow
    ):
        self._transport = transport
        self._signer = signer or SignatureSigner()
        self._user_agent = user_agent
        self._timeout_seconds = timeout_seconds
        self._response_max_chars = response_max_chars
        self._clock = clock

    async def send_test(
        self,
        url: str,
        method: str = "POST",
        headers: Optional[Mapping[str, str]] = None,
        secret: Optional[str] = None
    ) -> TestDeliveryResult:
        timestamp = format_timestamp(self._clock())
        payload = {
            "event": WEBHOOK_TEST_EVENT,
            "timestamp": timestamp,
            "webhook": {"id": "test", "name": "Test Webhook"},
            "tenant": {"id": "test", "name": "Test Tenant"},
            "data": {
                "message": "This is a test webhook delivery",
                "timestamp": timestamp,
            },
            "metadata": {"source": "webhook_test"},
        }

        started = time.perf_counter()
        try:
            if not is_valid_url(url):
                raise ConfigurationException(f"Invalid webhook URL: {url}")

            body = serialize_payload(payload)
            request_headers = build_delivery_headers(
                self._user_agent,
                WEBHOOK_TEST_EVENT,
                "test-delivery",
                timestamp,
                headers or {},
                self._signer.signature_headers(body, secret),
            )
            response = await self._transport.send(
                (method or "POST").upper(), url, request_headers, body, self._timeout_seconds
            )
        except (ConfigurationException, TransientDeliveryException) as e:
            logger.info("Test webhook failed", extra={"url": url, "error": e.message})
            return TestDeliveryResult(success=False, http_status=0, response_time_ms=0, error=e.message)

        return TestDeliveryResult(
            success=response.is_success,
            http_status=response.status_code,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            response=truncate(response.text, self._response_max_chars),
            error=None if response.is_success else f"HTTP {response.status_code}: {response.reason}",
        )
