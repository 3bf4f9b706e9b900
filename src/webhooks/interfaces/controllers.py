"""
Webhook Controllers (API Routes)
=================================

FastAPI routes for webhook events, test deliveries and delivery lookups.

Controllers are thin - they delegate to application services.
"""

from fastapi import APIRouter, Depends, Request

from src.core import ResourceNotFoundException
from src.infrastructure.database import get_session_maker
from src.shared.infrastructure.logging import get_logger
from src.webhooks.application import (
    DeliveryDetailResponse,
    DeliverySummaryResponse,
    DispatchResponse,
    IDeliveryRepository,
    TicketEventRequest,
    WebhookDispatcher,
    WebhookTester,
    WebhookTestRequest,
    WebhookTestResponse,
)
from src.webhooks.infrastructure import SQLAlchemyDeliveryRepository
from src.webhooks.services import build_webhook_dispatcher, build_webhook_tester

logger = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


# ========== Example payloads for Swagger ==========

TEST_RESPONSE_EXAMPLE = {
    "success": True,
    "http_status": 200,
    "response_time_ms": 142,
    "response": "{\"ok\":true}",
    "error": None
}


# ========== Dependencies ==========

async def get_webhook_dispatcher(request: Request) -> WebhookDispatcher:
    """Get webhook dispatcher."""
    return build_webhook_dispatcher(get_session_maker(), request.app.state.webhook_transport)


async def get_webhook_tester(request: Request) -> WebhookTester:
    """Get test-delivery service."""
    return build_webhook_tester(request.app.state.webhook_transport)


async def get_delivery_repository() -> IDeliveryRepository:
    """Get delivery repository."""
    return SQLAlchemyDeliveryRepository(get_session_maker())


# ========== Route Handlers ==========

@router.post(
    "/events",
    response_model=DispatchResponse,
    summary="Dispatch a ticket event",
    description="""
    Inbound trigger from ticket management. Delivers the event to every
    active subscription of the ticket's tenant that listens to it.

    **Example Request**:
    ```json
    {
        "eventType": "ticket.created",
        "ticket": {"id": "T-1", "tenantId": "acme", "status": "Open"},
        "metadata": {"source": "api"}
    }
    ```
    """
)
async def dispatch_event(
    request: TicketEventRequest,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher)
):
    result = await dispatcher.dispatch(request.event_type, request.ticket, request.metadata)
    summary = result.to_dict()
    return DispatchResponse(
        event=summary["event"],
        tenant_id=summary["tenant_id"],
        subscriptions=summary["subscriptions"],
        deliveries=[DeliverySummaryResponse(**d) for d in summary["deliveries"]],
    )


@router.post(
    "/test",
    response_model=WebhookTestResponse,
    summary="Send a test delivery",
    description="""
    Send one `webhook.test` event to the given endpoint with a 10 second
    timeout. Nothing is stored and failed tests are not retried.
    """,
    responses={
        200: {
            "description": "Test delivery attempted",
            "content": {"application/json": {"example": TEST_RESPONSE_EXAMPLE}}
        }
    }
)
async def test_webhook(
    request: WebhookTestRequest,
    tester: WebhookTester = Depends(get_webhook_tester)
):
    result = await tester.send_test(request.url, request.method, request.headers, request.secret)
    return WebhookTestResponse.from_domain(result)


@router.get(
    "/deliveries/{delivery_id}",
    response_model=DeliveryDetailResponse,
    summary="Get a delivery",
    description="Delivery state with its full attempt history."
)
async def get_delivery(
    delivery_id: str,
    delivery_repo: IDeliveryRepository = Depends(get_delivery_repository)
):
    delivery = await delivery_repo.get(delivery_id)
    if delivery is None:
        raise ResourceNotFoundException("Delivery", delivery_id)
    return DeliveryDetailResponse.from_domain(delivery)


webhook_router = router
