"""
Escalation Controllers (API Routes)
====================================

FastAPI routes for the escalation engine.

Controllers are thin - they delegate to application services.
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.escalation.application import (
    EscalationEventListResponse,
    EscalationEventResponse,
    EscalationScheduler,
    IEscalationEventRepository,
    TickReportResponse,
)
from src.escalation.infrastructure import SQLAlchemyEscalationEventRepository
from src.escalation.services import build_escalation_scheduler
from src.infrastructure.database import get_session, get_session_maker
from src.shared.infrastructure.logging import get_logger
from src.webhooks.services import build_webhook_dispatcher

logger = get_logger(__name__)
router = APIRouter(prefix="/escalations", tags=["Escalations"])


# ========== Example payloads for Swagger ==========

TICK_REPORT_EXAMPLE = {
    "run_id": "4f1c2b7e9a0d4e55b1c3a8f2d6e7b901",
    "started_at": "2024-01-15T10:00:00Z",
    "finished_at": "2024-01-15T10:00:02Z",
    "rules_loaded": 2,
    "rules_processed": 2,
    "rules_failed": 0,
    "tickets_considered": 37,
    "skipped_recent": 5,
    "evaluation_errors": 0,
    "matched": 3,
    "escalated": 3,
    "failed_escalations": 0
}


# ========== Dependencies ==========

async def get_escalation_scheduler(
    request: Request,
    session: AsyncSession = Depends(get_session)
) -> EscalationScheduler:
    """Get escalation scheduler bound to the request's session."""
    state = request.app.state
    dispatcher = build_webhook_dispatcher(get_session_maker(), state.webhook_transport)
    return build_escalation_scheduler(
        session,
        dispatcher,
        rule_manager=getattr(state, "rule_manager", None),
        notification_gateway=getattr(state, "notification_gateway", None),
    )


async def get_event_repository(
    session: AsyncSession = Depends(get_session)
) -> IEscalationEventRepository:
    """Get escalation event repository."""
    return SQLAlchemyEscalationEventRepository(session)


def get_tick_lock(request: Request) -> asyncio.Lock:
    """Lock shared with the periodic tick so runs never overlap."""
    return request.app.state.escalation_lock


# ========== Route Handlers ==========

@router.post(
    "/run",
    response_model=TickReportResponse,
    summary="Run one escalation tick now",
    description="""
    Evaluate every active escalation rule against its candidate tickets and
    execute the actions of matching rules, exactly as the periodic tick does.

    Returns **409** while another tick is running.
    """,
    responses={
        200: {
            "description": "Tick completed",
            "content": {"application/json": {"example": TICK_REPORT_EXAMPLE}}
        },
        409: {"description": "A tick is already running"}
    }
)
async def run_escalations(
    scheduler: EscalationScheduler = Depends(get_escalation_scheduler),
    tick_lock: asyncio.Lock = Depends(get_tick_lock)
):
    if tick_lock.locked():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An escalation tick is already running"
        )

    async with tick_lock:
        report = await scheduler.run_tick()

    return TickReportResponse(**report.to_dict())


@router.get(
    "/events",
    response_model=EscalationEventListResponse,
    summary="List escalation events",
    description="Audit trail of rule firings, newest first. Filter by ticket and/or rule."
)
async def list_escalation_events(
    ticket_id: Optional[str] = Query(None, description="Filter by ticket ID"),
    rule_id: Optional[str] = Query(None, description="Filter by rule ID"),
    limit: int = Query(50, ge=1, le=500, description="Max events returned"),
    event_repo: IEscalationEventRepository = Depends(get_event_repository)
):
    events = await event_repo.list_events(ticket_id=ticket_id, rule_id=rule_id, limit=limit)
    return EscalationEventListResponse(
        events=[EscalationEventResponse.from_domain(e) for e in events],
        count=len(events)
    )


escalation_router = router
