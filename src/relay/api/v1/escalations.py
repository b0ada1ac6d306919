"""Human handoff queue endpoints: manual escalation, listing, completion."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from src.relay.escalation.schemas import (
    CompleteRequest,
    EscalationOutcome,
    EscalationRequest,
    HandoffRecord,
)

router = APIRouter(prefix="/api/v1/escalations", tags=["escalations"])


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_workflow(request: Request) -> Any:
    """Retrieve EscalationWorkflow from app.state, 503 if not available."""
    workflow = getattr(request.app.state, "escalation_workflow", None)
    if workflow is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Escalation workflow is not available.",
        )
    return workflow


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=EscalationOutcome)
async def create_escalation(body: EscalationRequest, request: Request, response: Response):
    """Escalate a conversation to the human queue.

    Returns 201 when a handoff was created and 200 when the conversation was
    already escalated (no second handoff is created).
    """
    workflow = _get_workflow(request)
    outcome = await workflow.initiate(
        body.conversation_id,
        body.user_id,
        from_agent_id=body.from_agent_id,
        reason=body.reason,
        urgency=body.urgency,
        customer_message=body.customer_message,
    )
    response.status_code = status.HTTP_201_CREATED if outcome.created else status.HTTP_200_OK
    return outcome


@router.get("", response_model=list[HandoffRecord])
async def list_escalations(request: Request, user_id: str = Query(...)):
    """Open handoffs (pending or assigned) for ``user_id``, oldest first."""
    return await _get_workflow(request).list_active(user_id)


@router.post("/{handoff_id}/complete", response_model=HandoffRecord)
async def complete_escalation(handoff_id: str, body: CompleteRequest, request: Request):
    record = await _get_workflow(request).complete(
        handoff_id, body.resolution, satisfaction=body.satisfaction
    )
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Handoff '{handoff_id}' not found",
        )
    return record
