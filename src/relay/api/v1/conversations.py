"""Conversation endpoints: reassignment and tracker read models."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status

from src.relay.conversations.schemas import (
    AgentAssignment,
    ConversationState,
    ConversationSummary,
)
from src.relay.escalation.schemas import ReassignRequest

router = APIRouter(prefix="/api/v1/conversations", tags=["conversations"])


def _get_state_tracker(request: Request) -> Any:
    """Retrieve ConversationStateTracker from app.state, 503 if not available."""
    tracker = getattr(request.app.state, "state_tracker", None)
    if tracker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Conversation state tracker is not available.",
        )
    return tracker


def _get_workflow(request: Request) -> Any:
    """Retrieve EscalationWorkflow from app.state, 503 if not available."""
    workflow = getattr(request.app.state, "escalation_workflow", None)
    if workflow is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Escalation workflow is not available.",
        )
    return workflow


@router.post("/{conversation_id}/reassign", response_model=AgentAssignment)
async def reassign_conversation(
    conversation_id: str,
    body: ReassignRequest,
    request: Request,
    user_id: str = Query(...),
):
    """Bind the conversation to a new agent (human pickup or hand back to AI)."""
    return await _get_workflow(request).reassign(
        conversation_id, user_id, body.agent_id, body.agent_type
    )


@router.get("/attention", response_model=list[ConversationState])
async def conversations_needing_attention(request: Request, user_id: str = Query(...)):
    return await _get_state_tracker(request).conversations_needing_attention(user_id)


@router.get("/summary", response_model=ConversationSummary)
async def conversation_summary(request: Request, user_id: str = Query(...)):
    return await _get_state_tracker(request).summarize(user_id)
