"""Inbound message endpoint called by the channel-adapter layer.

The adapter posts every customer message here; the orchestrator decides
whether an AI agent answers, dispatches the reply, or escalates. A failed
dispatch surfaces as 502 so the adapter can apply its retry policy.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from src.relay.conversations.schemas import IncomingMessage
from src.relay.orchestrator.schemas import HandleResult

router = APIRouter(prefix="/api/v1/messages", tags=["messages"])


def _get_orchestrator(request: Request) -> Any:
    """Retrieve AutoReplyOrchestrator from app.state, 503 if not available."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Auto-reply orchestrator is not available.",
        )
    return orchestrator


@router.post("/inbound", response_model=HandleResult)
async def inbound_message(body: IncomingMessage, request: Request):
    """Process one inbound message and send the automated reply, if any.

    DispatchFailure propagates to the app-level handler (502).
    """
    orchestrator = _get_orchestrator(request)
    return await orchestrator.handle_message(body)
