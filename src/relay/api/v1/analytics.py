"""Agent performance read endpoints. Pure reads; missing days count as zero."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status

from src.relay.analytics.schemas import AgentPerformance, SystemPerformance

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])


def _get_analytics(request: Request) -> Any:
    """Retrieve PerformanceAnalyticsAggregator from app.state, 503 if not available."""
    analytics = getattr(request.app.state, "analytics", None)
    if analytics is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics aggregator is not available.",
        )
    return analytics


@router.get("/agents", response_model=list[AgentPerformance])
async def agent_performance(
    request: Request,
    user_id: str = Query(...),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    agent_id: str | None = Query(default=None),
):
    """Per-agent totals over [start, end]; defaults to the last 30 days."""
    return await _get_analytics(request).get_agent_performance(
        user_id, start=start, end=end, agent_id=agent_id
    )


@router.get("/system", response_model=SystemPerformance)
async def system_performance(
    request: Request,
    user_id: str = Query(...),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
):
    """Account-wide totals with a zero-filled daily trend."""
    return await _get_analytics(request).get_system_performance(user_id, start=start, end=end)
