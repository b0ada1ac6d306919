"""Provider health endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from src.relay.llm.schemas import HealthReport

router = APIRouter(prefix="/api/v1/providers", tags=["providers"])


def _get_provider_router(request: Request) -> Any:
    provider_router = getattr(request.app.state, "provider_router", None)
    if provider_router is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Provider router is not available.",
        )
    return provider_router


@router.get("/health", response_model=HealthReport)
async def provider_health(request: Request):
    """Probe every configured provider and recommend the cheapest healthy one."""
    return await _get_provider_router(request).health_check()
