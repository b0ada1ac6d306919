"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.relay.api.v1 import analytics, conversations, escalations, health, messages, providers

router = APIRouter()

router.include_router(health.router)
router.include_router(messages.router)
router.include_router(providers.router)
router.include_router(escalations.router)
router.include_router(conversations.router)
router.include_router(analytics.router)
