"""Langfuse tracing for provider calls via LiteLLM callbacks.

Every ``litellm.acompletion`` made by the provider router is traced once
the ``langfuse`` success/failure callbacks are registered. When the keys
are missing the engine runs untraced.
"""

from __future__ import annotations

import os

import litellm
import structlog

from src.relay.config import Settings, get_settings

logger = structlog.get_logger(__name__)

_CALLBACK = "langfuse"


def init_langfuse(settings: Settings | None = None) -> bool:
    """Register Langfuse callbacks on LiteLLM.

    Exports the LANGFUSE_* settings to the environment for the Langfuse SDK
    unless explicit environment variables are already present.

    Returns:
        True if tracing was enabled, False if skipped.
    """
    if settings is None:
        settings = get_settings()

    if not settings.LANGFUSE_PUBLIC_KEY or not settings.LANGFUSE_SECRET_KEY:
        logger.info("langfuse.skipped", reason="keys not configured")
        return False

    _set_env_if_missing("LANGFUSE_PUBLIC_KEY", settings.LANGFUSE_PUBLIC_KEY)
    _set_env_if_missing("LANGFUSE_SECRET_KEY", settings.LANGFUSE_SECRET_KEY)
    _set_env_if_missing("LANGFUSE_HOST", settings.LANGFUSE_HOST)

    litellm.success_callback = _with_callback(litellm.success_callback)
    litellm.failure_callback = _with_callback(litellm.failure_callback)

    logger.info("langfuse.initialized", host=settings.LANGFUSE_HOST)
    return True


def _with_callback(callbacks: list | None) -> list:
    callbacks = list(callbacks or [])
    if _CALLBACK not in callbacks:
        callbacks.append(_CALLBACK)
    return callbacks


def _set_env_if_missing(key: str, value: str) -> None:
    if not os.environ.get(key):
        os.environ[key] = value
