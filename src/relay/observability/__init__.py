"""Observability package: Langfuse tracing of LiteLLM calls.

Tracing is enabled only when Langfuse keys are configured; without them
every call here is a no-op.
"""

from __future__ import annotations

from src.relay.observability.tracer import init_langfuse

__all__ = ["init_langfuse"]
