"""Outcome and outbound-message types for the auto-reply pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AutoReplyResult(BaseModel):
    """What happened to one inbound message.

    ``should_reply`` is True only when ``response`` is a complete generated
    reply that passed every escalation check and the assignment was still
    valid at the end of generation.
    """

    should_reply: bool = False
    response: str | None = None
    agent_name: str | None = None
    agent_id: str | None = None
    assignment_id: str | None = None
    confidence: float | None = None
    provider: str | None = None
    latency_ms: int = 0
    escalated: bool = False
    escalation_reason: str | None = None
    handoff_id: str | None = None
    discarded: bool = False
    skipped_reason: str | None = None


class OutboundMessage(BaseModel):
    """Reply handed to the channel gateway (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    conversation_id: str
    user_id: str
    content: str
    to: str
    from_: str = Field(alias="from")
    platform: str
    sender_type: str = "ai_agent"
    metadata: dict[str, Any] = Field(default_factory=dict)


class SendResult(BaseModel):
    """Gateway reply to a send request."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    message_id: str | None = None
    error: str | None = None


class DispatchResult(BaseModel):
    """Result of ``send_auto_reply``."""

    sent: bool = False
    discarded: bool = False
    message_id: str | None = None
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class HandleResult(BaseModel):
    """``handle_message`` outcome: the decision plus the dispatch, if any."""

    reply: AutoReplyResult
    dispatch: DispatchResult | None = None
