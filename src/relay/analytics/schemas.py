"""Interaction events, daily performance records, and aggregate read models.

Interaction events form a tagged union on ``type`` so the aggregator can
match on the kind of event instead of inspecting untyped payloads. Each
event kind also carries a free-form string ``extensions`` map.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from src.relay.conversations.schemas import AgentType


# ── Interaction Events ──────────────────────────────────────────────────────


class _InteractionEventBase(BaseModel):
    extensions: dict[str, str] = Field(default_factory=dict)


class MessageSent(_InteractionEventBase):
    type: Literal["message_sent"] = "message_sent"
    response_time_seconds: float | None = Field(default=None, ge=0.0)


class ConversationAssigned(_InteractionEventBase):
    type: Literal["conversation_assigned"] = "conversation_assigned"


class EscalationRecorded(_InteractionEventBase):
    type: Literal["escalation"] = "escalation"
    reason: str


class ResolutionRecorded(_InteractionEventBase):
    type: Literal["resolution"] = "resolution"
    satisfaction: int | None = Field(default=None, ge=1, le=5)
    lead_converted: bool = False


InteractionEvent = Annotated[
    Union[MessageSent, ConversationAssigned, EscalationRecorded, ResolutionRecorded],
    Field(discriminator="type"),
]


# ── Daily Record ────────────────────────────────────────────────────────────


class PerformanceRecord(BaseModel):
    """One agent's counters for one calendar day (UTC).

    Averages are maintained incrementally; the ``*_samples`` counters are
    the weights for the next update.
    """

    user_id: str
    agent_id: str
    agent_type: AgentType = AgentType.AI
    day: date
    conversations_handled: int = 0
    messages_sent: int = 0
    avg_response_time_seconds: float = 0.0
    response_time_samples: int = 0
    avg_satisfaction: float = 0.0
    satisfaction_samples: int = 0
    escalations: int = 0
    resolutions: int = 0
    leads_converted: int = 0


# ── Interaction Log ─────────────────────────────────────────────────────────


class InteractionLogEntry(BaseModel):
    """Append-only record of one generation attempt."""

    conversation_id: str
    user_id: str
    agent_id: str
    customer_message: str
    response: str = ""
    confidence: float = 0.0
    provider: str | None = None
    tokens_used: int = 0
    latency_ms: int = 0
    contexts: list[dict] = Field(default_factory=list)
    escalated: bool = False
    escalation_reason: str | None = None


# ── Read Models ─────────────────────────────────────────────────────────────


class AgentPerformance(BaseModel):
    agent_id: str
    agent_type: AgentType = AgentType.AI
    days_active: int = 0
    conversations_handled: int = 0
    messages_sent: int = 0
    avg_response_time_seconds: float = 0.0
    avg_satisfaction: float = 0.0
    escalations: int = 0
    resolutions: int = 0
    leads_converted: int = 0
    escalation_rate: float = 0.0
    messages_per_conversation: float = 0.0


class DailyTrend(BaseModel):
    day: date
    conversations_handled: int = 0
    messages_sent: int = 0
    escalations: int = 0
    avg_response_time_seconds: float = 0.0
    avg_satisfaction: float = 0.0


class SystemPerformance(BaseModel):
    start: date
    end: date
    active_agents: int = 0
    conversations_handled: int = 0
    messages_sent: int = 0
    escalations: int = 0
    resolutions: int = 0
    leads_converted: int = 0
    avg_response_time_seconds: float = 0.0
    avg_satisfaction: float = 0.0
    escalation_rate: float = 0.0
    trend: list[DailyTrend] = Field(default_factory=list)
