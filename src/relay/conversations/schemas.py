"""Pydantic data models for conversations, assignments, and message analysis.

These are the foundational types shared by the analyzer, the state tracker,
the orchestrator, and the escalation workflow. ``IncomingMessage`` is the
inbound contract honoured by the channel-adapter layer and therefore accepts
camelCase field names.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ───────────────────────────────────────────────────────────────────


class ConversationStage(str, Enum):
    """Coarse lifecycle position of a customer thread."""

    INITIAL = "initial"
    ENGAGED = "engaged"
    ISSUE_IDENTIFIED = "issue_identified"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class Urgency(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class AgentType(str, Enum):
    AI = "ai"
    HUMAN = "human"


class AssignmentStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class EscalationFlag(str, Enum):
    """Reasons the state tracker raises for human attention."""

    REPEATED_NEGATIVE_SENTIMENT = "repeated_negative_sentiment"
    HUMAN_AGENT_REQUESTED = "human_agent_requested"
    URGENT_COMPLAINT = "urgent_complaint"
    CONVERSATION_STUCK = "conversation_stuck"


# ── Message Analysis ────────────────────────────────────────────────────────


class MessageAnalysis(BaseModel):
    """Lexical signals extracted from a single message."""

    model_config = ConfigDict(frozen=True)

    sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_score: float = Field(default=0.0, ge=-1.0, le=1.0)
    urgency: Urgency = Urgency.MEDIUM
    is_question: bool = False
    is_complaint: bool = False
    is_compliment: bool = False
    requires_human_attention: bool = False
    suggested_actions: tuple[str, ...] = ()


# ── Conversation State ──────────────────────────────────────────────────────


class ConversationState(BaseModel):
    """Per-conversation state machine snapshot.

    Once ``stage`` is ESCALATED it only changes through an explicit reset
    (reassignment), never through ordinary message analysis.
    """

    conversation_id: str
    user_id: str
    platform: str = "unknown"
    stage: ConversationStage = ConversationStage.INITIAL
    sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_score: float = Field(default=0.0, ge=-1.0, le=1.0)
    satisfaction: int = Field(default=3, ge=1, le=5)
    response_count: int = 0
    last_interaction: datetime | None = None
    assigned_agent_id: str | None = None
    assigned_agent_type: AgentType | None = None
    escalation_flags: set[str] = Field(default_factory=set)
    is_stuck: bool = False
    needs_assistance: bool = False
    tags: set[str] = Field(default_factory=set)
    priority: Priority = Priority.MEDIUM
    status: ConversationStatus = ConversationStatus.ACTIVE
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class ConversationMessage(BaseModel):
    """One entry in a conversation's message log."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str
    user_id: str
    direction: MessageDirection
    content: str
    platform: str = "unknown"
    sender_type: str = "customer"
    created_at: datetime = Field(default_factory=_utcnow)


# ── Assignment ──────────────────────────────────────────────────────────────


class AgentAssignment(BaseModel):
    """Binding of a conversation to its currently responsible agent."""

    assignment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str
    user_id: str
    agent_id: str
    agent_type: AgentType = AgentType.AI
    auto_response_enabled: bool = True
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    escalation_reason: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def accepts_auto_reply(self) -> bool:
        """True if an automated agent may answer on this assignment."""
        return (
            self.status == AssignmentStatus.ACTIVE
            and self.agent_type == AgentType.AI
            and self.auto_response_enabled
        )


# ── Inbound Contract ────────────────────────────────────────────────────────


class CustomerInfo(BaseModel):
    """Optional customer details forwarded by the channel adapter."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str | None = None
    previous_interactions: int | None = None


class IncomingMessage(BaseModel):
    """Inbound message handed over by the webhook/channel-adapter layer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    conversation_id: str
    user_id: str
    content: str
    platform: str
    sender_id: str
    customer_info: CustomerInfo | None = None
    received_at: datetime = Field(default_factory=_utcnow)


# ── Tracker Read Models ─────────────────────────────────────────────────────


class ConversationSummary(BaseModel):
    """Aggregate view over a user's active conversations."""

    total_conversations: int = 0
    by_stage: dict[str, int] = Field(default_factory=dict)
    by_sentiment: dict[str, int] = Field(default_factory=dict)
    avg_satisfaction: float = 0.0
    escalation_rate: float = 0.0
