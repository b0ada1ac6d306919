"""Handoff records and escalation outcome types."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from src.relay.conversations.schemas import AgentType, Sentiment


class HandoffStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


OPEN_HANDOFF_STATUSES = frozenset({HandoffStatus.PENDING, HandoffStatus.ASSIGNED})


class EscalationUrgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class HandoffContext(BaseModel):
    """What the human agent needs to pick up the thread."""

    stage: str = "initial"
    sentiment: Sentiment = Sentiment.NEUTRAL
    escalation_flags: list[str] = Field(default_factory=list)
    attempted_solutions: list[str] = Field(default_factory=list)
    recent_history: list[str] = Field(default_factory=list)


class HandoffRecord(BaseModel):
    """Durable record of an escalation; the source of truth for the handoff."""

    handoff_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str
    user_id: str
    from_agent_id: str | None = None
    to_agent_id: str | None = None
    reason: str
    urgency: EscalationUrgency = EscalationUrgency.MEDIUM
    status: HandoffStatus = HandoffStatus.PENDING
    customer_message: str = ""
    summary: str = ""
    context: HandoffContext = Field(default_factory=HandoffContext)
    resolution: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_HANDOFF_STATUSES

    def to_stream_dict(self) -> dict[str, str]:
        """Flatten to string fields for Redis Streams."""
        return {
            "handoff_id": self.handoff_id,
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "from_agent_id": self.from_agent_id or "",
            "reason": self.reason,
            "urgency": self.urgency.value,
            "status": self.status.value,
            "customer_message": self.customer_message,
            "summary": self.summary,
            "context": json.dumps(self.context.model_dump(mode="json")),
            "created_at": self.created_at.isoformat(),
        }


class EscalationOutcome(BaseModel):
    """Result of ``initiate``: the handoff and whether this call created it.

    ``record`` is None for a no-op on a conversation that is escalated but
    has no open handoff left (completed and not yet reassigned).
    """

    record: HandoffRecord | None
    created: bool


class ReassignRequest(BaseModel):
    agent_id: str
    agent_type: AgentType = AgentType.HUMAN


class EscalationRequest(BaseModel):
    """Manual escalation, e.g. raised by a supervisor from the inbox."""

    conversation_id: str
    user_id: str
    reason: str = "CUSTOMER_REQUEST"
    urgency: EscalationUrgency = EscalationUrgency.MEDIUM
    from_agent_id: str | None = None
    customer_message: str = ""


class CompleteRequest(BaseModel):
    resolution: str
    satisfaction: int | None = Field(default=None, ge=1, le=5)
