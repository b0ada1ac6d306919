"""Interaction log and daily performance record models.

``agent_interactions`` is append-only: one row per generation attempt.
``agent_performance`` holds one row per (user, agent, day) and is only
written by the analytics aggregator.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from src.relay.core.database import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class InteractionLogModel(Base):
    """One generation attempt: query, reply candidate, confidence, verdict."""

    __tablename__ = "agent_interactions"
    __table_args__ = (
        Index("ix_agent_interactions_agent_created", "agent_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    conversation_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    customer_message: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str] = mapped_column(Text, default="")
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    latency_ms: Mapped[int] = mapped_column(Integer, default=0)
    contexts: Mapped[list] = mapped_column(JSON, default=list, server_default=text("'[]'::json"))
    escalated: Mapped[bool] = mapped_column(Boolean, default=False)
    escalation_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class PerformanceRecordModel(Base):
    """Daily per-agent counters and running averages."""

    __tablename__ = "agent_performance"
    __table_args__ = (
        UniqueConstraint("user_id", "agent_id", "day", name="uq_agent_performance_day"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    agent_type: Mapped[str] = mapped_column(String(10), default="ai")
    day: Mapped[date] = mapped_column(Date, nullable=False)
    conversations_handled: Mapped[int] = mapped_column(Integer, default=0)
    messages_sent: Mapped[int] = mapped_column(Integer, default=0)
    avg_response_time_seconds: Mapped[float] = mapped_column(Float, default=0.0)
    response_time_samples: Mapped[int] = mapped_column(Integer, default=0)
    avg_satisfaction: Mapped[float] = mapped_column(Float, default=0.0)
    satisfaction_samples: Mapped[int] = mapped_column(Integer, default=0)
    escalations: Mapped[int] = mapped_column(Integer, default=0)
    resolutions: Mapped[int] = mapped_column(Integer, default=0)
    leads_converted: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
