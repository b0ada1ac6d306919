"""Conversation, message log, agent, and assignment persistence models.

Conversations are never hard-deleted; ``status`` moves to ``archived``.
A partial unique index guarantees at most one ``active`` assignment per
conversation, backing the compare-and-set disable in the repository.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
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


class ConversationModel(Base):
    """One thread per contact per channel, carrying the state machine snapshot."""

    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    platform: Mapped[str] = mapped_column(String(50), default="unknown")
    stage: Mapped[str] = mapped_column(
        String(30), default="initial", server_default=text("'initial'")
    )
    sentiment: Mapped[str] = mapped_column(
        String(20), default="neutral", server_default=text("'neutral'")
    )
    sentiment_score: Mapped[float] = mapped_column(
        Float, default=0.0, server_default=text("0.0")
    )
    satisfaction: Mapped[int] = mapped_column(Integer, default=3, server_default=text("3"))
    response_count: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    last_interaction: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    assigned_agent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    assigned_agent_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    escalation_flags: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    is_stuck: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    needs_assistance: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    tags: Mapped[list] = mapped_column(JSON, default=list, server_default=text("'[]'::json"))
    priority: Mapped[str] = mapped_column(
        String(10), default="medium", server_default=text("'medium'")
    )
    status: Mapped[str] = mapped_column(
        String(20), default="active", server_default=text("'active'")
    )
    metadata_: Mapped[dict] = mapped_column(
        "metadata", JSON, default=dict, server_default=text("'{}'::json")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ConversationMessageModel(Base):
    """Append-only message log for a conversation (both directions)."""

    __tablename__ = "conversation_messages"
    __table_args__ = (
        Index("ix_conversation_messages_conv_created", "conversation_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    conversation_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("conversations.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    platform: Mapped[str] = mapped_column(String(50), default="unknown")
    sender_type: Mapped[str] = mapped_column(String(20), default="customer")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class AgentModel(Base):
    """Automated agent configuration: personality, provider preference, tier."""

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    personality: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    capabilities: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    tier: Mapped[str] = mapped_column(String(20), default="free", server_default=text("'free'"))
    preferred_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    escalation_threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class AgentKnowledgeSourceModel(Base):
    """Knowledge source attached to an agent (document collection, site, etc.)."""

    __tablename__ = "agent_knowledge_sources"
    __table_args__ = (
        UniqueConstraint("agent_id", "source_id", name="uq_agent_knowledge_source"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    agent_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("agents.id"), nullable=False, index=True
    )
    source_id: Mapped[str] = mapped_column(String(128), nullable=False)
    label: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class AgentAssignmentModel(Base):
    """Binds a conversation to one responding agent at a time."""

    __tablename__ = "agent_assignments"
    __table_args__ = (
        Index(
            "uq_agent_assignments_one_active",
            "conversation_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    conversation_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("conversations.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    agent_type: Mapped[str] = mapped_column(String(10), nullable=False)
    auto_response_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true")
    )
    status: Mapped[str] = mapped_column(
        String(20), default="active", server_default=text("'active'")
    )
    escalation_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
