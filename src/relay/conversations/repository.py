"""Persistence for conversations, message logs, agents, and assignments.

Services depend on the Protocols below; the Sql* classes implement them on
async SQLAlchemy. Repositories take a ``session_factory`` async generator
(``src.relay.core.database.get_session``) so tests can swap in fakes.

Assignment writers use compare-and-set updates: a disable only succeeds if
the row is still enabled, and the rowcount tells the caller whether it won.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.relay.conversations.schemas import (
    AgentAssignment,
    AgentType,
    AssignmentStatus,
    ConversationMessage,
    ConversationStage,
    ConversationState,
    ConversationStatus,
    MessageDirection,
    Priority,
    Sentiment,
)
from src.relay.generation.schemas import AgentConfig, Personality
from src.relay.llm.schemas import Tier
from src.relay.models.conversations import (
    AgentAssignmentModel,
    AgentKnowledgeSourceModel,
    AgentModel,
    ConversationMessageModel,
    ConversationModel,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncGenerator[AsyncSession, None]]


# ── Collaborator Protocols ────────────────────────────────────────────────────


class ConversationRepository(Protocol):
    async def get_state(self, conversation_id: str, user_id: str) -> ConversationState | None: ...

    async def save_state(self, state: ConversationState) -> ConversationState: ...

    async def append_message(self, message: ConversationMessage) -> None: ...

    async def recent_messages(
        self,
        conversation_id: str,
        user_id: str,
        limit: int,
        direction: MessageDirection | None = None,
    ) -> list[ConversationMessage]: ...

    async def list_states(
        self, user_id: str, status: ConversationStatus = ConversationStatus.ACTIVE
    ) -> list[ConversationState]: ...


class AssignmentRepository(Protocol):
    async def get_active(self, conversation_id: str, user_id: str) -> AgentAssignment | None: ...

    async def get(self, assignment_id: str) -> AgentAssignment | None: ...

    async def create(self, assignment: AgentAssignment) -> AgentAssignment: ...

    async def disable_auto_response(self, assignment_id: str, reason: str) -> bool: ...

    async def deactivate(self, assignment_id: str, reason: str | None = None) -> bool: ...


class AgentDirectory(Protocol):
    async def get_agent_config(self, agent_id: str, user_id: str) -> AgentConfig | None: ...


# ── Model <-> Schema Conversion ──────────────────────────────────────────────


def _model_to_state(model: ConversationModel) -> ConversationState:
    return ConversationState(
        conversation_id=model.id,
        user_id=model.user_id,
        platform=model.platform,
        stage=ConversationStage(model.stage),
        sentiment=Sentiment(model.sentiment),
        sentiment_score=model.sentiment_score,
        satisfaction=model.satisfaction,
        response_count=model.response_count,
        last_interaction=model.last_interaction,
        assigned_agent_id=model.assigned_agent_id,
        assigned_agent_type=(
            AgentType(model.assigned_agent_type) if model.assigned_agent_type else None
        ),
        escalation_flags=set(model.escalation_flags or []),
        is_stuck=model.is_stuck,
        needs_assistance=model.needs_assistance,
        tags=set(model.tags or []),
        priority=Priority(model.priority),
        status=ConversationStatus(model.status),
        metadata=dict(model.metadata_ or {}),
        created_at=model.created_at,
    )


def _apply_state(model: ConversationModel, state: ConversationState) -> None:
    model.platform = state.platform
    model.stage = state.stage.value
    model.sentiment = state.sentiment.value
    model.sentiment_score = state.sentiment_score
    model.satisfaction = state.satisfaction
    model.response_count = state.response_count
    model.last_interaction = state.last_interaction
    model.assigned_agent_id = state.assigned_agent_id
    model.assigned_agent_type = (
        state.assigned_agent_type.value if state.assigned_agent_type else None
    )
    model.escalation_flags = sorted(state.escalation_flags)
    model.is_stuck = state.is_stuck
    model.needs_assistance = state.needs_assistance
    model.tags = sorted(state.tags)
    model.priority = state.priority.value
    model.status = state.status.value
    model.metadata_ = dict(state.metadata)


def _model_to_message(model: ConversationMessageModel) -> ConversationMessage:
    return ConversationMessage(
        message_id=model.id,
        conversation_id=model.conversation_id,
        user_id=model.user_id,
        direction=MessageDirection(model.direction),
        content=model.content,
        platform=model.platform,
        sender_type=model.sender_type,
        created_at=model.created_at,
    )


def _model_to_assignment(model: AgentAssignmentModel) -> AgentAssignment:
    return AgentAssignment(
        assignment_id=model.id,
        conversation_id=model.conversation_id,
        user_id=model.user_id,
        agent_id=model.agent_id,
        agent_type=AgentType(model.agent_type),
        auto_response_enabled=model.auto_response_enabled,
        status=AssignmentStatus(model.status),
        escalation_reason=model.escalation_reason,
        created_at=model.created_at,
    )


# ── SQL Implementations ──────────────────────────────────────────────────────


class SqlConversationRepository:
    """Conversation state and message log on PostgreSQL."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_state(self, conversation_id: str, user_id: str) -> ConversationState | None:
        async for session in self._session_factory():
            model = await session.get(ConversationModel, conversation_id)
            if model is None or model.user_id != user_id:
                return None
            return _model_to_state(model)
        return None

    async def save_state(self, state: ConversationState) -> ConversationState:
        """Insert or update the conversation row from ``state``."""
        async for session in self._session_factory():
            model = await session.get(ConversationModel, state.conversation_id)
            if model is None:
                model = ConversationModel(id=state.conversation_id, user_id=state.user_id)
                session.add(model)
            _apply_state(model, state)
            await session.commit()
        return state

    async def append_message(self, message: ConversationMessage) -> None:
        async for session in self._session_factory():
            session.add(
                ConversationMessageModel(
                    id=message.message_id,
                    conversation_id=message.conversation_id,
                    user_id=message.user_id,
                    direction=message.direction.value,
                    content=message.content,
                    platform=message.platform,
                    sender_type=message.sender_type,
                    created_at=message.created_at,
                )
            )
            await session.commit()

    async def recent_messages(
        self,
        conversation_id: str,
        user_id: str,
        limit: int,
        direction: MessageDirection | None = None,
    ) -> list[ConversationMessage]:
        """Last ``limit`` messages, returned oldest first."""
        async for session in self._session_factory():
            stmt = (
                select(ConversationMessageModel)
                .where(
                    ConversationMessageModel.conversation_id == conversation_id,
                    ConversationMessageModel.user_id == user_id,
                )
                .order_by(ConversationMessageModel.created_at.desc())
                .limit(limit)
            )
            if direction is not None:
                stmt = stmt.where(ConversationMessageModel.direction == direction.value)
            result = await session.execute(stmt)
            rows = list(result.scalars().all())
            return [_model_to_message(row) for row in reversed(rows)]
        return []

    async def list_states(
        self, user_id: str, status: ConversationStatus = ConversationStatus.ACTIVE
    ) -> list[ConversationState]:
        async for session in self._session_factory():
            stmt = (
                select(ConversationModel)
                .where(
                    ConversationModel.user_id == user_id,
                    ConversationModel.status == status.value,
                )
                .order_by(ConversationModel.updated_at.desc())
            )
            result = await session.execute(stmt)
            return [_model_to_state(row) for row in result.scalars().all()]
        return []


class SqlAssignmentRepository:
    """Agent assignments with compare-and-set disable semantics."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_active(self, conversation_id: str, user_id: str) -> AgentAssignment | None:
        async for session in self._session_factory():
            stmt = select(AgentAssignmentModel).where(
                AgentAssignmentModel.conversation_id == conversation_id,
                AgentAssignmentModel.user_id == user_id,
                AgentAssignmentModel.status == AssignmentStatus.ACTIVE.value,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_assignment(model) if model else None
        return None

    async def get(self, assignment_id: str) -> AgentAssignment | None:
        async for session in self._session_factory():
            model = await session.get(AgentAssignmentModel, assignment_id)
            return _model_to_assignment(model) if model else None
        return None

    async def create(self, assignment: AgentAssignment) -> AgentAssignment:
        """Insert ``assignment``, deactivating any active one in the same transaction."""
        async for session in self._session_factory():
            await session.execute(
                update(AgentAssignmentModel)
                .where(
                    AgentAssignmentModel.conversation_id == assignment.conversation_id,
                    AgentAssignmentModel.status == AssignmentStatus.ACTIVE.value,
                )
                .values(
                    status=AssignmentStatus.DISABLED.value,
                    auto_response_enabled=False,
                )
            )
            session.add(
                AgentAssignmentModel(
                    id=assignment.assignment_id,
                    conversation_id=assignment.conversation_id,
                    user_id=assignment.user_id,
                    agent_id=assignment.agent_id,
                    agent_type=assignment.agent_type.value,
                    auto_response_enabled=assignment.auto_response_enabled,
                    status=assignment.status.value,
                    escalation_reason=assignment.escalation_reason,
                )
            )
            await session.commit()
        logger.info(
            "assignment.created",
            conversation_id=assignment.conversation_id,
            agent_id=assignment.agent_id,
            agent_type=assignment.agent_type.value,
        )
        return assignment

    async def disable_auto_response(self, assignment_id: str, reason: str) -> bool:
        """Turn off automated replies; True only for the caller that flipped it."""
        async for session in self._session_factory():
            result = await session.execute(
                update(AgentAssignmentModel)
                .where(
                    AgentAssignmentModel.id == assignment_id,
                    AgentAssignmentModel.auto_response_enabled.is_(True),
                )
                .values(auto_response_enabled=False, escalation_reason=reason)
            )
            await session.commit()
            return result.rowcount == 1
        return False

    async def deactivate(self, assignment_id: str, reason: str | None = None) -> bool:
        """Move an active assignment to disabled; True only if it was active."""
        values: dict = {
            "status": AssignmentStatus.DISABLED.value,
            "auto_response_enabled": False,
        }
        if reason is not None:
            values["escalation_reason"] = reason
        async for session in self._session_factory():
            result = await session.execute(
                update(AgentAssignmentModel)
                .where(
                    AgentAssignmentModel.id == assignment_id,
                    AgentAssignmentModel.status == AssignmentStatus.ACTIVE.value,
                )
                .values(**values)
            )
            await session.commit()
            return result.rowcount == 1
        return False


class SqlAgentDirectory:
    """Loads agent configuration and its knowledge source ids."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_agent_config(self, agent_id: str, user_id: str) -> AgentConfig | None:
        async for session in self._session_factory():
            stmt = select(AgentModel).where(
                AgentModel.id == agent_id,
                AgentModel.user_id == user_id,
                AgentModel.is_active.is_(True),
            )
            result = await session.execute(stmt)
            agent = result.scalar_one_or_none()
            if agent is None:
                return None

            sources = await session.execute(
                select(AgentKnowledgeSourceModel.source_id).where(
                    AgentKnowledgeSourceModel.agent_id == agent_id
                )
            )
            return AgentConfig(
                agent_id=agent.id,
                user_id=agent.user_id,
                name=agent.name,
                personality=Personality(**(agent.personality or {})),
                system_prompt=agent.system_prompt,
                capabilities=list(agent.capabilities or []),
                knowledge_sources=list(sources.scalars().all()),
                tier=Tier(agent.tier),
                preferred_provider=agent.preferred_provider,
                escalation_threshold=agent.escalation_threshold,
            )
        return None
