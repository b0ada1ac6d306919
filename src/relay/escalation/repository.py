"""Handoff persistence."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

import structlog
from sqlalchemy import select

from src.relay.conversations.repository import SessionFactory
from src.relay.escalation.schemas import (
    OPEN_HANDOFF_STATUSES,
    EscalationUrgency,
    HandoffContext,
    HandoffRecord,
    HandoffStatus,
)
from src.relay.models.escalation import HandoffModel

logger = structlog.get_logger(__name__)

_OPEN_VALUES = [status.value for status in OPEN_HANDOFF_STATUSES]


class HandoffRepository(Protocol):
    async def create(self, record: HandoffRecord) -> HandoffRecord: ...

    async def get(self, handoff_id: str) -> HandoffRecord | None: ...

    async def get_open_for_conversation(self, conversation_id: str) -> HandoffRecord | None: ...

    async def list_active(self, user_id: str) -> list[HandoffRecord]: ...

    async def update_status(
        self,
        handoff_id: str,
        status: HandoffStatus,
        *,
        to_agent_id: str | None = None,
        resolution: str | None = None,
    ) -> HandoffRecord | None: ...


def _model_to_record(model: HandoffModel) -> HandoffRecord:
    return HandoffRecord(
        handoff_id=model.id,
        conversation_id=model.conversation_id,
        user_id=model.user_id,
        from_agent_id=model.from_agent_id,
        to_agent_id=model.to_agent_id,
        reason=model.reason,
        urgency=EscalationUrgency(model.urgency),
        status=HandoffStatus(model.status),
        customer_message=model.customer_message or "",
        summary=model.summary or "",
        context=HandoffContext(**(model.context or {})),
        resolution=model.resolution,
        created_at=model.created_at,
        completed_at=model.completed_at,
    )


class SqlHandoffRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def create(self, record: HandoffRecord) -> HandoffRecord:
        async for session in self._session_factory():
            session.add(
                HandoffModel(
                    id=record.handoff_id,
                    conversation_id=record.conversation_id,
                    user_id=record.user_id,
                    from_agent_id=record.from_agent_id,
                    to_agent_id=record.to_agent_id,
                    reason=record.reason,
                    urgency=record.urgency.value,
                    status=record.status.value,
                    customer_message=record.customer_message,
                    summary=record.summary,
                    context=record.context.model_dump(mode="json"),
                    created_at=record.created_at,
                )
            )
            await session.commit()
        return record

    async def get(self, handoff_id: str) -> HandoffRecord | None:
        async for session in self._session_factory():
            model = await session.get(HandoffModel, handoff_id)
            return _model_to_record(model) if model else None
        return None

    async def get_open_for_conversation(self, conversation_id: str) -> HandoffRecord | None:
        async for session in self._session_factory():
            stmt = select(HandoffModel).where(
                HandoffModel.conversation_id == conversation_id,
                HandoffModel.status.in_(_OPEN_VALUES),
            )
            result = await session.execute(stmt)
            model = result.scalars().first()
            return _model_to_record(model) if model else None
        return None

    async def list_active(self, user_id: str) -> list[HandoffRecord]:
        async for session in self._session_factory():
            stmt = (
                select(HandoffModel)
                .where(
                    HandoffModel.user_id == user_id,
                    HandoffModel.status.in_(_OPEN_VALUES),
                )
                .order_by(HandoffModel.created_at.asc())
            )
            result = await session.execute(stmt)
            return [_model_to_record(model) for model in result.scalars().all()]
        return []

    async def update_status(
        self,
        handoff_id: str,
        status: HandoffStatus,
        *,
        to_agent_id: str | None = None,
        resolution: str | None = None,
    ) -> HandoffRecord | None:
        async for session in self._session_factory():
            model = await session.get(HandoffModel, handoff_id)
            if model is None:
                return None
            model.status = status.value
            if to_agent_id is not None:
                model.to_agent_id = to_agent_id
            if resolution is not None:
                model.resolution = resolution
            if status == HandoffStatus.COMPLETED:
                model.completed_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_record(model)
        return None
