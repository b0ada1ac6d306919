"""Performance record and interaction log persistence."""

from __future__ import annotations

from datetime import date
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from src.relay.analytics.schemas import InteractionLogEntry, PerformanceRecord
from src.relay.conversations.repository import SessionFactory
from src.relay.conversations.schemas import AgentType
from src.relay.models.analytics import InteractionLogModel, PerformanceRecordModel

_COUNTER_FIELDS = (
    "agent_type",
    "conversations_handled",
    "messages_sent",
    "avg_response_time_seconds",
    "response_time_samples",
    "avg_satisfaction",
    "satisfaction_samples",
    "escalations",
    "resolutions",
    "leads_converted",
)


class InteractionLog(Protocol):
    async def append(self, entry: InteractionLogEntry) -> None: ...


def _model_to_record(model: PerformanceRecordModel) -> PerformanceRecord:
    return PerformanceRecord(
        user_id=model.user_id,
        agent_id=model.agent_id,
        agent_type=AgentType(model.agent_type),
        day=model.day,
        conversations_handled=model.conversations_handled,
        messages_sent=model.messages_sent,
        avg_response_time_seconds=model.avg_response_time_seconds,
        response_time_samples=model.response_time_samples,
        avg_satisfaction=model.avg_satisfaction,
        satisfaction_samples=model.satisfaction_samples,
        escalations=model.escalations,
        resolutions=model.resolutions,
        leads_converted=model.leads_converted,
    )


class SqlPerformanceRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_record(self, user_id: str, agent_id: str, day: date) -> PerformanceRecord | None:
        async for session in self._session_factory():
            stmt = select(PerformanceRecordModel).where(
                PerformanceRecordModel.user_id == user_id,
                PerformanceRecordModel.agent_id == agent_id,
                PerformanceRecordModel.day == day,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_record(model) if model else None
        return None

    async def save_record(self, record: PerformanceRecord) -> None:
        """Upsert on (user_id, agent_id, day)."""
        values = record.model_dump(mode="python")
        values["agent_type"] = record.agent_type.value
        stmt = insert(PerformanceRecordModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_agent_performance_day",
            set_={field: getattr(stmt.excluded, field) for field in _COUNTER_FIELDS},
        )
        async for session in self._session_factory():
            await session.execute(stmt)
            await session.commit()

    async def list_records(
        self,
        user_id: str,
        start: date,
        end: date,
        agent_id: str | None = None,
    ) -> list[PerformanceRecord]:
        async for session in self._session_factory():
            stmt = (
                select(PerformanceRecordModel)
                .where(
                    PerformanceRecordModel.user_id == user_id,
                    PerformanceRecordModel.day >= start,
                    PerformanceRecordModel.day <= end,
                )
                .order_by(PerformanceRecordModel.day.asc())
            )
            if agent_id is not None:
                stmt = stmt.where(PerformanceRecordModel.agent_id == agent_id)
            result = await session.execute(stmt)
            return [_model_to_record(model) for model in result.scalars().all()]
        return []


class SqlInteractionLog:
    """Append-only writer for ``agent_interactions``."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def append(self, entry: InteractionLogEntry) -> None:
        async for session in self._session_factory():
            session.add(InteractionLogModel(**entry.model_dump()))
            await session.commit()
