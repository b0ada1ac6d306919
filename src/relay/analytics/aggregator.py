"""Per-agent daily performance roll-ups.

``track_interaction`` is the only writer of PerformanceRecords. It updates
today's record in O(1) using incremental weighted averages, serialized per
(account, agent, day) so concurrent events never lose an update within a
process. Read operations aggregate over a date range, treat missing days as
zero, and never write.

Exports:
    running_average: Incremental weighted mean update.
    apply_event: Pure record update for one interaction event.
    PerformanceAnalyticsAggregator: Tracking and read operations.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Protocol

import structlog

from src.relay.analytics.schemas import (
    AgentPerformance,
    ConversationAssigned,
    DailyTrend,
    EscalationRecorded,
    InteractionEvent,
    MessageSent,
    PerformanceRecord,
    ResolutionRecorded,
    SystemPerformance,
)
from src.relay.conversations.schemas import AgentType
from src.relay.core.locks import KeyedLocks

logger = structlog.get_logger(__name__)


class PerformanceRepository(Protocol):
    async def get_record(self, user_id: str, agent_id: str, day: date) -> PerformanceRecord | None: ...

    async def save_record(self, record: PerformanceRecord) -> None: ...

    async def list_records(
        self,
        user_id: str,
        start: date,
        end: date,
        agent_id: str | None = None,
    ) -> list[PerformanceRecord]: ...


def running_average(old_avg: float, old_count: int, value: float) -> float:
    """(old_avg * old_count + value) / (old_count + 1)."""
    return (old_avg * old_count + value) / (old_count + 1)


def apply_event(record: PerformanceRecord, event: InteractionEvent) -> PerformanceRecord:
    """Return a copy of ``record`` with ``event`` folded in."""
    updated = record.model_copy()

    if isinstance(event, MessageSent):
        updated.messages_sent += 1
        if event.response_time_seconds is not None:
            updated.avg_response_time_seconds = running_average(
                record.avg_response_time_seconds,
                record.response_time_samples,
                event.response_time_seconds,
            )
            updated.response_time_samples += 1
    elif isinstance(event, ConversationAssigned):
        updated.conversations_handled += 1
    elif isinstance(event, EscalationRecorded):
        updated.escalations += 1
    elif isinstance(event, ResolutionRecorded):
        updated.resolutions += 1
        if event.satisfaction is not None:
            updated.avg_satisfaction = running_average(
                record.avg_satisfaction,
                record.satisfaction_samples,
                float(event.satisfaction),
            )
            updated.satisfaction_samples += 1
        if event.lead_converted:
            updated.leads_converted += 1

    return updated


def _weighted_mean(pairs: Iterable[tuple[float, int]]) -> float:
    total_weight = 0
    total = 0.0
    for value, weight in pairs:
        total += value * weight
        total_weight += weight
    return round(total / total_weight, 3) if total_weight else 0.0


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


class PerformanceAnalyticsAggregator:
    """Maintains and reads daily agent performance records.

    Args:
        repository: Persistence collaborator for PerformanceRecords.
        today: Clock returning the current UTC date (injectable for tests).
    """

    def __init__(
        self,
        repository: PerformanceRepository,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._repository = repository
        self._today = today or (lambda: datetime.now(timezone.utc).date())
        self._locks = KeyedLocks()

    async def track_interaction(
        self,
        agent_id: str,
        conversation_id: str,
        user_id: str,
        event: InteractionEvent,
        *,
        agent_type: AgentType = AgentType.AI,
    ) -> PerformanceRecord:
        """Fold one interaction into today's record for ``agent_id``.

        Creates the record lazily on the first interaction of the day.
        """
        day = self._today()
        async with self._locks.hold(f"{user_id}:{agent_id}:{day.isoformat()}"):
            record = await self._repository.get_record(user_id, agent_id, day)
            if record is None:
                record = PerformanceRecord(
                    user_id=user_id,
                    agent_id=agent_id,
                    agent_type=agent_type,
                    day=day,
                )
            record = apply_event(record, event)
            await self._repository.save_record(record)

        logger.debug(
            "analytics.interaction_tracked",
            agent_id=agent_id,
            conversation_id=conversation_id,
            event_type=event.type,
        )
        return record

    async def get_agent_performance(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
        agent_id: str | None = None,
    ) -> list[AgentPerformance]:
        """Per-agent totals over [start, end] (default: the last 30 days).

        An explicitly requested agent with no records gets an all-zero entry.
        """
        start, end = self._range(start, end)
        records = await self._repository.list_records(user_id, start, end, agent_id)

        grouped: dict[str, list[PerformanceRecord]] = defaultdict(list)
        for record in records:
            grouped[record.agent_id].append(record)
        if agent_id is not None and agent_id not in grouped:
            grouped[agent_id] = []

        results = [self._summarize_agent(aid, recs) for aid, recs in grouped.items()]
        results.sort(key=lambda perf: perf.conversations_handled, reverse=True)
        return results

    async def get_system_performance(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> SystemPerformance:
        """Account-wide totals plus a zero-filled daily trend."""
        start, end = self._range(start, end)
        records = await self._repository.list_records(user_id, start, end)

        by_day: dict[date, list[PerformanceRecord]] = defaultdict(list)
        for record in records:
            by_day[record.day].append(record)

        trend = []
        day = start
        while day <= end:
            day_records = by_day.get(day, [])
            trend.append(
                DailyTrend(
                    day=day,
                    conversations_handled=sum(r.conversations_handled for r in day_records),
                    messages_sent=sum(r.messages_sent for r in day_records),
                    escalations=sum(r.escalations for r in day_records),
                    avg_response_time_seconds=_weighted_mean(
                        (r.avg_response_time_seconds, r.response_time_samples) for r in day_records
                    ),
                    avg_satisfaction=_weighted_mean(
                        (r.avg_satisfaction, r.satisfaction_samples) for r in day_records
                    ),
                )
            )
            day += timedelta(days=1)

        conversations = sum(r.conversations_handled for r in records)
        escalations = sum(r.escalations for r in records)
        return SystemPerformance(
            start=start,
            end=end,
            active_agents=len({r.agent_id for r in records}),
            conversations_handled=conversations,
            messages_sent=sum(r.messages_sent for r in records),
            escalations=escalations,
            resolutions=sum(r.resolutions for r in records),
            leads_converted=sum(r.leads_converted for r in records),
            avg_response_time_seconds=_weighted_mean(
                (r.avg_response_time_seconds, r.response_time_samples) for r in records
            ),
            avg_satisfaction=_weighted_mean(
                (r.avg_satisfaction, r.satisfaction_samples) for r in records
            ),
            escalation_rate=_rate(escalations, conversations),
            trend=trend,
        )

    def _range(self, start: date | None, end: date | None) -> tuple[date, date]:
        end = end or self._today()
        start = start or end - timedelta(days=29)
        if start > end:
            start, end = end, start
        return start, end

    @staticmethod
    def _summarize_agent(agent_id: str, records: list[PerformanceRecord]) -> AgentPerformance:
        conversations = sum(r.conversations_handled for r in records)
        messages = sum(r.messages_sent for r in records)
        escalations = sum(r.escalations for r in records)
        return AgentPerformance(
            agent_id=agent_id,
            agent_type=records[0].agent_type if records else AgentType.AI,
            days_active=len(records),
            conversations_handled=conversations,
            messages_sent=messages,
            avg_response_time_seconds=_weighted_mean(
                (r.avg_response_time_seconds, r.response_time_samples) for r in records
            ),
            avg_satisfaction=_weighted_mean(
                (r.avg_satisfaction, r.satisfaction_samples) for r in records
            ),
            escalations=escalations,
            resolutions=sum(r.resolutions for r in records),
            leads_converted=sum(r.leads_converted for r in records),
            escalation_rate=_rate(escalations, conversations),
            messages_per_conversation=round(messages / conversations, 2) if conversations else 0.0,
        )
