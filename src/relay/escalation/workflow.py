"""AI-to-human escalation: handoff records, assignment changes, queue notification.

``initiate`` is idempotent per conversation: while a handoff is open, or the
conversation is already escalated, further calls return without creating a
second record. The handoff row is the source of truth. Human-queue
notification runs as a background task whose failure is logged and never
rolls the escalation back.

Exports:
    build_handoff_context: Attempted solutions, history, and state snapshot.
    build_handoff_summary: Plain-text brief for the human agent.
    EscalationWorkflow: initiate / complete / reassign / list_active.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from src.relay.analytics.aggregator import PerformanceAnalyticsAggregator
from src.relay.analytics.schemas import (
    ConversationAssigned,
    EscalationRecorded,
    InteractionEvent,
    ResolutionRecorded,
)
from src.relay.conversations.repository import AssignmentRepository, ConversationRepository
from src.relay.conversations.schemas import (
    AgentAssignment,
    AgentType,
    ConversationMessage,
    ConversationStage,
    ConversationState,
    MessageDirection,
    Priority,
)
from src.relay.conversations.state import ConversationStateTracker
from src.relay.core.locks import KeyedLocks
from src.relay.core.monitoring import escalations_total
from src.relay.escalation.notifier import HandoffNotifier
from src.relay.escalation.repository import HandoffRepository
from src.relay.escalation.schemas import (
    EscalationOutcome,
    EscalationUrgency,
    HandoffContext,
    HandoffRecord,
    HandoffStatus,
)

logger = structlog.get_logger(__name__)

MIN_SOLUTION_CHARS = 10
MAX_ATTEMPTED_SOLUTIONS = 3


def build_handoff_context(
    state: ConversationState, history: Sequence[ConversationMessage]
) -> HandoffContext:
    outbound = [
        message.content
        for message in history
        if message.direction == MessageDirection.OUTBOUND
        and len(message.content.strip()) > MIN_SOLUTION_CHARS
    ]
    recent = [
        f"{'CUSTOMER' if m.direction == MessageDirection.INBOUND else 'AGENT'}: {m.content}"
        for m in history
    ]
    return HandoffContext(
        stage=state.stage.value,
        sentiment=state.sentiment,
        escalation_flags=sorted(state.escalation_flags),
        attempted_solutions=outbound[-MAX_ATTEMPTED_SOLUTIONS:],
        recent_history=recent,
    )


def build_handoff_summary(
    reason: str,
    urgency: EscalationUrgency,
    state: ConversationState,
    customer_message: str,
    context: HandoffContext,
) -> str:
    lines = [
        f"Escalation reason: {reason} (urgency: {urgency.value})",
        f"Platform: {state.platform}",
        f"Stage before handoff: {context.stage}",
        f"Customer sentiment: {state.sentiment.value}, satisfaction {state.satisfaction}/5",
        f"Inbound messages so far: {state.response_count}",
    ]
    if context.escalation_flags:
        lines.append("Flags: " + ", ".join(context.escalation_flags))
    if customer_message:
        lines.append(f'Triggering message: "{customer_message}"')
    if context.attempted_solutions:
        lines.append("Already tried:")
        lines.extend(f"- {solution}" for solution in context.attempted_solutions)
    return "\n".join(lines)


class EscalationWorkflow:
    """Records handoffs and moves conversations between AI and human agents.

    Args:
        handoffs: Handoff persistence.
        conversations: Conversation state and message log persistence.
        assignments: Agent assignment persistence.
        tracker: State tracker, used for the explicit stage reset.
        locks: Conversation locks shared with the orchestrator.
        notifier: Human-queue notifier (optional).
        analytics: Performance aggregator (optional).
        history_limit: Messages included in the handoff context.
    """

    def __init__(
        self,
        handoffs: HandoffRepository,
        conversations: ConversationRepository,
        assignments: AssignmentRepository,
        tracker: ConversationStateTracker,
        locks: KeyedLocks,
        notifier: HandoffNotifier | None = None,
        analytics: PerformanceAnalyticsAggregator | None = None,
        history_limit: int = 10,
    ) -> None:
        self._handoffs = handoffs
        self._conversations = conversations
        self._assignments = assignments
        self._tracker = tracker
        self._locks = locks
        self._notifier = notifier
        self._analytics = analytics
        self._history_limit = history_limit
        self._pending: set[asyncio.Task] = set()

    async def initiate(
        self,
        conversation_id: str,
        user_id: str,
        from_agent_id: str | None,
        reason: str,
        urgency: EscalationUrgency = EscalationUrgency.MEDIUM,
        customer_message: str = "",
    ) -> EscalationOutcome:
        """Hand a conversation to the human queue.

        Creates the handoff record, marks the conversation escalated with
        high priority, and disables the originating assignment. Calling it
        again while a handoff is open is a no-op. An escalated conversation
        without an open handoff gets a new one.

        Returns:
            EscalationOutcome; ``created`` is False for a no-op call.
        """
        log = logger.bind(conversation_id=conversation_id, user_id=user_id, reason=reason)

        async with self._locks.hold(conversation_id):
            existing = await self._handoffs.get_open_for_conversation(conversation_id)
            if existing is not None:
                log.info("escalation.already_open", handoff_id=existing.handoff_id)
                return EscalationOutcome(record=existing, created=False)

            state = await self._conversations.get_state(conversation_id, user_id)
            if state is None:
                # The handoff row references the conversation row.
                state = await self._conversations.save_state(
                    ConversationState(conversation_id=conversation_id, user_id=user_id)
                )
            elif state.stage == ConversationStage.ESCALATED:
                log.warning("escalation.missing_handoff_repaired")

            history = await self._conversations.recent_messages(
                conversation_id, user_id, limit=self._history_limit
            )
            context = build_handoff_context(state, history)
            record = HandoffRecord(
                conversation_id=conversation_id,
                user_id=user_id,
                from_agent_id=from_agent_id,
                reason=reason,
                urgency=urgency,
                customer_message=customer_message,
                summary=build_handoff_summary(reason, urgency, state, customer_message, context),
                context=context,
            )

            # Handoff first: a failed write must not leave an escalated
            # conversation with no handoff.
            await self._handoffs.create(record)

            metadata = {**state.metadata, "handoff_id": record.handoff_id, "escalation_reason": reason}
            escalated = state.model_copy(
                update={
                    "stage": ConversationStage.ESCALATED,
                    "priority": Priority.HIGH,
                    "metadata": metadata,
                }
            )
            await self._conversations.save_state(escalated)

            assignment = await self._assignments.get_active(conversation_id, user_id)
            if assignment is not None and (
                from_agent_id is None or assignment.agent_id == from_agent_id
            ):
                await self._assignments.deactivate(assignment.assignment_id, reason)

        escalations_total.labels(reason=reason).inc()
        log.info(
            "escalation.initiated",
            handoff_id=record.handoff_id,
            urgency=urgency.value,
            from_agent_id=from_agent_id,
        )

        if from_agent_id:
            await self._track(from_agent_id, conversation_id, user_id, EscalationRecorded(reason=reason))
        self._schedule_notification(record)
        return EscalationOutcome(record=record, created=True)

    async def complete(
        self,
        handoff_id: str,
        resolution: str,
        satisfaction: int | None = None,
    ) -> HandoffRecord | None:
        """Close a handoff and credit the resolving human agent."""
        record = await self._handoffs.update_status(
            handoff_id, HandoffStatus.COMPLETED, resolution=resolution
        )
        if record is None:
            return None

        logger.info(
            "escalation.completed",
            handoff_id=handoff_id,
            conversation_id=record.conversation_id,
        )
        if record.to_agent_id:
            await self._track(
                record.to_agent_id,
                record.conversation_id,
                record.user_id,
                ResolutionRecorded(satisfaction=satisfaction),
                agent_type=AgentType.HUMAN,
            )
        return record

    async def reassign(
        self,
        conversation_id: str,
        user_id: str,
        agent_id: str,
        agent_type: AgentType = AgentType.HUMAN,
    ) -> AgentAssignment:
        """Explicitly bind the conversation to a new agent.

        A human pickup marks the open handoff assigned. Handing back to an
        AI agent is the explicit action that leaves the escalated stage.
        """
        async with self._locks.hold(conversation_id):
            state = await self._conversations.get_state(conversation_id, user_id)
            if state is None:
                state = ConversationState(conversation_id=conversation_id, user_id=user_id)
            elif agent_type == AgentType.AI and state.stage == ConversationStage.ESCALATED:
                state = await self._tracker.reset_stage(
                    conversation_id, user_id, ConversationStage.ENGAGED
                ) or state

            state = state.model_copy(
                update={"assigned_agent_id": agent_id, "assigned_agent_type": agent_type}
            )
            await self._conversations.save_state(state)

            assignment = await self._assignments.create(
                AgentAssignment(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    agent_id=agent_id,
                    agent_type=agent_type,
                    auto_response_enabled=agent_type == AgentType.AI,
                )
            )

            open_handoff = await self._handoffs.get_open_for_conversation(conversation_id)
            if open_handoff is not None:
                if agent_type == AgentType.HUMAN:
                    await self._handoffs.update_status(
                        open_handoff.handoff_id, HandoffStatus.ASSIGNED, to_agent_id=agent_id
                    )
                else:
                    await self._handoffs.update_status(
                        open_handoff.handoff_id,
                        HandoffStatus.COMPLETED,
                        resolution="returned to automated agent",
                    )

        logger.info(
            "escalation.reassigned",
            conversation_id=conversation_id,
            agent_id=agent_id,
            agent_type=agent_type.value,
        )
        await self._track(
            agent_id, conversation_id, user_id, ConversationAssigned(), agent_type=agent_type
        )
        return assignment

    async def list_active(self, user_id: str) -> list[HandoffRecord]:
        """Open handoffs (pending or assigned), oldest first."""
        return await self._handoffs.list_active(user_id)

    async def wait_for_notifications(self) -> None:
        """Wait for in-flight queue notifications (used at shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def _schedule_notification(self, record: HandoffRecord) -> None:
        if self._notifier is None:
            return
        task = asyncio.create_task(self._notify(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _notify(self, record: HandoffRecord) -> None:
        try:
            await self._notifier.notify(record)
        except Exception:
            logger.warning(
                "escalation.notify_failed",
                handoff_id=record.handoff_id,
                conversation_id=record.conversation_id,
                exc_info=True,
            )

    async def _track(
        self,
        agent_id: str,
        conversation_id: str,
        user_id: str,
        event: InteractionEvent,
        agent_type: AgentType = AgentType.AI,
    ) -> None:
        if self._analytics is None:
            return
        try:
            await self._analytics.track_interaction(
                agent_id, conversation_id, user_id, event, agent_type=agent_type
            )
        except Exception:
            logger.warning(
                "escalation.analytics_failed",
                agent_id=agent_id,
                event_type=event.type,
                exc_info=True,
            )
