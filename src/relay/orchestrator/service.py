"""Auto-reply orchestration: inbound message -> generated reply or escalation.

Per-conversation state changes (tracker update, assignment disable,
escalation) run under the conversation's lock. Generation runs outside it
with a pipeline timeout, and the assignment is re-checked under the lock
before any result is acted upon so an escalation or reassignment that
happened mid-generation discards the stale reply.

Exports:
    urgency_for: Handoff urgency derived from the conversation's flags.
    AutoReplyOrchestrator: process_incoming / send_auto_reply / handle_message.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog

from src.relay.analytics.aggregator import PerformanceAnalyticsAggregator
from src.relay.analytics.repository import InteractionLog
from src.relay.analytics.schemas import InteractionLogEntry, MessageSent
from src.relay.conversations.repository import (
    AgentDirectory,
    AssignmentRepository,
    ConversationRepository,
)
from src.relay.conversations.schemas import (
    AgentAssignment,
    AgentType,
    AssignmentStatus,
    ConversationMessage,
    ConversationState,
    EscalationFlag,
    IncomingMessage,
    MessageDirection,
)
from src.relay.conversations.state import ConversationStateTracker
from src.relay.core.locks import KeyedLocks
from src.relay.core.monitoring import auto_reply_outcomes_total, dispatch_failures_total
from src.relay.errors import ConfigurationError, DispatchFailure, ProviderFailure
from src.relay.escalation.schemas import EscalationUrgency
from src.relay.escalation.workflow import EscalationWorkflow
from src.relay.generation.generator import ResponseGenerator
from src.relay.generation.schemas import AgentConfig, EscalationReason, GenerationResult
from src.relay.orchestrator.dispatch import ChannelSender
from src.relay.orchestrator.schemas import (
    AutoReplyResult,
    DispatchResult,
    HandleResult,
    OutboundMessage,
)

logger = structlog.get_logger(__name__)


def urgency_for(state: ConversationState | None) -> EscalationUrgency:
    """Map tracker flags and tags to a handoff urgency."""
    if state is None:
        return EscalationUrgency.MEDIUM
    flags = state.escalation_flags
    if EscalationFlag.URGENT_COMPLAINT.value in flags:
        return EscalationUrgency.CRITICAL
    if (
        EscalationFlag.HUMAN_AGENT_REQUESTED.value in flags
        or EscalationFlag.REPEATED_NEGATIVE_SENTIMENT.value in flags
        or "urgent" in state.tags
    ):
        return EscalationUrgency.HIGH
    return EscalationUrgency.MEDIUM


def _escalation_interrupted(assignment: AgentAssignment | None) -> bool:
    """An AI assignment whose auto replies were switched off but never handed over.

    The orchestrator disables auto replies before the workflow writes the
    handoff; the workflow deactivates the assignment only after it has.
    """
    return (
        assignment is not None
        and assignment.status == AssignmentStatus.ACTIVE
        and assignment.agent_type == AgentType.AI
        and not assignment.auto_response_enabled
    )


class AutoReplyOrchestrator:
    """Decides, per inbound message, whether an AI agent answers or a human takes over.

    Args:
        conversations: Conversation state and message log persistence.
        assignments: Assignment persistence (compare-and-set disable).
        agents: Agent configuration lookup.
        tracker: Conversation state tracker.
        generator: Retrieval + generation pipeline.
        workflow: Escalation workflow.
        sender: Channel gateway client.
        locks: Conversation locks, shared with the workflow.
        analytics: Performance aggregator (optional).
        interaction_log: Append-only generation log (optional).
        history_limit: Recent messages passed to generation.
        pipeline_timeout: Seconds allowed for retrieval plus generation.
        redelivery_window: Seconds within which an identical inbound message
            is treated as the channel re-sending the last one.
    """

    def __init__(
        self,
        conversations: ConversationRepository,
        assignments: AssignmentRepository,
        agents: AgentDirectory,
        tracker: ConversationStateTracker,
        generator: ResponseGenerator,
        workflow: EscalationWorkflow,
        sender: ChannelSender,
        locks: KeyedLocks,
        analytics: PerformanceAnalyticsAggregator | None = None,
        interaction_log: InteractionLog | None = None,
        history_limit: int = 10,
        pipeline_timeout: float = 20.0,
        redelivery_window: float = 300.0,
    ) -> None:
        self._conversations = conversations
        self._assignments = assignments
        self._agents = agents
        self._tracker = tracker
        self._generator = generator
        self._workflow = workflow
        self._sender = sender
        self._locks = locks
        self._analytics = analytics
        self._interaction_log = interaction_log
        self._history_limit = history_limit
        self._pipeline_timeout = pipeline_timeout
        self._redelivery_window = redelivery_window

    # ── Decision ─────────────────────────────────────────────────────────

    async def process_incoming(self, message: IncomingMessage) -> AutoReplyResult:
        """Run the auto-reply pipeline for one inbound message.

        Human-owned conversations are left untouched. Generation failures
        and timeouts escalate; they never produce a reply.
        """
        cid, uid = message.conversation_id, message.user_id
        log = logger.bind(conversation_id=cid, user_id=uid, platform=message.platform)

        async with self._locks.hold(cid):
            assignment = await self._assignments.get_active(cid, uid)
            if _escalation_interrupted(assignment):
                return await self._resume_escalation(message, assignment, log)
            if assignment is None or not assignment.accepts_auto_reply:
                log.debug("auto_reply.not_ai_owned")
                auto_reply_outcomes_total.labels(outcome="skipped").inc()
                return AutoReplyResult(skipped_reason="no_auto_reply_assignment")

            state = await self._track_inbound(message, log)

            agent = await self._agents.get_agent_config(assignment.agent_id, uid)
            if agent is None:
                log.warning("auto_reply.agent_not_configured", agent_id=assignment.agent_id)
                auto_reply_outcomes_total.labels(outcome="skipped").inc()
                return AutoReplyResult(
                    assignment_id=assignment.assignment_id,
                    agent_id=assignment.agent_id,
                    skipped_reason="agent_not_configured",
                )

            history = await self._history(message)

        log = log.bind(agent_id=agent.agent_id, assignment_id=assignment.assignment_id)

        try:
            result = await asyncio.wait_for(
                self._generator.generate(
                    message.content,
                    agent,
                    history=history,
                    customer=message.customer_info,
                ),
                timeout=self._pipeline_timeout,
            )
        except ProviderFailure as exc:
            log.error("auto_reply.provider_failure", attempted=exc.providers, error=exc.cause)
            await self._log_interaction(message, agent, None, EscalationReason.PROVIDER_FAILURE.value)
            return await self._escalate(
                message, assignment, agent, EscalationReason.PROVIDER_FAILURE.value, state
            )
        except ConfigurationError as exc:
            log.error("auto_reply.no_provider", error=str(exc))
            await self._log_interaction(message, agent, None, EscalationReason.PROVIDER_FAILURE.value)
            return await self._escalate(
                message, assignment, agent, EscalationReason.PROVIDER_FAILURE.value, state
            )
        except asyncio.TimeoutError:
            log.error("auto_reply.generation_timeout", timeout=self._pipeline_timeout)
            await self._log_interaction(message, agent, None, EscalationReason.GENERATION_TIMEOUT.value)
            return await self._escalate(
                message, assignment, agent, EscalationReason.GENERATION_TIMEOUT.value, state
            )

        await self._log_interaction(
            message,
            agent,
            result,
            result.escalation_reason.value if result.escalation_reason else None,
        )

        if result.should_escalate:
            return await self._escalate(
                message,
                assignment,
                agent,
                result.escalation_reason.value,
                state,
                confidence=result.confidence,
            )

        async with self._locks.hold(cid):
            if not await self._still_assigned(assignment):
                log.info("auto_reply.discarded_stale", reason="assignment_changed")
                auto_reply_outcomes_total.labels(outcome="discarded").inc()
                return AutoReplyResult(
                    agent_id=agent.agent_id,
                    assignment_id=assignment.assignment_id,
                    discarded=True,
                )

        auto_reply_outcomes_total.labels(outcome="replied").inc()
        log.info(
            "auto_reply.ready",
            provider=result.provider,
            confidence=result.confidence,
            latency_ms=result.latency_ms,
        )
        return AutoReplyResult(
            should_reply=True,
            response=result.text,
            agent_name=agent.name,
            agent_id=agent.agent_id,
            assignment_id=assignment.assignment_id,
            confidence=result.confidence,
            provider=result.provider,
            latency_ms=result.latency_ms,
        )

    # ── Dispatch ─────────────────────────────────────────────────────────

    async def send_auto_reply(self, message: IncomingMessage, reply: AutoReplyResult) -> DispatchResult:
        """Deliver ``reply`` through the channel gateway.

        The assignment is re-checked right before sending; a reply whose
        assignment changed is discarded instead of sent.

        Raises:
            DispatchFailure: If the gateway call raised or reported failure.
        """
        cid, uid = message.conversation_id, message.user_id
        if not reply.should_reply or not reply.response:
            return DispatchResult(discarded=True)

        log = logger.bind(conversation_id=cid, user_id=uid, agent_id=reply.agent_id)

        async with self._locks.hold(cid):
            assignment = await self._assignments.get_active(cid, uid)
            if (
                assignment is None
                or assignment.assignment_id != reply.assignment_id
                or not assignment.accepts_auto_reply
            ):
                log.info("auto_reply.discarded_stale", reason="assignment_changed_before_send")
                auto_reply_outcomes_total.labels(outcome="discarded").inc()
                return DispatchResult(discarded=True)

            outbound = OutboundMessage(
                conversation_id=cid,
                user_id=uid,
                content=reply.response,
                to=message.sender_id,
                from_=reply.agent_id or assignment.agent_id,
                platform=message.platform,
                metadata={
                    "isAutoReply": True,
                    "generatedAt": datetime.now(timezone.utc).isoformat(),
                    "confidence": reply.confidence,
                    "provider": reply.provider,
                },
            )
            try:
                sent = await self._sender.send(outbound)
            except Exception as exc:
                dispatch_failures_total.labels(platform=message.platform).inc()
                raise DispatchFailure(cid, message.platform, str(exc) or type(exc).__name__) from exc
            if not sent.success:
                dispatch_failures_total.labels(platform=message.platform).inc()
                raise DispatchFailure(cid, message.platform, sent.error or "unknown error")

            try:
                await self._tracker.update(
                    cid,
                    uid,
                    reply.response,
                    MessageDirection.OUTBOUND,
                    platform=message.platform,
                    sender_type="ai_agent",
                )
            except Exception:
                log.warning("auto_reply.outbound_tracking_failed", exc_info=True)

        log.info("auto_reply.sent", message_id=sent.message_id, platform=message.platform)

        if self._analytics is not None:
            try:
                await self._analytics.track_interaction(
                    reply.agent_id or assignment.agent_id,
                    cid,
                    uid,
                    MessageSent(response_time_seconds=reply.latency_ms / 1000),
                )
            except Exception:
                log.warning("auto_reply.analytics_failed", exc_info=True)

        return DispatchResult(sent=True, message_id=sent.message_id)

    async def handle_message(self, message: IncomingMessage) -> HandleResult:
        """Process an inbound message and send the reply if there is one."""
        reply = await self.process_incoming(message)
        if not reply.should_reply:
            return HandleResult(reply=reply)
        dispatch = await self.send_auto_reply(message, reply)
        return HandleResult(reply=reply, dispatch=dispatch)

    # ── Internals ────────────────────────────────────────────────────────

    async def _track_inbound(
        self,
        message: IncomingMessage,
        log: structlog.stdlib.BoundLogger,
    ) -> ConversationState | None:
        try:
            if await self._is_redelivery(message):
                log.info("auto_reply.redelivery_not_tracked")
                return await self._conversations.get_state(message.conversation_id, message.user_id)
            return await self._tracker.update(
                message.conversation_id,
                message.user_id,
                message.content,
                MessageDirection.INBOUND,
                platform=message.platform,
            )
        except Exception:
            log.warning("auto_reply.state_update_failed", exc_info=True)
            return await self._conversations.get_state(message.conversation_id, message.user_id)

    async def _is_redelivery(self, message: IncomingMessage) -> bool:
        """True if ``message`` repeats the newest logged message, still unanswered.

        Channel adapters retry a failed dispatch with the same content.
        """
        latest = await self._conversations.recent_messages(
            message.conversation_id, message.user_id, limit=1
        )
        if not latest:
            return False
        last = latest[-1]
        age = (message.received_at - last.created_at).total_seconds()
        return (
            last.direction == MessageDirection.INBOUND
            and last.content == message.content
            and age <= self._redelivery_window
        )

    async def _resume_escalation(
        self,
        message: IncomingMessage,
        assignment: AgentAssignment,
        log: structlog.stdlib.BoundLogger,
    ) -> AutoReplyResult:
        reason = assignment.escalation_reason or EscalationReason.PROVIDER_FAILURE.value
        log.warning("auto_reply.escalation_resumed", agent_id=assignment.agent_id, reason=reason)
        state = await self._conversations.get_state(message.conversation_id, message.user_id)
        outcome = await self._workflow.initiate(
            message.conversation_id,
            message.user_id,
            from_agent_id=assignment.agent_id,
            reason=reason,
            urgency=urgency_for(state),
            customer_message=message.content,
        )
        auto_reply_outcomes_total.labels(outcome="escalated").inc()
        return AutoReplyResult(
            agent_id=assignment.agent_id,
            assignment_id=assignment.assignment_id,
            escalated=True,
            escalation_reason=reason,
            handoff_id=outcome.record.handoff_id if outcome.record else None,
        )

    async def _history(self, message: IncomingMessage) -> list[ConversationMessage]:
        try:
            history = await self._conversations.recent_messages(
                message.conversation_id, message.user_id, limit=self._history_limit + 1
            )
        except Exception:
            logger.warning(
                "auto_reply.history_unavailable",
                conversation_id=message.conversation_id,
                exc_info=True,
            )
            return []
        if (
            history
            and history[-1].direction == MessageDirection.INBOUND
            and history[-1].content == message.content
        ):
            history = history[:-1]
        return history[-self._history_limit:]

    async def _still_assigned(self, assignment: AgentAssignment) -> bool:
        current = await self._assignments.get_active(assignment.conversation_id, assignment.user_id)
        return (
            current is not None
            and current.assignment_id == assignment.assignment_id
            and current.accepts_auto_reply
        )

    async def _escalate(
        self,
        message: IncomingMessage,
        assignment: AgentAssignment,
        agent: AgentConfig,
        reason: str,
        state: ConversationState | None,
        confidence: float | None = None,
    ) -> AutoReplyResult:
        cid, uid = message.conversation_id, message.user_id
        log = logger.bind(conversation_id=cid, user_id=uid, agent_id=agent.agent_id, reason=reason)

        async with self._locks.hold(cid):
            if not await self._still_assigned(assignment):
                log.info("auto_reply.discarded_stale", reason="assignment_changed_before_escalation")
                auto_reply_outcomes_total.labels(outcome="discarded").inc()
                return AutoReplyResult(
                    agent_id=agent.agent_id,
                    assignment_id=assignment.assignment_id,
                    discarded=True,
                )

            if not await self._assignments.disable_auto_response(assignment.assignment_id, reason):
                log.info("auto_reply.disable_lost_race")
                auto_reply_outcomes_total.labels(outcome="discarded").inc()
                return AutoReplyResult(
                    agent_id=agent.agent_id,
                    assignment_id=assignment.assignment_id,
                    discarded=True,
                )

            latest = await self._conversations.get_state(cid, uid) or state
            outcome = await self._workflow.initiate(
                cid,
                uid,
                from_agent_id=agent.agent_id,
                reason=reason,
                urgency=urgency_for(latest),
                customer_message=message.content,
            )

        auto_reply_outcomes_total.labels(outcome="escalated").inc()
        log.info(
            "auto_reply.escalated",
            handoff_id=outcome.record.handoff_id if outcome.record else None,
            created=outcome.created,
        )
        return AutoReplyResult(
            agent_name=agent.name,
            agent_id=agent.agent_id,
            assignment_id=assignment.assignment_id,
            confidence=confidence,
            escalated=True,
            escalation_reason=reason,
            handoff_id=outcome.record.handoff_id if outcome.record else None,
        )

    async def _log_interaction(
        self,
        message: IncomingMessage,
        agent: AgentConfig,
        result: GenerationResult | None,
        escalation_reason: str | None,
    ) -> None:
        if self._interaction_log is None:
            return
        entry = InteractionLogEntry(
            conversation_id=message.conversation_id,
            user_id=message.user_id,
            agent_id=agent.agent_id,
            customer_message=message.content,
            response=result.text if result else "",
            confidence=result.confidence if result else 0.0,
            provider=result.provider if result else None,
            tokens_used=result.tokens if result else 0,
            latency_ms=result.latency_ms if result else 0,
            contexts=[context.model_dump() for context in result.contexts] if result else [],
            escalated=escalation_reason is not None,
            escalation_reason=escalation_reason,
        )
        try:
            await self._interaction_log.append(entry)
        except Exception:
            logger.warning(
                "auto_reply.interaction_log_failed",
                conversation_id=message.conversation_id,
                exc_info=True,
            )
