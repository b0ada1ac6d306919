"""Tests for AutoReplyOrchestrator.

Covers:
- Happy path: reply generated, sent with auto-reply metadata, tracked
- Urgent payment failure: escalated, auto-response off, exactly one handoff
- Human-owned and unconfigured conversations are skipped
- Provider failure and pipeline timeout escalate instead of replying
- Reassignment during generation or before send discards the reply
- Lost compare-and-set on the assignment discards the escalation
- Gateway refusals surface as DispatchFailure
- Concurrent messages on one conversation produce one handoff
- A failed handoff write is resumed by the next message
- A channel retry after a failed send is not tracked twice
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.relay.conversations.schemas import (
    AgentAssignment,
    AgentType,
    AssignmentStatus,
    ConversationStage,
    IncomingMessage,
    MessageDirection,
)
from src.relay.errors import DispatchFailure
from src.relay.escalation.schemas import EscalationUrgency
from src.relay.generation.schemas import AgentConfig, GenerationResult
from src.relay.orchestrator.schemas import SendResult
from src.relay.orchestrator.service import AutoReplyOrchestrator

CID = "conv-1"
UID = "acct-1"


def _message(content: str, conversation_id: str = CID) -> IncomingMessage:
    return IncomingMessage.model_validate(
        {
            "conversationId": conversation_id,
            "userId": UID,
            "content": content,
            "platform": "whatsapp",
            "senderId": "cust-42",
            "customerInfo": {"name": "Dana"},
        }
    )


def _orchestrator_with(engine, generator, **kwargs) -> AutoReplyOrchestrator:
    return AutoReplyOrchestrator(
        engine.conversations,
        engine.assignments,
        engine.agents,
        engine.tracker,
        generator,
        engine.workflow,
        engine.sender,
        engine.locks,
        analytics=engine.analytics,
        interaction_log=engine.interaction_log,
        **kwargs,
    )


# ── Happy Path ──────────────────────────────────────────────────────────────


class TestAutoReply:
    async def test_reply_is_generated(self, engine) -> None:
        assignment = await engine.assign_ai()

        reply = await engine.orchestrator.process_incoming(_message("When will my order arrive?"))

        assert reply.should_reply is True
        assert reply.escalated is False
        assert reply.response == engine.llm.default
        assert reply.agent_name == "Ava"
        assert reply.assignment_id == assignment.assignment_id
        assert reply.provider == "groq"
        assert engine.conversations.states[CID].response_count == 1
        assert len(engine.interaction_log.entries) == 1
        assert engine.interaction_log.entries[0].escalated is False

    async def test_reply_is_sent_and_tracked(self, engine) -> None:
        await engine.assign_ai()

        result = await engine.orchestrator.handle_message(_message("When will my order arrive?"))

        assert result.dispatch.sent is True
        assert result.dispatch.message_id == "gw-msg-1"
        [outbound] = engine.sender.sent
        assert outbound.to == "cust-42"
        assert outbound.from_ == "agent-ai-1"
        assert outbound.metadata["isAutoReply"] is True
        assert outbound.metadata["provider"] == "groq"
        assert outbound.model_dump(by_alias=True)["from"] == "agent-ai-1"

        last = engine.conversations.messages[-1]
        assert last.direction == MessageDirection.OUTBOUND
        assert last.sender_type == "ai_agent"
        assert engine.performance.record_for("agent-ai-1").messages_sent == 1

    async def test_state_update_failure_does_not_block_reply(self, engine) -> None:
        await engine.assign_ai()
        engine.tracker.update = AsyncMock(side_effect=RuntimeError("db down"))

        reply = await engine.orchestrator.process_incoming(_message("When will my order arrive?"))

        assert reply.should_reply is True


# ── Skips ───────────────────────────────────────────────────────────────────


class TestSkipped:
    async def test_unassigned_conversation(self, engine) -> None:
        reply = await engine.orchestrator.process_incoming(_message("hello"))

        assert reply.should_reply is False
        assert reply.skipped_reason == "no_auto_reply_assignment"
        assert len(engine.llm.calls) == generations

    async def test_human_owned_conversation_untouched(self, engine) -> None:
        await engine.assignments.create(
            AgentAssignment(
                conversation_id=CID, user_id=UID, agent_id="human-7",
                agent_type=AgentType.HUMAN, auto_response_enabled=False,
            )
        )

        result = await engine.orchestrator.handle_message(_message("Are you there?"))

        assert result.reply.should_reply is False
        assert result.dispatch is None
        assert engine.conversations.states == {}
        assert engine.llm.calls == []

    async def test_agent_not_configured(self, engine) -> None:
        await engine.assign_ai(agent_id="agent-missing")

        reply = await engine.orchestrator.process_incoming(_message("hello"))

        assert reply.skipped_reason == "agent_not_configured"
        assert engine.llm.calls == []


# ── Escalation ──────────────────────────────────────────────────────────────


class TestEscalation:
    async def test_urgent_payment_failure_escalates(self, engine) -> None:
        assignment = await engine.assign_ai()

        result = await engine.orchestrator.handle_message(
            _message("This is urgent, my payment failed!")
        )
        await engine.workflow.wait_for_notifications()

        reply = result.reply
        assert reply.should_reply is False
        assert reply.escalated is True
        assert reply.escalation_reason == "ESCALATION_KEYWORD"
        assert result.dispatch is None
        assert engine.sender.sent == []

        stored = engine.assignments.assignments[assignment.assignment_id]
        assert stored.auto_response_enabled is False
        assert stored.status == AssignmentStatus.DISABLED

        [handoff] = engine.handoffs.records.values()
        assert handoff.handoff_id == reply.handoff_id
        assert handoff.urgency == EscalationUrgency.HIGH
        assert handoff.customer_message == "This is urgent, my payment failed!"
        assert engine.conversations.states[CID].stage == ConversationStage.ESCALATED
        assert len(engine.notifier.notified) == 1

        [entry] = engine.interaction_log.entries
        assert entry.escalated is True
        assert entry.escalation_reason == "ESCALATION_KEYWORD"

    async def test_follow_up_after_escalation_is_skipped(self, engine) -> None:
        await engine.assign_ai()
        await engine.orchestrator.handle_message(_message("This is urgent, my payment failed!"))

        follow_up = await engine.orchestrator.process_incoming(_message("Hello??"))

        assert follow_up.skipped_reason == "no_auto_reply_assignment"
        assert len(engine.handoffs.records) == 1

    async def test_untrained_agent_escalates(self, engine, support_agent: AgentConfig) -> None:
        engine.agents.add(support_agent.model_copy(update={"knowledge_sources": []}))
        await engine.assign_ai()

        reply = await engine.orchestrator.process_incoming(_message("When will my order arrive?"))

        assert reply.escalation_reason == "AGENT_NEEDS_TRAINING"
        assert engine.llm.calls == []

    async def test_provider_failure_escalates(self, engine) -> None:
        await engine.assign_ai()
        engine.llm.replies.update(groq=RuntimeError("down"), openai=RuntimeError("down"))

        reply = await engine.orchestrator.process_incoming(_message("When will my order arrive?"))

        assert reply.escalated is True
        assert reply.escalation_reason == "PROVIDER_FAILURE"
        assert engine.llm.calls == ["groq", "openai"]
        [entry] = engine.interaction_log.entries
        assert entry.response == ""
        assert entry.escalation_reason == "PROVIDER_FAILURE"

    async def test_timeout_escalates(self, engine) -> None:
        async def never_finishes(*args, **kwargs):
            await asyncio.sleep(5)

        generator = MagicMock()
        generator.generate = AsyncMock(side_effect=never_finishes)
        orchestrator = _orchestrator_with(engine, generator, pipeline_timeout=0.05)
        await engine.assign_ai()

        reply = await orchestrator.process_incoming(_message("When will my order arrive?"))

        assert reply.escalated is True
        assert reply.escalation_reason == "GENERATION_TIMEOUT"
        assert len(engine.handoffs.records) == 1

    async def test_concurrent_messages_single_handoff(self, engine) -> None:
        await engine.assign_ai()

        replies = await asyncio.gather(
            engine.orchestrator.process_incoming(_message("This is urgent, my payment failed!")),
            engine.orchestrator.process_incoming(_message("URGENT: payment failed again")),
        )

        assert sum(reply.escalated for reply in replies) == 1
        assert not any(reply.should_reply for reply in replies)
        assert len(engine.handoffs.records) == 1


# ── Stale Results ───────────────────────────────────────────────────────────


class TestStaleResults:
    async def test_reassigned_during_generation(self, engine) -> None:
        async def reassign_then_answer(*args, **kwargs) -> GenerationResult:
            await engine.workflow.reassign(CID, UID, "human-7")
            return GenerationResult(text="Your order ships tomorrow.", confidence=0.9, provider="groq")

        generator = MagicMock()
        generator.generate = AsyncMock(side_effect=reassign_then_answer)
        orchestrator = _orchestrator_with(engine, generator)
        await engine.assign_ai()

        result = await orchestrator.handle_message(_message("When will my order arrive?"))

        assert result.reply.discarded is True
        assert result.reply.should_reply is False
        assert engine.sender.sent == []

    async def test_reassigned_before_send(self, engine) -> None:
        await engine.assign_ai()
        message = _message("When will my order arrive?")
        reply = await engine.orchestrator.process_incoming(message)

        await engine.workflow.reassign(CID, UID, "human-7")
        dispatch = await engine.orchestrator.send_auto_reply(message, reply)

        assert dispatch.discarded is True
        assert dispatch.sent is False
        assert engine.sender.sent == []

    async def test_lost_disable_race_discards(self, engine) -> None:
        await engine.assign_ai()
        engine.assignments.disable_auto_response = AsyncMock(return_value=False)

        reply = await engine.orchestrator.process_incoming(
            _message("This is urgent, my payment failed!")
        )

        assert reply.discarded is True
        assert reply.escalated is False
        assert engine.handoffs.records == {}


# ── Dispatch Failures ───────────────────────────────────────────────────────


class TestDispatchFailure:
    async def test_gateway_refusal(self, engine) -> None:
        await engine.assign_ai()
        engine.sender.result = SendResult(success=False, error="rate limited")

        with pytest.raises(DispatchFailure) as exc_info:
            await engine.orchestrator.handle_message(_message("When will my order arrive?"))

        assert exc_info.value.error == "rate limited"
        assert exc_info.value.platform == "whatsapp"

    async def test_gateway_exception(self, engine) -> None:
        await engine.assign_ai()
        engine.sender.error = ConnectionError("gateway unreachable")

        with pytest.raises(DispatchFailure):
            await engine.orchestrator.handle_message(_message("When will my order arrive?"))

        assert all(m.direction == MessageDirection.INBOUND for m in engine.conversations.messages)


def _fail_first_handoff_write(engine) -> None:
    create = engine.handoffs.create
    attempts = 0

    async def flaky_create(record):
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise ConnectionError("database unavailable")
        return await create(record)

    engine.handoffs.create = flaky_create


# ── Recovery ────────────────────────────────────────────────────────────────


class TestEscalationRecovery:
    """A failed handoff write must not leave the conversation unowned."""

    async def test_failed_handoff_write_keeps_conversation_retryable(self, engine) -> None:
        assignment = await engine.assign_ai()
        _fail_first_handoff_write(engine)

        with pytest.raises(ConnectionError):
            await engine.orchestrator.process_incoming(_message("This is urgent, my payment failed!"))

        assert engine.handoffs.records == {}
        assert engine.conversations.states[CID].stage != ConversationStage.ESCALATED
        stored = engine.assignments.assignments[assignment.assignment_id]
        assert stored.auto_response_enabled is False
        assert stored.status == AssignmentStatus.ACTIVE

    async def test_next_message_resumes_escalation(self, engine) -> None:
        assignment = await engine.assign_ai()
        _fail_first_handoff_write(engine)
        with pytest.raises(ConnectionError):
            await engine.orchestrator.process_incoming(_message("This is urgent, my payment failed!"))

        generations = len(engine.llm.calls)
        follow_up = await engine.orchestrator.process_incoming(_message("Hello??"))
        await engine.workflow.wait_for_notifications()

        assert follow_up.escalated is True
        assert follow_up.escalation_reason == "ESCALATION_KEYWORD"
        [handoff] = engine.handoffs.records.values()
        assert follow_up.handoff_id == handoff.handoff_id
        assert handoff.from_agent_id == "agent-ai-1"
        assert engine.conversations.states[CID].stage == ConversationStage.ESCALATED
        assert engine.assignments.assignments[assignment.assignment_id].status == AssignmentStatus.DISABLED
        assert len(engine.notifier.notified) == 1
        assert len(engine.llm.calls) == generations


# ── Redelivery ──────────────────────────────────────────────────────────────


class TestRedelivery:
    """The channel adapter retries a message whose reply failed to send."""

    QUESTIONS = (
        "When will my order arrive?",
        "Do you ship to Canada?",
        "Can I change my delivery address?",
    )

    async def test_retry_after_failed_send_is_tracked_once(self, engine) -> None:
        await engine.assign_ai()
        for question in self.QUESTIONS[:2]:
            await engine.orchestrator.handle_message(_message(question))

        engine.sender.result = SendResult(success=False, error="gateway busy")
        with pytest.raises(DispatchFailure):
            await engine.orchestrator.handle_message(_message(self.QUESTIONS[2]))

        engine.sender.result = SendResult(success=True, message_id="gw-msg-2")
        retried = await engine.orchestrator.handle_message(_message(self.QUESTIONS[2]))

        assert retried.dispatch.sent is True
        state = engine.conversations.states[CID]
        assert state.response_count == 3
        assert state.is_stuck is False
        assert "conversation_stuck" not in state.escalation_flags
        inbound = [m.content for m in engine.conversations.messages if m.direction == MessageDirection.INBOUND]
        assert inbound == list(self.QUESTIONS)

    async def test_repeat_after_a_reply_is_tracked(self, engine) -> None:
        await engine.assign_ai()

        await engine.orchestrator.handle_message(_message("When will my order arrive?"))
        await engine.orchestrator.handle_message(_message("When will my order arrive?"))

        assert engine.conversations.states[CID].response_count == 2

    async def test_identical_message_outside_window_is_tracked(self, engine) -> None:
        await engine.assign_ai()
        orchestrator = _orchestrator_with(engine, engine.generator, redelivery_window=0.0)
        engine.sender.result = SendResult(success=False, error="gateway busy")
        message = _message("When will my order arrive?")

        with pytest.raises(DispatchFailure):
            await orchestrator.handle_message(message)
        later = message.model_copy(update={"received_at": message.received_at + timedelta(minutes=1)})
        with pytest.raises(DispatchFailure):
            await orchestrator.handle_message(later)

        assert engine.conversations.states[CID].response_count == 2
