"""Tests for retrieval, prompt composition, and ResponseGenerator.

Covers:
- Retriever floor, ranking, k cap, and failure mapping
- System prompt sections (personality, numbered contexts, history window)
- Confidence heuristics and clamping
- Escalation rule order and the keyword override
- Short-circuit for agents without knowledge sources
- Per-agent threshold and provider preference
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.knowledge.models import KnowledgeContext
from src.relay.conversations.schemas import ConversationMessage, CustomerInfo, MessageDirection
from src.relay.errors import KnowledgeUnavailable, ProviderFailure
from src.relay.generation.generator import compute_confidence, evaluate_escalation, suggest_actions
from src.relay.generation.prompts import build_system_prompt
from src.relay.generation.retriever import KnowledgeRetriever
from src.relay.generation.schemas import AgentConfig, EscalationReason, GenerationConfig

CONFIG = GenerationConfig()


def _ctx(similarity: float, source: str = "Shipping FAQ") -> KnowledgeContext:
    return KnowledgeContext(content=f"snippet {similarity}", source=source, similarity=similarity)


# ── Retriever ───────────────────────────────────────────────────────────────


class TestKnowledgeRetriever:
    async def test_filters_sorts_and_caps(self) -> None:
        search = MagicMock()
        search.search = AsyncMock(return_value=[_ctx(0.72), _ctx(0.5), _ctx(0.95), _ctx(0.8)])
        retriever = KnowledgeRetriever(search)

        contexts = await retriever.retrieve("q", "agent-1", "acct-1", k=2, similarity_floor=0.7)

        assert [ctx.similarity for ctx in contexts] == [0.95, 0.8]

    async def test_search_error_is_unavailable(self) -> None:
        search = MagicMock()
        search.search = AsyncMock(side_effect=ConnectionError("qdrant down"))

        with pytest.raises(KnowledgeUnavailable) as exc_info:
            await KnowledgeRetriever(search).retrieve("q", "agent-1", "acct-1")

        assert exc_info.value.cause == "qdrant down"

    async def test_timeout_is_unavailable(self) -> None:
        async def slow(*args, **kwargs):
            await asyncio.sleep(1.0)
            return []

        search = MagicMock()
        search.search = AsyncMock(side_effect=slow)

        with pytest.raises(KnowledgeUnavailable):
            await KnowledgeRetriever(search, timeout=0.05).retrieve("q", "agent-1", "acct-1")


# ── Prompt ──────────────────────────────────────────────────────────────────


class TestSystemPrompt:
    def test_includes_personality_contexts_and_customer(self, support_agent: AgentConfig) -> None:
        prompt = build_system_prompt(
            support_agent,
            [_ctx(0.9), _ctx(0.8, source="Returns Policy")],
            customer=CustomerInfo(name="Dana", previous_interactions=2),
        )

        assert "Ava" in prompt
        assert "Empathy level: 7/10" in prompt
        assert "Context 1 (Source: Shipping FAQ)" in prompt
        assert "Context 2 (Source: Returns Policy)" in prompt
        assert "Name: Dana" in prompt

    def test_history_window(self, support_agent: AgentConfig) -> None:
        history = [
            ConversationMessage(
                conversation_id="conv-1",
                user_id="acct-1",
                direction=MessageDirection.INBOUND if i % 2 == 0 else MessageDirection.OUTBOUND,
                content=f"message {i}",
            )
            for i in range(8)
        ]

        prompt = build_system_prompt(support_agent, [], history, history_lines=5)

        assert "message 2" not in prompt
        assert "CUSTOMER: message 4" in prompt
        assert "AGENT: message 7" in prompt
        assert "No relevant knowledge was found" in prompt


# ── Scoring Rules ───────────────────────────────────────────────────────────


class TestConfidence:
    def test_context_reference_bonus(self) -> None:
        text = "Based on the context, orders ship in two days."
        assert compute_confidence(text, 0.85, CONFIG) == pytest.approx(0.95)

    def test_short_and_hedging_penalties(self) -> None:
        assert compute_confidence("I'm not sure.", 0.85, CONFIG) == pytest.approx(0.55)

    def test_clamped_to_bounds(self) -> None:
        assert compute_confidence("unclear", 0.1, CONFIG) == 0.1
        assert compute_confidence("According to our policy you are covered.", 1.0, CONFIG) == 1.0


class TestEvaluateEscalation:
    def test_clean_reply(self) -> None:
        reasons = evaluate_escalation(
            "When will my order arrive?", "Soon, within two days.", 0.9, [_ctx(0.9)], 0.7, CONFIG
        )
        assert reasons == []

    def test_rule_order(self) -> None:
        reasons = evaluate_escalation(
            "I want a refund", "I don't know", 0.5, [], 0.7, CONFIG
        )
        assert reasons == [
            EscalationReason.LOW_CONFIDENCE,
            EscalationReason.NO_CONTEXT,
            EscalationReason.ESCALATION_KEYWORD,
            EscalationReason.UNCERTAIN_RESPONSE,
        ]

    def test_low_average_similarity(self) -> None:
        reasons = evaluate_escalation("q", "fine answer here", 0.9, [_ctx(0.9), _ctx(0.4)], 0.7, CONFIG)
        assert reasons == [EscalationReason.LOW_CONTEXT_SIMILARITY]

    def test_keyword_overrides_high_confidence(self) -> None:
        reasons = evaluate_escalation(
            "This is URGENT", "Here you go, all sorted.", 1.0, [_ctx(0.95)], 0.7, CONFIG
        )
        assert reasons == [EscalationReason.ESCALATION_KEYWORD]


class TestSuggestActions:
    def test_pricing_question(self) -> None:
        actions = suggest_actions("How much does the pro plan cost?", [_ctx(0.9)])
        assert actions == ["View step-by-step guide", "See pricing details", "Contact sales"]

    def test_context_sources(self) -> None:
        actions = suggest_actions("Where is my parcel", [_ctx(0.9), _ctx(0.8)])
        assert actions == ["Read full Shipping FAQ", "View related documents"]

    def test_defaults(self) -> None:
        assert suggest_actions("ok", []) == ["Ask a follow-up question", "Talk to our team"]


# ── Generator ───────────────────────────────────────────────────────────────


class TestResponseGenerator:
    async def test_grounded_reply(self, engine, support_agent: AgentConfig) -> None:
        result = await engine.generator.generate("When will my order arrive?", support_agent)

        assert result.should_escalate is False
        assert result.provider == "groq"
        assert result.confidence == pytest.approx(0.95)
        assert len(result.contexts) == 2
        assert result.tokens == 42
        assert "Read full Shipping FAQ" in result.suggested_actions
        assert engine.knowledge.calls == [("When will my order arrive?", "agent-ai-1", "acct-1")]

    async def test_untrained_agent_short_circuits(self, engine, support_agent: AgentConfig) -> None:
        agent = support_agent.model_copy(update={"knowledge_sources": []})

        result = await engine.generator.generate("When will my order arrive?", agent)

        assert result.escalation_reason == EscalationReason.AGENT_NEEDS_TRAINING
        assert result.confidence == 0.1
        assert engine.llm.calls == []
        assert engine.knowledge.calls == []

    async def test_keyword_escalates_confident_reply(self, engine, support_agent: AgentConfig) -> None:
        result = await engine.generator.generate("This is urgent, my payment failed!", support_agent)

        assert result.confidence >= 0.7
        assert result.escalation_reason == EscalationReason.ESCALATION_KEYWORD
        assert result.text

    async def test_no_context(self, engine, support_agent: AgentConfig) -> None:
        engine.knowledge.contexts = []

        result = await engine.generator.generate("When will my order arrive?", support_agent)

        assert result.escalation_reason == EscalationReason.NO_CONTEXT

    async def test_knowledge_outage_treated_as_no_context(
        self, engine, support_agent: AgentConfig
    ) -> None:
        engine.knowledge.search = AsyncMock(side_effect=ConnectionError("qdrant down"))

        result = await engine.generator.generate("When will my order arrive?", support_agent)

        assert result.escalation_reason == EscalationReason.NO_CONTEXT
        assert engine.llm.calls == ["groq"]

    async def test_uncertain_reply(self, engine, support_agent: AgentConfig) -> None:
        engine.llm.default = "I'm not sure about that one, let me find out more."

        result = await engine.generator.generate("When will my order arrive?", support_agent)

        assert result.confidence == pytest.approx(0.75)
        assert result.escalation.reasons == [EscalationReason.UNCERTAIN_RESPONSE]

    async def test_short_reply_is_low_confidence(self, engine, support_agent: AgentConfig) -> None:
        engine.llm.default = "OK"

        result = await engine.generator.generate("When will my order arrive?", support_agent)

        assert result.escalation_reason == EscalationReason.LOW_CONFIDENCE

    async def test_agent_threshold_override(self, engine, support_agent: AgentConfig) -> None:
        agent = support_agent.model_copy(update={"escalation_threshold": 0.99})

        result = await engine.generator.generate("When will my order arrive?", agent)

        assert result.escalation_reason == EscalationReason.LOW_CONFIDENCE

    async def test_preferred_provider(self, engine, support_agent: AgentConfig) -> None:
        agent = support_agent.model_copy(update={"preferred_provider": "openai"})

        result = await engine.generator.generate("When will my order arrive?", agent)

        assert result.provider == "openai"
        assert result.confidence == pytest.approx(1.0)

    async def test_provider_failure_propagates(self, engine, support_agent: AgentConfig) -> None:
        engine.llm.replies.update(groq=RuntimeError("down"), openai=RuntimeError("down"))

        with pytest.raises(ProviderFailure):
            await engine.generator.generate("When will my order arrive?", support_agent)
