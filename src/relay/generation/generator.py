"""Retrieval-grounded reply generation with confidence scoring.

``ResponseGenerator.generate`` runs retrieval, prompt composition, and one
router call, then scores the reply and decides whether it may be sent.
It never writes conversation state; the caller persists the result.

Exports:
    compute_confidence: Heuristic reliability score in [0.1, 1.0].
    evaluate_escalation: Ordered list of escalation rules that matched.
    suggest_actions: Up to three follow-up suggestions for the customer.
    ResponseGenerator: The generation pipeline.
"""

from __future__ import annotations

import time
from collections.abc import Sequence

import structlog

from src.knowledge.models import KnowledgeContext
from src.relay.conversations.schemas import ConversationMessage, CustomerInfo
from src.relay.errors import KnowledgeUnavailable
from src.relay.generation.prompts import build_system_prompt
from src.relay.generation.retriever import KnowledgeRetriever
from src.relay.generation.schemas import (
    AgentConfig,
    EscalationReason,
    EscalationSignal,
    GenerationConfig,
    GenerationResult,
)
from src.relay.llm.router import ProviderRouter
from src.relay.llm.schemas import Tier

logger = structlog.get_logger(__name__)

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0


def compute_confidence(text: str, baseline: float, config: GenerationConfig) -> float:
    """Score a reply from its provider baseline and lexical cues.

    Short replies and hedging lose confidence; explicit references to the
    supplied context gain some. The result is clamped to [0.1, 1.0].
    """
    confidence = baseline
    lowered = text.lower()

    if len(text.strip()) < config.short_response_chars:
        confidence -= config.short_response_penalty
    if any(phrase in lowered for phrase in config.hedging_phrases):
        confidence -= config.hedging_penalty
    if any(phrase in lowered for phrase in config.context_reference_phrases):
        confidence += config.context_reference_bonus

    return round(min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, confidence)), 4)


def evaluate_escalation(
    query: str,
    response: str,
    confidence: float,
    contexts: Sequence[KnowledgeContext],
    threshold: float,
    config: GenerationConfig,
) -> list[EscalationReason]:
    """Return every escalation rule that holds, in evaluation order.

    An empty list means the reply may be sent.
    """
    reasons: list[EscalationReason] = []

    if confidence < threshold:
        reasons.append(EscalationReason.LOW_CONFIDENCE)

    if not contexts:
        reasons.append(EscalationReason.NO_CONTEXT)
    else:
        average = sum(ctx.similarity for ctx in contexts) / len(contexts)
        if average < config.similarity_floor:
            reasons.append(EscalationReason.LOW_CONTEXT_SIMILARITY)

    query_lower = query.lower()
    if any(keyword in query_lower for keyword in config.escalation_keywords):
        reasons.append(EscalationReason.ESCALATION_KEYWORD)

    response_lower = response.lower()
    if any(phrase in response_lower for phrase in config.uncertainty_phrases):
        reasons.append(EscalationReason.UNCERTAIN_RESPONSE)

    return reasons


def suggest_actions(query: str, contexts: Sequence[KnowledgeContext]) -> list[str]:
    """Offer up to three next steps related to the customer's question."""
    lowered = query.lower()
    actions: list[str] = []

    if "how" in lowered:
        actions.append("View step-by-step guide")
    if "price" in lowered or "cost" in lowered:
        actions.append("See pricing details")
        actions.append("Contact sales")
    if "support" in lowered or "help" in lowered:
        actions.append("Browse support options")
    if contexts:
        actions.append(f"Read full {contexts[0].source}")
        if len(contexts) > 1:
            actions.append("View related documents")
    if not actions:
        actions = ["Ask a follow-up question", "Talk to our team"]

    return actions[:3]


class ResponseGenerator:
    """Retrieval + generation pipeline for one customer message.

    Args:
        retriever: Knowledge retriever for the agent's snippets.
        router: Provider router used for the single generation call.
        config: Thresholds and phrase lists.
    """

    def __init__(
        self,
        retriever: KnowledgeRetriever,
        router: ProviderRouter,
        config: GenerationConfig,
    ) -> None:
        self._retriever = retriever
        self._router = router
        self._config = config

    async def generate(
        self,
        query: str,
        agent: AgentConfig,
        tier: Tier | None = None,
        *,
        history: Sequence[ConversationMessage] = (),
        customer: CustomerInfo | None = None,
    ) -> GenerationResult:
        """Produce a candidate reply and its escalation verdict.

        Args:
            query: The customer's message.
            agent: Configuration of the answering agent.
            tier: Subscription tier; defaults to the agent's own tier.
            history: Recent conversation messages, chronological.
            customer: Optional customer details.

        Returns:
            GenerationResult. ``escalation`` is set when a human must answer.

        Raises:
            ProviderFailure: If the router's primary and fallback both failed.
            ConfigurationError: If no provider is configured for the tier.
        """
        log = logger.bind(agent_id=agent.agent_id, user_id=agent.user_id)
        started = time.perf_counter()

        if not agent.knowledge_sources:
            log.info("generation.agent_needs_training")
            return GenerationResult(
                confidence=MIN_CONFIDENCE,
                latency_ms=int((time.perf_counter() - started) * 1000),
                escalation=EscalationSignal(
                    reason=EscalationReason.AGENT_NEEDS_TRAINING,
                    reasons=[EscalationReason.AGENT_NEEDS_TRAINING],
                    detail="Agent has no knowledge sources configured",
                ),
            )

        try:
            contexts = await self._retriever.retrieve(
                query,
                agent.agent_id,
                agent.user_id,
                k=self._config.top_k,
                similarity_floor=self._config.similarity_floor,
            )
        except KnowledgeUnavailable as exc:
            log.warning("generation.knowledge_unavailable", error=exc.cause)
            contexts = []

        system_prompt = build_system_prompt(
            agent,
            contexts,
            history,
            customer,
            history_lines=self._config.history_lines,
        )

        invocation = await self._router.generate(
            system_prompt,
            query,
            tier=tier or agent.tier,
            preference=agent.preferred_provider,
        )

        spec = self._router.config.get(invocation.provider)
        baseline = spec.confidence_baseline if spec else self._config.default_confidence_baseline
        confidence = compute_confidence(invocation.text, baseline, self._config)

        threshold = (
            agent.escalation_threshold
            if agent.escalation_threshold is not None
            else self._config.confidence_threshold
        )
        reasons = evaluate_escalation(
            query, invocation.text, confidence, contexts, threshold, self._config
        )
        escalation = (
            EscalationSignal(reason=reasons[0], reasons=reasons) if reasons else None
        )

        log.info(
            "generation.completed",
            provider=invocation.provider,
            attempted=invocation.attempted,
            confidence=confidence,
            contexts=len(contexts),
            escalate=[reason.value for reason in reasons],
        )

        return GenerationResult(
            text=invocation.text,
            confidence=confidence,
            contexts=contexts,
            provider=invocation.provider,
            model=invocation.model,
            tokens=invocation.tokens,
            latency_ms=int((time.perf_counter() - started) * 1000),
            escalation=escalation,
            suggested_actions=suggest_actions(query, contexts),
        )
