"""System prompt composition for automated agent replies.

Prompts are assembled from the agent's personality, its retrieved knowledge
snippets, the recent conversation, and whatever the channel adapter knows
about the customer.

Exports:
    RESPONSE_GUIDELINES: Fixed behavioural rules appended to every prompt.
    build_personality_prompt: Personality + capabilities section.
    format_contexts: Numbered knowledge blocks with source labels.
    format_history: Recent messages as ``ROLE: content`` lines.
    build_system_prompt: Full system prompt for one generation.
"""

from __future__ import annotations

from collections.abc import Sequence

from src.knowledge.models import KnowledgeContext
from src.relay.conversations.schemas import (
    ConversationMessage,
    CustomerInfo,
    MessageDirection,
)
from src.relay.generation.schemas import AgentConfig

RESPONSE_GUIDELINES = """\
Guidelines:
- Answer only from the provided context and conversation. If the context does \
not cover the question, say so plainly instead of guessing.
- Keep replies short enough for a chat message.
- Never invent prices, policies, order details, or commitments.
- If the customer asks for a person, tell them you are connecting them with \
the team."""


def build_personality_prompt(agent: AgentConfig) -> str:
    """Describe who the agent is and how it should sound."""
    personality = agent.personality
    lines = [
        f"You are {agent.name}, a customer support assistant.",
        "",
        "Personality:",
        f"- Tone: {personality.tone}",
        f"- Style: {personality.style}",
        f"- Empathy level: {personality.empathy_level}/10",
        f"- Formality level: {personality.formality_level}/10",
    ]
    if agent.capabilities:
        lines.append("")
        lines.append("You can help with: " + ", ".join(agent.capabilities))
    if agent.system_prompt:
        lines.append("")
        lines.append(agent.system_prompt.strip())
    return "\n".join(lines)


def format_contexts(contexts: Sequence[KnowledgeContext]) -> str:
    if not contexts:
        return "No relevant knowledge was found for this question."
    blocks = [
        f"Context {index} (Source: {ctx.source}):\n{ctx.content.strip()}"
        for index, ctx in enumerate(contexts, start=1)
    ]
    return "\n\n".join(blocks)


def format_history(history: Sequence[ConversationMessage], limit: int = 5) -> str:
    """Render the last ``limit`` messages, oldest first."""
    recent = list(history)[-limit:] if limit > 0 else []
    lines = []
    for message in recent:
        role = "CUSTOMER" if message.direction == MessageDirection.INBOUND else "AGENT"
        lines.append(f"{role}: {message.content}")
    return "\n".join(lines)


def _format_customer(customer: CustomerInfo) -> str:
    parts = []
    if customer.name:
        parts.append(f"Name: {customer.name}")
    if customer.previous_interactions is not None:
        parts.append(f"Previous interactions: {customer.previous_interactions}")
    return "\n".join(parts)


def build_system_prompt(
    agent: AgentConfig,
    contexts: Sequence[KnowledgeContext],
    history: Sequence[ConversationMessage] = (),
    customer: CustomerInfo | None = None,
    history_lines: int = 5,
) -> str:
    """Compose the system prompt for one generation.

    Args:
        agent: The answering agent's configuration.
        contexts: Retrieved knowledge snippets, best first.
        history: Recent conversation messages, chronological.
        customer: Optional customer details from the channel adapter.
        history_lines: How many trailing history messages to include.

    Returns:
        The complete system prompt text.
    """
    sections = [
        build_personality_prompt(agent),
        "Knowledge:\n" + format_contexts(contexts),
    ]

    rendered_history = format_history(history, history_lines)
    if rendered_history:
        sections.append("Recent conversation:\n" + rendered_history)

    if customer is not None:
        rendered_customer = _format_customer(customer)
        if rendered_customer:
            sections.append("Customer:\n" + rendered_customer)

    sections.append(RESPONSE_GUIDELINES)
    return "\n\n".join(sections)
