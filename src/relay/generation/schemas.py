"""Agent configuration, generation policy, and generation result types."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from src.knowledge.models import KnowledgeContext
from src.relay.llm.schemas import Tier

if TYPE_CHECKING:
    from src.relay.config import Settings


class EscalationReason(str, Enum):
    """Why a message must go to a human instead of an automated reply."""

    AGENT_NEEDS_TRAINING = "AGENT_NEEDS_TRAINING"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    NO_CONTEXT = "NO_CONTEXT"
    LOW_CONTEXT_SIMILARITY = "LOW_CONTEXT_SIMILARITY"
    ESCALATION_KEYWORD = "ESCALATION_KEYWORD"
    UNCERTAIN_RESPONSE = "UNCERTAIN_RESPONSE"
    PROVIDER_FAILURE = "PROVIDER_FAILURE"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    CUSTOMER_REQUEST = "CUSTOMER_REQUEST"


# ── Agent Configuration ─────────────────────────────────────────────────────


class Personality(BaseModel):
    tone: str = "friendly"
    style: str = "professional"
    empathy_level: int = Field(default=7, ge=1, le=10)
    formality_level: int = Field(default=5, ge=1, le=10)


class AgentConfig(BaseModel):
    """Everything the generator needs to answer as a given agent.

    ``escalation_threshold`` and ``preferred_provider`` override the
    deployment-wide defaults for this agent only.
    """

    agent_id: str
    user_id: str
    name: str
    personality: Personality = Field(default_factory=Personality)
    system_prompt: str | None = None
    capabilities: list[str] = Field(default_factory=list)
    knowledge_sources: list[str] = Field(default_factory=list)
    tier: Tier = Tier.FREE
    preferred_provider: str | None = None
    escalation_threshold: float | None = Field(default=None, ge=0.0, le=1.0)


# ── Generation Policy ───────────────────────────────────────────────────────


class GenerationConfig(BaseModel):
    """Thresholds and phrase lists, injected into the generator at construction."""

    model_config = ConfigDict(frozen=True)

    confidence_threshold: float = 0.7
    top_k: int = 5
    similarity_floor: float = 0.7
    short_response_chars: int = 20
    short_response_penalty: float = 0.2
    hedging_penalty: float = 0.1
    context_reference_bonus: float = 0.1
    default_confidence_baseline: float = 0.8
    history_lines: int = 5
    escalation_keywords: tuple[str, ...] = (
        "urgent",
        "emergency",
        "complaint",
        "frustrated",
        "angry",
        "refund",
        "cancel",
        "manager",
        "supervisor",
        "lawyer",
    )
    uncertainty_phrases: tuple[str, ...] = (
        "i don't know",
        "i'm not sure",
        "unable to help",
        "cannot assist",
        "i can't help",
    )
    hedging_phrases: tuple[str, ...] = (
        "i don't know",
        "unclear",
        "i'm not sure",
    )
    context_reference_phrases: tuple[str, ...] = (
        "based on the context",
        "according to",
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> GenerationConfig:
        return cls(
            confidence_threshold=settings.CONFIDENCE_THRESHOLD,
            top_k=settings.KNOWLEDGE_TOP_K,
            similarity_floor=settings.SIMILARITY_FLOOR,
        )


# ── Results ─────────────────────────────────────────────────────────────────


class EscalationSignal(BaseModel):
    """A valid terminal outcome of generation: hand this message to a human.

    Not an error. ``reason`` is the first matching rule; ``reasons`` lists
    every rule that matched, in evaluation order.
    """

    reason: EscalationReason
    reasons: list[EscalationReason] = Field(default_factory=list)
    detail: str = ""


class GenerationResult(BaseModel):
    """Candidate reply plus everything needed to judge and log it."""

    text: str = ""
    confidence: float = Field(ge=0.1, le=1.0)
    contexts: list[KnowledgeContext] = Field(default_factory=list)
    provider: str | None = None
    model: str | None = None
    tokens: int = 0
    latency_ms: int = 0
    escalation: EscalationSignal | None = None
    suggested_actions: list[str] = Field(default_factory=list)

    @property
    def should_escalate(self) -> bool:
        return self.escalation is not None

    @property
    def escalation_reason(self) -> EscalationReason | None:
        return self.escalation.reason if self.escalation else None
