"""Provider configuration and invocation result types for the LLM router."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from src.relay.config import Settings


class Tier(str, Enum):
    """Subscription tier of the account that owns an agent."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


PAID_TIERS = frozenset({Tier.PRO, Tier.ENTERPRISE})


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token) for backends that omit usage."""
    return math.ceil(len(text) / 4)


class ProviderSpec(BaseModel):
    """One configured language-model backend.

    ``cost_weight`` is relative spend (lower is cheaper); ``reliability_weight``
    is relative answer quality and uptime (higher is better). Free tier picks
    the cheapest eligible backend, paid tiers the most reliable one.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    model: str
    api_key: str = Field(default="", repr=False)
    cost_weight: float = 1.0
    reliability_weight: float = 1.0
    tiers: frozenset[Tier] = frozenset(Tier)
    confidence_baseline: float = Field(default=0.8, ge=0.1, le=1.0)
    max_tokens: int = 1000
    temperature: float = 0.7

    def eligible_for(self, tier: Tier) -> bool:
        return tier in self.tiers


class RouterConfig(BaseModel):
    """Ordered provider list plus invocation policy, injected into the router."""

    model_config = ConfigDict(frozen=True)

    providers: tuple[ProviderSpec, ...] = ()
    invoke_timeout: float = 10.0
    fallback_enabled: bool = True

    def get(self, name: str) -> ProviderSpec | None:
        for spec in self.providers:
            if spec.name == name:
                return spec
        return None

    @classmethod
    def from_settings(cls, settings: Settings) -> RouterConfig:
        """Build the provider list from whichever API keys are configured.

        Order matters: it is the fallback order. Groq is the cost-optimized
        default for free accounts; OpenAI and Anthropic serve paid tiers.
        """
        providers: list[ProviderSpec] = []

        if settings.GROQ_API_KEY:
            providers.append(
                ProviderSpec(
                    name="groq",
                    model=settings.GROQ_MODEL,
                    api_key=settings.GROQ_API_KEY,
                    cost_weight=0.1,
                    reliability_weight=0.7,
                    confidence_baseline=0.85,
                    max_tokens=settings.LLM_MAX_TOKENS,
                    temperature=settings.LLM_TEMPERATURE,
                )
            )

        if settings.OPENAI_API_KEY:
            providers.append(
                ProviderSpec(
                    name="openai",
                    model=settings.OPENAI_MODEL,
                    api_key=settings.OPENAI_API_KEY,
                    cost_weight=1.0,
                    reliability_weight=0.95,
                    confidence_baseline=0.9,
                    max_tokens=settings.LLM_MAX_TOKENS,
                    temperature=settings.LLM_TEMPERATURE,
                )
            )

        if settings.ANTHROPIC_API_KEY:
            providers.append(
                ProviderSpec(
                    name="anthropic",
                    model=settings.ANTHROPIC_MODEL,
                    api_key=settings.ANTHROPIC_API_KEY,
                    cost_weight=1.2,
                    reliability_weight=0.9,
                    tiers=PAID_TIERS,
                    confidence_baseline=0.9,
                    max_tokens=settings.LLM_MAX_TOKENS,
                    temperature=settings.LLM_TEMPERATURE,
                )
            )

        return cls(
            providers=tuple(providers),
            invoke_timeout=settings.LLM_TIMEOUT,
            fallback_enabled=settings.LLM_FALLBACK_ENABLED,
        )


class LLMResult(BaseModel):
    """Raw output of a single backend call."""

    text: str
    tokens: int = 0
    latency_ms: int = 0


class InvocationResult(LLMResult):
    """Router output: the backend result plus which providers were tried."""

    provider: str
    model: str
    attempted: list[str] = Field(default_factory=list)

    @property
    def fell_back(self) -> bool:
        return len(self.attempted) > 1


class ProviderHealth(BaseModel):
    provider: str
    healthy: bool
    latency_ms: int = 0
    error: str | None = None


class HealthReport(BaseModel):
    """Result of probing every configured provider."""

    providers: list[ProviderHealth] = Field(default_factory=list)
    recommended: str | None = None
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
