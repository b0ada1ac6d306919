"""Tier-aware selection and bounded fallback across language-model backends.

The router owns the only retry policy for generation: a failed primary gets
exactly one hop to the next eligible provider, after which ProviderFailure
surfaces to the caller. Health probes bias selection toward reachable
backends but are never required for correctness.

Exports:
    ProviderRouter: select / invoke / generate / health_check.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from src.relay.core.monitoring import llm_fallbacks_total
from src.relay.errors import ConfigurationError, ProviderFailure
from src.relay.llm.schemas import (
    HealthReport,
    InvocationResult,
    LLMResult,
    ProviderHealth,
    ProviderSpec,
    RouterConfig,
    Tier,
)

logger = structlog.get_logger(__name__)


class LLMClient(Protocol):
    async def invoke(
        self,
        provider: ProviderSpec,
        system_prompt: str,
        user_message: str,
        timeout: float,
    ) -> LLMResult: ...


class ProviderRouter:
    """Picks and invokes a provider from an injected RouterConfig.

    Args:
        config: Ordered provider list and invocation policy.
        client: LLM collaborator performing the actual backend call.
    """

    HEALTH_SYSTEM_PROMPT = "You are a connectivity probe."
    HEALTH_MESSAGE = 'Respond with "OK" if you can read this.'

    def __init__(self, config: RouterConfig, client: LLMClient) -> None:
        self._config = config
        self._client = client
        self._health: dict[str, bool] = {}

    @property
    def config(self) -> RouterConfig:
        return self._config

    def get_provider(self, name: str) -> ProviderSpec:
        spec = self._config.get(name)
        if spec is None:
            raise ConfigurationError(f"LLM provider '{name}' is not configured")
        return spec

    # ── Selection ────────────────────────────────────────────────────────

    def select(self, tier: Tier, preference: str | None = None) -> ProviderSpec:
        """Pick the provider for a call.

        An explicit, configured preference always wins. Otherwise the free
        tier gets the cheapest eligible backend and paid tiers the most
        reliable one; backends known to be unhealthy are skipped when a
        healthy alternative exists.

        Raises:
            ConfigurationError: If no provider is configured for the tier.
        """
        if preference:
            spec = self._config.get(preference)
            if spec is not None:
                return spec
            logger.warning("llm.preference_unavailable", preference=preference)

        candidates = self._eligible(tier)
        if not candidates:
            raise ConfigurationError(f"No LLM provider configured for tier '{tier.value}'")

        if tier == Tier.FREE:
            candidates.sort(key=lambda spec: spec.cost_weight)
        else:
            candidates.sort(key=lambda spec: spec.reliability_weight, reverse=True)
        return candidates[0]

    def fallback_for(self, primary: ProviderSpec, tier: Tier) -> ProviderSpec | None:
        """Next eligible provider after ``primary`` in configured order."""
        if not self._config.fallback_enabled:
            return None

        providers = list(self._config.providers)
        try:
            start = providers.index(primary)
        except ValueError:
            start = -1
        rotated = providers[start + 1:] + providers[:max(start, 0)]
        eligible = [
            spec for spec in rotated
            if spec.name != primary.name and spec.eligible_for(tier)
        ]
        healthy = [spec for spec in eligible if self._health.get(spec.name, True)]
        pool = healthy or eligible
        return pool[0] if pool else None

    def _eligible(self, tier: Tier) -> list[ProviderSpec]:
        eligible = [spec for spec in self._config.providers if spec.eligible_for(tier)]
        healthy = [spec for spec in eligible if self._health.get(spec.name, True)]
        return healthy or eligible

    # ── Invocation ───────────────────────────────────────────────────────

    async def invoke(
        self,
        provider: ProviderSpec,
        system_prompt: str,
        message: str,
        tier: Tier = Tier.FREE,
    ) -> InvocationResult:
        """Call ``provider``; on failure try one fallback, then give up.

        Raises:
            ProviderFailure: If the primary and (when available) the single
                fallback both failed.
        """
        attempted = [provider.name]
        try:
            result = await self._call(provider, system_prompt, message)
            return self._to_invocation(result, provider, attempted)
        except ProviderFailure as exc:
            primary_error = exc

        fallback = self.fallback_for(provider, tier)
        if fallback is None:
            logger.error(
                "llm.provider_failed_no_fallback",
                provider=provider.name,
                error=primary_error.cause,
            )
            raise ProviderFailure(attempted, primary_error.cause) from primary_error

        logger.warning(
            "llm.fallback",
            from_provider=provider.name,
            to_provider=fallback.name,
            error=primary_error.cause,
        )
        llm_fallbacks_total.labels(
            from_provider=provider.name, to_provider=fallback.name
        ).inc()
        attempted.append(fallback.name)

        try:
            result = await self._call(fallback, system_prompt, message)
        except ProviderFailure as exc:
            logger.error(
                "llm.all_providers_failed",
                attempted=attempted,
                error=exc.cause,
            )
            raise ProviderFailure(attempted, exc.cause) from exc

        return self._to_invocation(result, fallback, attempted)

    async def generate(
        self,
        system_prompt: str,
        message: str,
        tier: Tier = Tier.FREE,
        preference: str | None = None,
    ) -> InvocationResult:
        """Select a provider for ``tier`` and invoke it."""
        provider = self.select(tier, preference)
        return await self.invoke(provider, system_prompt, message, tier)

    async def _call(self, provider: ProviderSpec, system_prompt: str, message: str) -> LLMResult:
        timeout = self._config.invoke_timeout
        try:
            result = await asyncio.wait_for(
                self._client.invoke(provider, system_prompt, message, timeout),
                timeout=timeout,
            )
        except ProviderFailure:
            self._health[provider.name] = False
            raise
        except asyncio.TimeoutError as exc:
            self._health[provider.name] = False
            raise ProviderFailure([provider.name], f"timed out after {timeout}s") from exc
        except Exception as exc:
            self._health[provider.name] = False
            raise ProviderFailure([provider.name], str(exc) or type(exc).__name__) from exc
        self._health[provider.name] = True
        return result

    @staticmethod
    def _to_invocation(
        result: LLMResult, provider: ProviderSpec, attempted: list[str]
    ) -> InvocationResult:
        return InvocationResult(
            text=result.text,
            tokens=result.tokens,
            latency_ms=result.latency_ms,
            provider=provider.name,
            model=provider.model,
            attempted=list(attempted),
        )

    # ── Health ───────────────────────────────────────────────────────────

    async def health_check(self) -> HealthReport:
        """Probe every configured provider with a trivial prompt.

        Updates the health map used by ``select`` and recommends the
        cheapest reachable backend.
        """
        providers = list(self._config.providers)
        statuses = await asyncio.gather(*(self._probe(spec) for spec in providers))

        for status in statuses:
            self._health[status.provider] = status.healthy

        healthy = [spec for spec, status in zip(providers, statuses) if status.healthy]
        recommended = min(healthy, key=lambda spec: spec.cost_weight).name if healthy else None

        logger.info(
            "llm.health_checked",
            healthy=[spec.name for spec in healthy],
            recommended=recommended,
        )
        return HealthReport(providers=list(statuses), recommended=recommended)

    async def _probe(self, spec: ProviderSpec) -> ProviderHealth:
        try:
            result = await self._call(spec, self.HEALTH_SYSTEM_PROMPT, self.HEALTH_MESSAGE)
        except ProviderFailure as exc:
            return ProviderHealth(provider=spec.name, healthy=False, error=exc.cause)
        return ProviderHealth(provider=spec.name, healthy=True, latency_ms=result.latency_ms)
