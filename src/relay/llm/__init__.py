"""Language-model provider routing.

Exports:
    ProviderRouter: Tier-based provider selection with a single fallback hop.
    LiteLLMClient: One backend call through LiteLLM with prompt sanitization.
    RouterConfig: Immutable provider list injected into the router.
    ProviderSpec: One configured backend.
    Tier: Subscription tier driving default selection.
"""

from __future__ import annotations

from src.relay.llm.schemas import ProviderSpec, RouterConfig, Tier

__all__ = [
    "LiteLLMClient",
    "ProviderRouter",
    "ProviderSpec",
    "RouterConfig",
    "Tier",
]


def __getattr__(name: str):  # noqa: N807
    if name == "ProviderRouter":
        from src.relay.llm.router import ProviderRouter
        return ProviderRouter
    if name == "LiteLLMClient":
        from src.relay.llm.client import LiteLLMClient
        return LiteLLMClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
