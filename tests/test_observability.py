"""Unit tests for observability: Langfuse callbacks and Prometheus metrics.

Tests cover:
- init_langfuse with and without configured keys, and idempotence
- track_llm_call success/error labelling and token counting
- Fallback and escalation counters incremented by the engine
"""

from __future__ import annotations

import litellm
import pytest
from prometheus_client import REGISTRY

from src.relay.config import Settings
from src.relay.core.monitoring import track_llm_call
from src.relay.llm.schemas import Tier
from src.relay.observability.tracer import init_langfuse


def _make_settings(**overrides) -> Settings:
    defaults = {
        "LANGFUSE_PUBLIC_KEY": "",
        "LANGFUSE_SECRET_KEY": "",
        "LANGFUSE_HOST": "https://cloud.langfuse.com",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def clean_callbacks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(litellm, "success_callback", [])
    monkeypatch.setattr(litellm, "failure_callback", [])
    for key in ("LANGFUSE_PUBLIC_KEY", "LANGFUSE_SECRET_KEY", "LANGFUSE_HOST"):
        monkeypatch.setenv(key, "")


# ── init_langfuse ────────────────────────────────────────────────────────────


class TestInitLangfuse:
    """Tests for the init_langfuse function."""

    def test_with_keys(self, clean_callbacks: None) -> None:
        settings = _make_settings(LANGFUSE_PUBLIC_KEY="pk-test-123", LANGFUSE_SECRET_KEY="sk-test-456")

        assert init_langfuse(settings) is True
        assert "langfuse" in litellm.success_callback
        assert "langfuse" in litellm.failure_callback

    def test_without_keys(self, clean_callbacks: None) -> None:
        assert init_langfuse(_make_settings()) is False
        assert litellm.success_callback == []

    def test_idempotent(self, clean_callbacks: None) -> None:
        settings = _make_settings(LANGFUSE_PUBLIC_KEY="pk-test", LANGFUSE_SECRET_KEY="sk-test")

        init_langfuse(settings)
        init_langfuse(settings)

        assert litellm.success_callback.count("langfuse") == 1
        assert litellm.failure_callback.count("langfuse") == 1


# ── Metrics ──────────────────────────────────────────────────────────────────


class TestLLMMetrics:
    async def test_success_counts_tokens(self) -> None:
        labels = {"provider": "metrics-test", "model": "m-1"}
        before_tokens = _sample("relay_llm_tokens_used_total", labels)

        async with track_llm_call("metrics-test", "m-1") as tracker:
            tracker["tokens"] = 30

        assert _sample("relay_llm_requests_total", {**labels, "status": "success"}) >= 1
        assert _sample("relay_llm_tokens_used_total", labels) == before_tokens + 30

    async def test_error_is_labelled_and_reraised(self) -> None:
        labels = {"provider": "metrics-test", "model": "m-2", "status": "error"}
        before = _sample("relay_llm_requests_total", labels)

        with pytest.raises(RuntimeError):
            async with track_llm_call("metrics-test", "m-2"):
                raise RuntimeError("backend down")

        assert _sample("relay_llm_requests_total", labels) == before + 1


class TestEngineCounters:
    async def test_fallback_counter(self, engine) -> None:
        labels = {"from_provider": "groq", "to_provider": "openai"}
        before = _sample("relay_llm_fallbacks_total", labels)
        engine.llm.replies["groq"] = RuntimeError("down")

        await engine.router.generate("system", "hello", Tier.FREE)

        assert _sample("relay_llm_fallbacks_total", labels) == before + 1

    async def test_escalation_counter(self, engine) -> None:
        labels = {"reason": "NO_CONTEXT"}
        before = _sample("relay_escalations_total", labels)
        await engine.assign_ai()

        await engine.workflow.initiate("conv-1", "acct-1", "agent-ai-1", "NO_CONTEXT")

        assert _sample("relay_escalations_total", labels) == before + 1
