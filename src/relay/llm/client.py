"""LiteLLM-backed invocation of a single language-model backend.

Provides:
- detect_prompt_injection / sanitize_messages: heuristic guard applied to
  customer-authored content before it reaches a provider
- LiteLLMClient: the LLM collaborator used by the provider router; one call
  to one backend with a hard timeout, no retries (the router owns fallback)
"""

from __future__ import annotations

import asyncio
import re
import time

import litellm
import structlog

from src.relay.core.monitoring import track_llm_call
from src.relay.errors import ProviderFailure
from src.relay.llm.schemas import LLMResult, ProviderSpec, estimate_tokens

logger = structlog.get_logger(__name__)

# ── Prompt Injection Detection ────────────────────────────────────────────────

_INJECTION_PATTERNS: list[tuple[str, re.Pattern]] = [
    (
        "instruction_override",
        re.compile(
            r"ignore\s+(all\s+)?previous\s+instructions|"
            r"disregard\s+(all\s+)?(your\s+)?instructions|"
            r"forget\s+(all\s+)?(your\s+)?instructions",
            re.IGNORECASE,
        ),
    ),
    (
        "system_prompt_exfiltration",
        re.compile(
            r"(reveal|show|print|repeat)\s+(your\s+)?(system\s+prompt|instructions)|"
            r"repeat\s+everything\s+above",
            re.IGNORECASE,
        ),
    ),
    (
        "role_hijacking",
        re.compile(
            r"you\s+are\s+now\s+|"
            r"from\s+now\s+on\s+you\s+are|"
            r"pretend\s+(to\s+be|you\s+are)",
            re.IGNORECASE,
        ),
    ),
    (
        "control_characters",
        re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]{3,}"),
    ),
]


def detect_prompt_injection(text: str) -> tuple[bool, str | None]:
    """Check text for common prompt injection patterns.

    Returns:
        Tuple of (is_injection, pattern_name).
    """
    for pattern_name, pattern in _INJECTION_PATTERNS:
        if pattern.search(text):
            return True, pattern_name
    return False, None


def sanitize_messages(messages: list[dict]) -> list[dict]:
    """Strip injection patterns from non-system messages.

    System messages are built by this service and never modified.
    """
    sanitized = []
    for msg in messages:
        content = msg.get("content", "")
        if msg.get("role") == "system" or not content:
            sanitized.append(msg)
            continue

        is_injection, pattern_name = detect_prompt_injection(content)
        if not is_injection:
            sanitized.append(msg)
            continue

        cleaned = content
        for _, pattern in _INJECTION_PATTERNS:
            cleaned = pattern.sub("[removed]", cleaned)
        logger.warning(
            "llm.prompt_injection_sanitized",
            role=msg.get("role"),
            pattern=pattern_name,
            original_length=len(content),
            cleaned_length=len(cleaned),
        )
        sanitized.append({**msg, "content": cleaned})

    return sanitized


# ── LLM Client ───────────────────────────────────────────────────────────────


class LiteLLMClient:
    """Calls one backend through ``litellm.acompletion``.

    Any backend error or timeout is raised as ProviderFailure naming that
    single provider; choosing a fallback is the router's job.
    """

    async def invoke(
        self,
        provider: ProviderSpec,
        system_prompt: str,
        user_message: str,
        timeout: float,
    ) -> LLMResult:
        messages = sanitize_messages([
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ])

        start = time.perf_counter()
        try:
            async with track_llm_call(provider.name, provider.model) as tracker:
                response = await asyncio.wait_for(
                    litellm.acompletion(
                        model=provider.model,
                        messages=messages,
                        api_key=provider.api_key or None,
                        max_tokens=provider.max_tokens,
                        temperature=provider.temperature,
                        timeout=timeout,
                    ),
                    timeout=timeout,
                )
                text = response.choices[0].message.content or ""
                tokens = 0
                if getattr(response, "usage", None):
                    tokens = response.usage.total_tokens or 0
                if not tokens:
                    tokens = estimate_tokens(system_prompt + user_message + text)
                tracker["tokens"] = tokens
        except asyncio.TimeoutError as exc:
            raise ProviderFailure([provider.name], f"timed out after {timeout}s") from exc
        except Exception as exc:
            raise ProviderFailure([provider.name], str(exc) or type(exc).__name__) from exc

        if not text.strip():
            raise ProviderFailure([provider.name], "empty completion")

        return LLMResult(
            text=text,
            tokens=tokens,
            latency_ms=int((time.perf_counter() - start) * 1000),
        )
