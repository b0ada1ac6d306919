#!/usr/bin/env python3
"""CLI script to probe the configured language-model providers.

Usage:
    uv run python scripts/check_providers.py
    uv run python scripts/check_providers.py --json
    uv run python scripts/check_providers.py --tier pro

Reads provider keys and models from the environment or .env file, runs the
router's health check (one trivial prompt per provider) and prints which
providers answered, their latency, and the recommended provider.
Exits non-zero when no provider is healthy.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.relay
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def check(tier: str, as_json: bool) -> int:
    from src.relay.config import get_settings
    from src.relay.errors import ConfigurationError
    from src.relay.llm.client import LiteLLMClient
    from src.relay.llm.router import ProviderRouter
    from src.relay.llm.schemas import RouterConfig, Tier

    router = ProviderRouter(RouterConfig.from_settings(get_settings()), LiteLLMClient())
    report = await router.health_check()

    if as_json:
        print(report.model_dump_json(indent=2))
    else:
        print("Provider health:")
        for health in report.providers:
            state = "ok" if health.healthy else "FAILED"
            line = f"  {health.provider:<10} {state:<7} {health.latency_ms:>6} ms"
            if health.error:
                line += f"  ({health.error})"
            print(line)
        print(f"Recommended: {report.recommended or 'none'}")

        try:
            selected = router.select(Tier(tier))
            print(f"Selected for tier '{tier}': {selected.name} ({selected.model})")
        except ConfigurationError as exc:
            print(f"Selected for tier '{tier}': none ({exc})")

    return 0 if any(health.healthy for health in report.providers) else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Probe configured LLM providers")
    parser.add_argument(
        "--tier",
        default="free",
        choices=["free", "pro", "enterprise"],
        help="Tier to show the default selection for",
    )
    parser.add_argument("--json", action="store_true", help="Print the raw health report as JSON")
    args = parser.parse_args()

    sys.exit(asyncio.run(check(args.tier, args.json)))


if __name__ == "__main__":
    main()
