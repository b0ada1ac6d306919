"""Knowledge retriever: bounded, ranked access to the similarity-search store."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from src.knowledge.models import KnowledgeContext
from src.relay.errors import KnowledgeUnavailable

logger = structlog.get_logger(__name__)


class KnowledgeSearch(Protocol):
    async def search(
        self,
        query: str,
        agent_id: str,
        user_id: str,
        k: int,
        similarity_floor: float,
    ) -> list[KnowledgeContext]: ...


class KnowledgeRetriever:
    """Wraps a KnowledgeSearch collaborator with a timeout and result hygiene.

    Results are sorted by similarity (best first), filtered to the floor,
    and capped at ``k`` regardless of what the collaborator returns.

    Args:
        search: The external similarity-search capability.
        timeout: Seconds allowed for one search.
    """

    def __init__(self, search: KnowledgeSearch, timeout: float = 5.0) -> None:
        self._search = search
        self._timeout = timeout

    async def retrieve(
        self,
        query: str,
        agent_id: str,
        user_id: str,
        k: int = 5,
        similarity_floor: float = 0.7,
    ) -> list[KnowledgeContext]:
        """Fetch up to ``k`` snippets scoring at least ``similarity_floor``.

        Raises:
            KnowledgeUnavailable: If the search fails or exceeds the timeout.
        """
        try:
            contexts = await asyncio.wait_for(
                self._search.search(query, agent_id, user_id, k, similarity_floor),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise KnowledgeUnavailable(agent_id, f"timed out after {self._timeout}s") from exc
        except Exception as exc:
            raise KnowledgeUnavailable(agent_id, str(exc) or type(exc).__name__) from exc

        ranked = sorted(
            (ctx for ctx in contexts if ctx.similarity >= similarity_floor),
            key=lambda ctx: ctx.similarity,
            reverse=True,
        )[:k]

        logger.debug(
            "knowledge.retrieved",
            agent_id=agent_id,
            returned=len(contexts),
            kept=len(ranked),
        )
        return ranked
