"""Dense embedding generation via OpenAI.

Rate limit handling uses exponential backoff on OpenAI API calls.
"""

from __future__ import annotations

import asyncio
import logging

from openai import AsyncOpenAI, RateLimitError

from src.knowledge.config import KnowledgeBaseConfig

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Generates dense embeddings for knowledge indexing and search.

    Args:
        config: Knowledge base configuration with API key and model settings.
    """

    def __init__(self, config: KnowledgeBaseConfig) -> None:
        self._openai = AsyncOpenAI(api_key=config.openai_api_key)
        self._model = config.embedding_model
        self._dimensions = config.embedding_dimensions

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str], max_retries: int = 3) -> list[list[float]]:
        """Embed several texts in one request, backing off on rate limits.

        Raises:
            RateLimitError: If all retries are exhausted.
        """
        for attempt in range(max_retries):
            try:
                response = await self._openai.embeddings.create(
                    input=texts,
                    model=self._model,
                    dimensions=self._dimensions,
                )
                return [item.embedding for item in response.data]
            except RateLimitError:
                if attempt == max_retries - 1:
                    raise
                wait_time = 2**attempt
                logger.warning(
                    "OpenAI rate limit hit, retrying in %ds (attempt %d/%d)",
                    wait_time,
                    attempt + 1,
                    max_retries,
                )
                await asyncio.sleep(wait_time)

        return []
