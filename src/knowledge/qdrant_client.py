"""Qdrant-backed knowledge search scoped by agent and account.

Every point carries ``agent_id`` and ``user_id`` payload fields and every
query filters on both, so one agent never sees another agent's knowledge.
Cosine similarity scores are returned as-is (already in [0, 1] for
normalized OpenAI embeddings) and clamped defensively before leaving the
store.
"""

from __future__ import annotations

import logging

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.models import KnowledgeContext, KnowledgeSnippet

logger = logging.getLogger(__name__)


class QdrantKnowledgeStore:
    """Agent knowledge collection with filtered similarity search.

    Args:
        config: Knowledge base configuration.
        embedding_service: Service generating dense query/document vectors.
    """

    def __init__(
        self, config: KnowledgeBaseConfig, embedding_service: EmbeddingService
    ) -> None:
        self._config = config
        self._embeddings = embedding_service

        if config.qdrant_url:
            self._client = AsyncQdrantClient(
                url=config.qdrant_url,
                api_key=config.qdrant_api_key,
            )
        else:
            self._client = AsyncQdrantClient(path=config.qdrant_path)

    @property
    def client(self) -> AsyncQdrantClient:
        """Expose the underlying Qdrant client for advanced operations."""
        return self._client

    async def initialize_collection(self) -> None:
        """Create the knowledge collection and payload indexes if missing."""
        name = self._config.collection_knowledge

        if await self._client.collection_exists(name):
            logger.info("Collection %s already exists, skipping creation", name)
            return

        await self._client.create_collection(
            collection_name=name,
            vectors_config=VectorParams(
                size=self._config.embedding_dimensions,
                distance=Distance.COSINE,
            ),
        )
        for field in ("user_id", "agent_id", "source_id"):
            await self._client.create_payload_index(
                collection_name=name,
                field_name=field,
                field_schema=PayloadSchemaType.KEYWORD,
            )
        logger.info("Created %s collection", name)

    async def upsert_snippets(self, snippets: list[KnowledgeSnippet]) -> None:
        """Embed and store snippets; existing ids are overwritten."""
        if not snippets:
            return

        vectors = await self._embeddings.embed_batch([s.content for s in snippets])
        points = [
            PointStruct(
                id=snippet.id,
                vector=vector,
                payload={
                    "agent_id": snippet.agent_id,
                    "user_id": snippet.user_id,
                    "source_id": snippet.source_id,
                    "source": snippet.source,
                    "content": snippet.content,
                },
            )
            for snippet, vector in zip(snippets, vectors, strict=True)
        ]
        await self._client.upsert(
            collection_name=self._config.collection_knowledge,
            points=points,
        )
        logger.info("Upserted %d snippets", len(points))

    async def search(
        self,
        query: str,
        agent_id: str,
        user_id: str,
        k: int,
        similarity_floor: float,
    ) -> list[KnowledgeContext]:
        """Return up to ``k`` snippets scoring at least ``similarity_floor``."""
        vector = await self._embeddings.embed_text(query)

        query_filter = Filter(
            must=[
                FieldCondition(key="user_id", match=MatchValue(value=user_id)),
                FieldCondition(key="agent_id", match=MatchValue(value=agent_id)),
            ]
        )
        results = await self._client.query_points(
            collection_name=self._config.collection_knowledge,
            query=vector,
            query_filter=query_filter,
            score_threshold=similarity_floor,
            limit=k,
            with_payload=True,
        )

        contexts: list[KnowledgeContext] = []
        for point in results.points:
            payload = point.payload or {}
            contexts.append(
                KnowledgeContext(
                    content=payload.get("content", ""),
                    source=payload.get("source", "knowledge base"),
                    similarity=min(1.0, max(0.0, float(point.score))),
                    metadata={"source_id": str(payload.get("source_id", ""))},
                )
            )
        return contexts

    async def close(self) -> None:
        await self._client.close()
