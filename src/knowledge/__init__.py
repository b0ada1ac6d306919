"""Knowledge store adapter for agent knowledge retrieval.

Provides Qdrant-backed vector storage filtered by agent and account, OpenAI
dense embeddings, and the ``KnowledgeContext`` snippet model consumed by the
relay's response generator.
"""

from src.knowledge.config import KnowledgeBaseConfig
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.models import KnowledgeContext, KnowledgeSnippet
from src.knowledge.qdrant_client import QdrantKnowledgeStore

__all__ = [
    "EmbeddingService",
    "KnowledgeBaseConfig",
    "KnowledgeContext",
    "KnowledgeSnippet",
    "QdrantKnowledgeStore",
]
