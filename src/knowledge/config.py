"""Knowledge store configuration via Pydantic BaseSettings.

All settings load from environment variables with the KNOWLEDGE_ prefix.
For example, KNOWLEDGE_QDRANT_URL sets qdrant_url.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class KnowledgeBaseConfig(BaseSettings):
    """Configuration for agent knowledge storage and embedding.

    Attributes:
        qdrant_path: Local filesystem path for Qdrant storage (dev mode).
        qdrant_url: Remote Qdrant server URL. If set, takes precedence over
            qdrant_path.
        qdrant_api_key: API key for remote Qdrant authentication.
        openai_api_key: OpenAI API key for dense embedding generation.
        embedding_model: OpenAI embedding model name.
        embedding_dimensions: Dimensionality of dense embeddings.
        collection_knowledge: Qdrant collection holding agent knowledge snippets.
        search_timeout: Seconds a single similarity search may take.
    """

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Qdrant connection
    qdrant_path: str = "./qdrant_data"
    qdrant_url: str | None = None
    qdrant_api_key: str | None = None

    # Embedding
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # Collections
    collection_knowledge: str = "agent_knowledge"

    # Search
    search_timeout: float = 5.0
