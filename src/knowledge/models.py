"""Pydantic models for agent knowledge snippets.

``KnowledgeContext`` is ephemeral: produced fresh for each generation and
never persisted by the relay. ``KnowledgeSnippet`` is the ingestion-side
shape written into the vector store.
"""

from __future__ import annotations

import uuid

from pydantic import BaseModel, Field


class KnowledgeContext(BaseModel):
    """A retrieved snippet with its similarity to the query.

    Attributes:
        content: Snippet text.
        source: Human-readable label of the originating document or page.
        similarity: Cosine similarity in [0, 1].
        metadata: Extra payload fields carried by the stored point.
    """

    content: str
    source: str = "knowledge base"
    similarity: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, str] = Field(default_factory=dict)


class KnowledgeSnippet(BaseModel):
    """A unit of agent knowledge to index."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    agent_id: str
    user_id: str
    source_id: str
    source: str
    content: str
