"""Data models for knowledge bases, search results, and predictions."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic.alias_generators import to_camel


class Language(str, Enum):
    """Supported speech languages."""

    JA = "ja"
    EN = "en"


class PredictionSource(str, Enum):
    """Which strategy produced a prediction."""

    RAG = "rag"
    LLM = "llm"
    NONE = "none"


class Chunk(BaseModel):
    """A span of source text paired with its embedding vector."""

    model_config = ConfigDict(frozen=True)

    text: str
    embedding: list[float]


class KnowledgeBaseStats(BaseModel):
    """Informational statistics stored with a knowledge base."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_chunks: int = 0
    avg_chunk_length: float = 0.0


class KnowledgeBase(BaseModel):
    """A named, persisted collection of embedded chunks.

    Serialized with camelCase keys to stay compatible with existing
    knowledge base files.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    model_name: str
    language: Language = Language.JA
    chunk_size: int = 500
    chunk_overlap: int = 50
    created_at: datetime
    chunks: list[Chunk] = Field(default_factory=list)
    stats: KnowledgeBaseStats = Field(default_factory=KnowledgeBaseStats)

    # Normalised (N, D) embedding matrix, filled lazily by search
    _search_index: Any = PrivateAttr(default=None)

    @property
    def dimension(self) -> int | None:
        """Embedding dimensionality, or None for an empty knowledge base."""
        if not self.chunks:
            return None
        return len(self.chunks[0].embedding)


class KnowledgeBaseInfo(BaseModel):
    """Directory listing entry for a knowledge base file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    filename: str
    name: str
    language: str
    total_chunks: int
    avg_chunk_length: float
    created_at: str
    size_kb: str = Field(..., alias="sizeKB")


class KnowledgeBaseStatus(BaseModel):
    """State of the active knowledge base in a store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    loaded: bool
    model_name: str | None = None
    language: str | None = None
    total_chunks: int = 0
    dimension: int | None = None
    type: Literal["rag"] = "rag"


class SearchResult(BaseModel):
    """A ranked chunk text with its cosine similarity."""

    text: str
    score: float = Field(..., ge=-1.0, le=1.0, description="Cosine similarity")


class RagPrediction(BaseModel):
    """Knowledge-grounded prediction from the retrieval-gated predictor."""

    word: str | None
    confidence: float
    source: Literal["rag"] = "rag"
    top_similarity: float
    relevant_chunks: int
    raw_response: str | None = None


class LLMPrediction(BaseModel):
    """Result of the plain (unconditioned) language-model predictor."""

    word: str | None
    confidence: float
    reasoning: str
    raw_response: str | None = None
    error: str | None = None


class PredictionOutcome(BaseModel):
    """Per-turn prediction result consumed by the session loop."""

    word: str | None = None
    confidence: float = 0.0
    source: PredictionSource = PredictionSource.NONE
    top_similarity: float | None = None
    relevant_chunk_count: int = 0
    reasoning: str | None = None
    raw_response: str | None = None
