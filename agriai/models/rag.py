"""Retrieval data models: chunks, embeddings, search hits and RAG answers.

All models are frozen; producers build new instances instead of mutating.

Ingestion produces :class:`DocumentChunk` and :class:`ChunkEmbedding` pairs
which the document store persists together.  Query time produces
:class:`SemanticSearchResult` (embedding search) and :class:`RAGResponse`
(generated answers with :class:`RetrievedSource` citations).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from agriai.models.analysis import ExtractedEntity, Sentiment
from agriai.models.document import AccessLevel


# ---------------------------------------------------------------------------
# Ingestion artefacts
# ---------------------------------------------------------------------------
class DocumentChunk(BaseModel):
    """An offset-addressed slice of a document's extracted text.

    ``start_char``/``end_char`` delimit the chunk's own span in the source
    text.  ``text`` is that span prefixed by ``overlap_chars`` characters
    carried over from the previous chunk, so
    ``text[overlap_chars:] == source[start_char:end_char]``.
    """

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0, description="0-based position in the document.")
    text: str
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)
    overlap_chars: int = Field(default=0, ge=0)
    token_count: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _span_is_ordered(self) -> DocumentChunk:
        if self.end_char < self.start_char:
            raise ValueError("end_char must not precede start_char")
        if self.overlap_chars > len(self.text):
            raise ValueError("overlap_chars exceeds chunk text length")
        return self

    @property
    def span_text(self) -> str:
        """The chunk text without the carried-over overlap prefix."""
        return self.text[self.overlap_chars:]


class ChunkEmbedding(BaseModel):
    """The vector computed for one chunk by one embedding model."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0)
    vector: list[float]
    model: str
    token_count: int = Field(default=0, ge=0)


class ProcessingResult(BaseModel):
    """Outcome of processing one document; failures are data, not exceptions."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    success: bool
    chunks_created: int = Field(default=0, ge=0)
    word_count: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    language: str | None = None
    processing_time_ms: int = Field(default=0, ge=0)
    error: str | None = None
    error_type: str | None = None
    retryable: bool = True


class StoredChunk(BaseModel):
    """A persisted chunk joined with its current embedding, as read back."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk: DocumentChunk
    embedding_model: str | None = None
    embedding: list[float] | None = None


class ChunkMatch(BaseModel):
    """A nearest-neighbour hit returned by the document store."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    document_title: str
    category_id: str | None = None
    access_level: AccessLevel
    chunk_index: int
    chunk_text: str
    distance: float = Field(description="Cosine distance, 0 = identical.")


# ---------------------------------------------------------------------------
# Semantic search
# ---------------------------------------------------------------------------
class SemanticSearchResult(BaseModel):
    """One ranked semantic-search hit with citation helpers attached."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    title: str
    chunk_index: int
    chunk_text: str
    similarity: float = Field(ge=-1.0, le=1.0)
    relevant_section: str
    context: str
    category_id: str | None = None


class SemanticSearchResponse(BaseModel):
    """Typed outcome of a semantic search; ``degraded`` marks a failed lookup."""

    model_config = ConfigDict(frozen=True)

    query: str
    results: list[SemanticSearchResult] = Field(default_factory=list)
    degraded: bool = False
    error: str | None = None


# ---------------------------------------------------------------------------
# RAG answers
# ---------------------------------------------------------------------------
class QueryContext(BaseModel):
    """Who is asking: drives access filtering and the system prompt."""

    model_config = ConfigDict(frozen=True)

    user_type: str = Field(default="public", description="admin, member or public.")
    location: str | None = None
    farm_type: str | None = None
    expertise: str | None = None


class ConversationTurn(BaseModel):
    """One previous message of the conversation."""

    model_config = ConfigDict(frozen=True)

    role: str = Field(description="USER or ASSISTANT.")
    content: str


class IntentResult(BaseModel):
    """Intent classification outcome."""

    model_config = ConfigDict(frozen=True)

    category: str = "general"
    confidence: float = Field(default=0.3, ge=0.0, le=1.0)


class RetrievedSource(BaseModel):
    """A document used to ground an answer."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    title: str
    content: str = Field(description="Most relevant excerpt of the document.")
    relevance_score: float = Field(ge=0.0, le=1.0)
    rank: int = Field(ge=1)
    category_id: str | None = None


class RAGResponse(BaseModel):
    """A generated (or fallback) answer.

    ``metadata["type"]`` is ``"rag"`` for grounded answers and
    ``"fallback"`` for templated ones.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    confidence: float = Field(ge=0.0, le=1.0)
    sources: list[RetrievedSource] = Field(default_factory=list)
    tokens: int = Field(default=0, ge=0)
    model: str
    intent: IntentResult = Field(default_factory=IntentResult)
    entities: list[ExtractedEntity] = Field(default_factory=list)
    language: str = "it"
    sentiment: Sentiment | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_fallback(self) -> bool:
        return self.metadata.get("type") == "fallback"
