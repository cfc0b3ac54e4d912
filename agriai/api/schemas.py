"""Pydantic request/response schemas for the AgriAI API.

Defines the public contract for the REST endpoints: job submission and
polling, queue stats, semantic search, question answering and health.

Convention: request schemas end with "Request", response schemas end with
"Response".  Where a domain model already has the right shape (``JobHandle``,
``JobStatusReport``, ``QueueStats``, ``SemanticSearchResponse``,
``RAGResponse``) the routes return it directly instead of duplicating it
here.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from agriai.models.queue import JobPriority
from agriai.models.rag import ConversationTurn, QueryContext


class SubmitJobRequest(BaseModel):
    """Body of ``POST /documents/{id}/jobs``."""

    priority: JobPriority = JobPriority.NORMAL
    user_id: str = Field(default="system", min_length=1)
    is_reprocessing: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubmitJobResponse(BaseModel):
    job_id: str
    document_id: str
    priority: JobPriority
    max_attempts: int
    state: str


class CancelJobResponse(BaseModel):
    document_id: str
    cancelled: bool


class SearchRequest(BaseModel):
    """Semantic search over published chunks."""

    query: str = Field(..., min_length=1, max_length=1000)
    user_type: str = "public"
    categories: list[str] | None = None
    limit: int = Field(default=10, ge=1, le=50)
    min_similarity: float | None = Field(default=None, ge=-1.0, le=1.0)


class AskRequest(BaseModel):
    """A question for the RAG engine."""

    query: str = Field(..., min_length=1, max_length=2000)
    conversation_id: str | None = None
    user_id: str | None = None
    context: QueryContext = Field(default_factory=QueryContext)
    history: list[ConversationTurn] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]
    queues: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
