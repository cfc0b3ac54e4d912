"""FastAPI API routes for AgriAI.

Thin controllers over the queue manager, the document processor and the
RAG service.  Service dependencies are resolved from ``app.state`` via
FastAPI's ``Depends`` using the ``Annotated`` pattern.

# ─── API ROUTE MAP ─────────────────────────────────────────────────────
#
# Endpoint                                  Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/documents/{id}/jobs               POST    Queue a document for processing
# /api/v1/documents/{id}/job                GET     Status of its latest job
# /api/v1/documents/{id}/job                DELETE  Cancel waiting/delayed jobs
# /api/v1/documents/{id}/job/retry          POST    Re-enqueue the last failed job
# /api/v1/queue/stats                       GET     Document queue depth
# /api/v1/search                            POST    Semantic search
# /api/v1/ask                               POST    RAG answer
# /api/v1/health                            GET     Health check + provider status
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from agriai import __version__
from agriai.api.schemas import (
    AskRequest,
    CancelJobResponse,
    ErrorResponse,
    HealthResponse,
    SearchRequest,
    SubmitJobRequest,
    SubmitJobResponse,
)
from agriai.jobs.queue_manager import QueueManager
from agriai.models.document import access_levels_for_role
from agriai.models.queue import JobStatusReport, QueueStats
from agriai.models.rag import RAGResponse, SemanticSearchResponse
from agriai.services.ingestion.document_processor import DocumentProcessor
from agriai.services.rag_service import RAGService
from agriai.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Dependency injection helpers -- resolve singletons from app.state
# ---------------------------------------------------------------------------


def _get_queue_manager(request: Request) -> QueueManager:
    return request.app.state.queue_manager


def _get_processor(request: Request) -> DocumentProcessor:
    return request.app.state.document_processor


def _get_rag_service(request: Request) -> RAGService:
    return request.app.state.rag_service


QueueDep = Annotated[QueueManager, Depends(_get_queue_manager)]
ProcessorDep = Annotated[DocumentProcessor, Depends(_get_processor)]
RAGDep = Annotated[RAGService, Depends(_get_rag_service)]


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@router.post(
    "/documents/{document_id}/jobs",
    response_model=SubmitJobResponse,
    status_code=202,
    responses={404: {"model": ErrorResponse}},
    summary="Queue a document for processing",
)
async def submit_job(
    document_id: str,
    body: SubmitJobRequest,
    queue: QueueDep,
) -> SubmitJobResponse:
    handle = await queue.enqueue(
        document_id,
        priority=body.priority,
        user_id=body.user_id,
        is_reprocessing=body.is_reprocessing,
        metadata=body.metadata,
    )
    return SubmitJobResponse(
        job_id=handle.job_id,
        document_id=handle.document_id,
        priority=handle.priority,
        max_attempts=handle.max_attempts,
        state=handle.state.value,
    )


@router.get(
    "/documents/{document_id}/job",
    response_model=JobStatusReport,
    summary="Status of the latest job for a document",
)
async def job_status(document_id: str, queue: QueueDep) -> JobStatusReport:
    return queue.status(document_id)


@router.delete(
    "/documents/{document_id}/job",
    response_model=CancelJobResponse,
    summary="Cancel queued processing for a document",
)
async def cancel_job(document_id: str, queue: QueueDep) -> CancelJobResponse:
    cancelled = await queue.cancel(document_id)
    return CancelJobResponse(document_id=document_id, cancelled=cancelled)


@router.post(
    "/documents/{document_id}/job/retry",
    response_model=SubmitJobResponse,
    status_code=202,
    responses={404: {"model": ErrorResponse}},
    summary="Retry the last failed job for a document",
)
async def retry_job(document_id: str, queue: QueueDep) -> SubmitJobResponse:
    handle = await queue.retry(document_id)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"No failed job for document: {document_id}")
    return SubmitJobResponse(
        job_id=handle.job_id,
        document_id=handle.document_id,
        priority=handle.priority,
        max_attempts=handle.max_attempts,
        state=handle.state.value,
    )


@router.get("/queue/stats", response_model=QueueStats, summary="Document queue depth")
async def queue_stats(queue: QueueDep) -> QueueStats:
    return queue.stats()


# ---------------------------------------------------------------------------
# Query time
# ---------------------------------------------------------------------------


@router.post(
    "/search",
    response_model=SemanticSearchResponse,
    summary="Semantic search over published documents",
)
async def search(body: SearchRequest, processor: ProcessorDep) -> SemanticSearchResponse:
    return await processor.semantic_search(
        body.query,
        access_levels=access_levels_for_role(body.user_type),
        categories=body.categories,
        limit=body.limit,
        min_similarity=body.min_similarity,
    )


@router.post("/ask", response_model=RAGResponse, summary="Answer a question with cited sources")
async def ask(body: AskRequest, rag: RAGDep) -> RAGResponse:
    return await rag.answer(
        body.query,
        conversation_id=body.conversation_id,
        user_id=body.user_id,
        context=body.context,
        history=body.history,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(request: Request) -> HealthResponse:
    state = request.app.state
    llm = getattr(state, "llm_provider", None)
    embedding = getattr(state, "embedding_provider", None)
    queue: QueueManager | None = getattr(state, "queue_manager", None)

    providers = {
        "llm": llm.get_provider_name() if llm and llm.is_available() else None,
        "embedding": embedding.get_provider_name() if embedding and embedding.is_available() else None,
        "document_store": state.document_store.get_provider_name(),
        "object_storage": state.object_storage.get_provider_name(),
    }
    queues = {}
    if queue is not None:
        queues = {name: stats.model_dump() for name, stats in queue.all_stats().items()}

    return HealthResponse(status="healthy", version=__version__, providers=providers, queues=queues)
