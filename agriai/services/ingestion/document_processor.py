"""Orchestrator for processing one document, plus semantic search.

Pipeline stages: **fetch -> extract -> chunk -> embed -> analyse -> persist**.

:class:`DocumentProcessor` coordinates the extractor, chunker, embedding
batcher and content analyzer without any of them knowing about each other,
and writes every state transition through :class:`IDocumentStore`:

    1. Load the document; mark it PROCESSING.
    2. Fetch the raw bytes (object storage) or the remote page (URL).
    3. Extract plain text; record word count and language.
    4. Chunk the text with exact offsets.
    5. Embed every chunk in rate-limited batches.
    6. Analyse the text (heuristics; a failure here only degrades).
    7. Persist chunks + embeddings and the analysis, then publish.

:meth:`DocumentProcessor.process_document` never raises: failures are
appended to the document's processing log, the sub-statuses are set to
FAILED, and a failed :class:`ProcessingResult` is returned for the job
queue to apply its retry policy to.
"""

from __future__ import annotations

import asyncio
import time
import traceback
from collections.abc import Awaitable, Callable

import structlog

from agriai.interfaces.content_analyzer import IContentAnalyzer
from agriai.interfaces.document_store import IDocumentStore
from agriai.interfaces.embedding_provider import IEmbeddingProvider
from agriai.interfaces.object_storage import IObjectStorage
from agriai.models.analysis import DocumentAnalysis
from agriai.models.document import (
    AccessLevel,
    Document,
    DocumentStatus,
    ProcessingLogEntry,
    ProcessingStatus,
    utc_now,
)
from agriai.models.rag import (
    ChunkEmbedding,
    ProcessingResult,
    SemanticSearchResponse,
    SemanticSearchResult,
)
from agriai.services.ingestion.chunker import TextChunker
from agriai.services.ingestion.embedding_batcher import EmbeddingBatcher
from agriai.services.ingestion.extractor import TextExtractor
from agriai.utils.errors import (
    AgriAIError,
    DocumentNotFoundError,
    ExtractionFailedError,
    is_retryable,
)
from agriai.utils.text import context_window, count_words, most_relevant_section

logger = structlog.get_logger(logger_name=__name__)

ProgressCallback = Callable[[int], Awaitable[None]]

# Progress checkpoints reported while a document is processed.
_PROGRESS_LOADED = 20
_PROGRESS_EXTRACTED = 30
_PROGRESS_EMBEDDED = 85
_PROGRESS_PERSISTED = 90


class DocumentProcessor:
    """Processes single documents end to end and searches processed ones.

    All dependencies are injected, so any backend can be swapped without
    changing this class.
    """

    def __init__(
        self,
        store: IDocumentStore,
        storage: IObjectStorage,
        extractor: TextExtractor,
        chunker: TextChunker,
        batcher: EmbeddingBatcher,
        analyzer: IContentAnalyzer,
        embedding_provider: IEmbeddingProvider,
        min_similarity: float = 0.2,
        request_timeout: float = 30.0,
    ) -> None:
        self._store = store
        self._storage = storage
        self._extractor = extractor
        self._chunker = chunker
        self._batcher = batcher
        self._analyzer = analyzer
        self._embedding_provider = embedding_provider
        self._min_similarity = min_similarity
        self._request_timeout = request_timeout

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_document(
        self,
        document_id: str,
        progress: ProgressCallback | None = None,
    ) -> ProcessingResult:
        """Run the full pipeline for *document_id* and publish it.

        Parameters
        ----------
        document_id:
            The document to process.
        progress:
            Awaited with a percentage at each checkpoint and after every
            embedding batch; the job queue uses it as a heartbeat.
        """
        start = time.monotonic()
        document: Document | None = None
        try:
            document = await self._load(document_id)
            await self._report(progress, _PROGRESS_LOADED)

            text = await self._extract(document)
            word_count = count_words(text)
            language = self._analyzer.detect_language(text)
            document = await self._store.update_document(
                document_id,
                extracted_text=text,
                word_count=word_count,
                language=language,
                extraction_status=ProcessingStatus.COMPLETED,
                indexing_status=ProcessingStatus.PROCESSING,
            )
            await self._report(progress, _PROGRESS_EXTRACTED)

            chunks = self._chunker.chunk(text)
            if not chunks:
                raise ExtractionFailedError(message="Extracted text produced no chunks")

            async def _on_batch(done: int, total: int) -> None:
                span = _PROGRESS_EMBEDDED - _PROGRESS_EXTRACTED
                await self._report(progress, _PROGRESS_EXTRACTED + span * done // total)

            vectors = await self._batcher.embed_batch([c.text for c in chunks], on_batch=_on_batch)
            model = self._batcher.model_name
            embeddings = [
                ChunkEmbedding(
                    chunk_index=chunk.chunk_index,
                    vector=vector,
                    model=model,
                    token_count=chunk.token_count,
                )
                for chunk, vector in zip(chunks, vectors, strict=True)
            ]

            analysis = await self._analyze(document_id, text, language)

            chunks_created = await self._store.replace_chunks(document_id, chunks, embeddings)
            await self._store.save_analysis(document_id, analysis)
            await self._report(progress, _PROGRESS_PERSISTED)

            await self._store.update_document(
                document_id,
                status=DocumentStatus.PUBLISHED,
                extraction_status=ProcessingStatus.COMPLETED,
                indexing_status=ProcessingStatus.COMPLETED,
                published_at=utc_now(),
            )

            elapsed_ms = int((time.monotonic() - start) * 1000)
            total_tokens = sum(c.token_count for c in chunks)
            await self._store.append_processing_log(
                document_id,
                ProcessingLogEntry(
                    event="processed",
                    message="Document processed and published",
                    metadata={
                        "chunks_created": chunks_created,
                        "word_count": word_count,
                        "total_tokens": total_tokens,
                        "embedding_model": model,
                        "processing_time_ms": elapsed_ms,
                    },
                ),
            )
            logger.info(
                "document_processed",
                document_id=document_id,
                chunks=chunks_created,
                words=word_count,
                time_ms=elapsed_ms,
            )
            return ProcessingResult(
                document_id=document_id,
                success=True,
                chunks_created=chunks_created,
                word_count=word_count,
                total_tokens=total_tokens,
                language=language,
                processing_time_ms=elapsed_ms,
            )
        except Exception as exc:  # noqa: BLE001 - every failure becomes a typed result
            return await self._record_failure(document_id, document, exc, start)

    async def _load(self, document_id: str) -> Document:
        document = await self._store.get_document(document_id)
        if document is None or document.is_deleted:
            raise DocumentNotFoundError(message=f"Document {document_id} not found")
        return await self._store.update_document(
            document_id,
            status=DocumentStatus.PROCESSING,
            extraction_status=ProcessingStatus.PROCESSING,
            indexing_status=ProcessingStatus.PENDING,
        )

    async def _extract(self, document: Document) -> str:
        if document.source_key:
            blob = await self._storage.download_as_buffer(document.source_key)
            return await asyncio.to_thread(self._extractor.extract_text, blob, document.mime_type)
        if document.source_url:
            return await self._extractor.fetch_url(document.source_url)
        raise ExtractionFailedError(message=f"Document {document.id} has no source")

    async def _analyze(self, document_id: str, text: str, language: str) -> DocumentAnalysis:
        try:
            return self._analyzer.analyze(text)
        except Exception as exc:  # noqa: BLE001 - analysis is optional
            logger.warning("content_analysis_failed", document_id=document_id, error=str(exc))
            await self._store.append_processing_log(
                document_id,
                ProcessingLogEntry(
                    level="warning",
                    event="analysis_failed",
                    message=str(exc),
                ),
            )
            return DocumentAnalysis(language=language)

    async def _record_failure(
        self,
        document_id: str,
        document: Document | None,
        exc: Exception,
        start: float,
    ) -> ProcessingResult:
        message = exc.message if isinstance(exc, AgriAIError) else str(exc)
        logger.error(
            "document_processing_failed",
            document_id=document_id,
            error_type=type(exc).__name__,
            error=message,
        )
        if document is not None:
            try:
                await self._store.append_processing_log(
                    document_id,
                    ProcessingLogEntry(
                        level="error",
                        event="processing_error",
                        message=message,
                        metadata={
                            "error_type": type(exc).__name__,
                            "stack": "".join(traceback.format_exception(exc))[-4000:],
                        },
                    ),
                )
                await self._store.update_document(
                    document_id,
                    extraction_status=(
                        document.extraction_status
                        if document.extraction_status == ProcessingStatus.COMPLETED
                        else ProcessingStatus.FAILED
                    ),
                    indexing_status=ProcessingStatus.FAILED,
                )
            except Exception as store_exc:  # noqa: BLE001 - keep the original error
                logger.error(
                    "failure_not_recorded",
                    document_id=document_id,
                    error=str(store_exc),
                )

        return ProcessingResult(
            document_id=document_id,
            success=False,
            processing_time_ms=int((time.monotonic() - start) * 1000),
            error=message,
            error_type=type(exc).__name__,
            retryable=is_retryable(exc),
        )

    @staticmethod
    async def _report(progress: ProgressCallback | None, value: int) -> None:
        if progress is not None:
            await progress(value)

    # ------------------------------------------------------------------
    # Semantic search
    # ------------------------------------------------------------------

    async def semantic_search(
        self,
        query: str,
        access_levels: tuple[AccessLevel, ...] | list[AccessLevel],
        categories: list[str] | None = None,
        limit: int = 10,
        min_similarity: float | None = None,
    ) -> SemanticSearchResponse:
        """Rank published chunks by embedding similarity to *query*.

        Hits below the minimum similarity are dropped.  Each hit carries the
        sentence(s) overlapping the query most and a short context window.
        An embedding or store failure returns an empty ``degraded`` response.
        """
        threshold = self._min_similarity if min_similarity is None else min_similarity
        try:
            query_vector = await asyncio.wait_for(
                self._embedding_provider.embed_single(query),
                timeout=self._request_timeout,
            )
            matches = await self._store.nearest_chunks(
                query_vector,
                embedding_model=self._embedding_provider.get_model_name(),
                access_levels=access_levels,
                categories=categories,
                limit=limit,
            )
        except Exception as exc:  # noqa: BLE001 - search degrades, never raises
            logger.warning("semantic_search_failed", error=str(exc), error_type=type(exc).__name__)
            return SemanticSearchResponse(query=query, degraded=True, error=str(exc))

        results = []
        for match in matches:
            similarity = 1.0 - match.distance
            if similarity < threshold:
                continue
            results.append(
                SemanticSearchResult(
                    document_id=match.document_id,
                    title=match.document_title,
                    chunk_index=match.chunk_index,
                    chunk_text=match.chunk_text,
                    similarity=max(-1.0, min(1.0, similarity)),
                    relevant_section=most_relevant_section(match.chunk_text, query),
                    context=context_window(match.chunk_text, query),
                    category_id=match.category_id,
                )
            )
        results.sort(key=lambda r: r.similarity, reverse=True)

        logger.info("semantic_search", query_chars=len(query), results=len(results))
        return SemanticSearchResponse(query=query, results=results)
