"""AgriAI FastAPI application entry point.

Wires together all providers, services, the queue manager and routes via
dependency injection.  Loads configuration from ``.env`` and
``config/config.yaml`` and configures structured logging.

``build_components`` is also used by the CLI, which runs the same stack
without the web server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, WebSocket

from agriai import __version__
from agriai.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from agriai.api.routes import router as api_router
from agriai.api.websocket import websocket_notifications
from agriai.config.loader import load_config
from agriai.config.settings import Settings
from agriai.interfaces.embedding_provider import IEmbeddingProvider
from agriai.interfaces.llm_provider import ILLMProvider
from agriai.jobs.queue_manager import QueueManager
from agriai.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from agriai.providers.llm.openai_provider import OpenAILLMProvider
from agriai.providers.session.memory_session_registry import InMemorySessionRegistry
from agriai.providers.storage.local_object_storage import LocalObjectStorage
from agriai.providers.store.sqlite_document_store import SQLiteDocumentStore
from agriai.services.ingestion.chunker import TextChunker
from agriai.services.ingestion.content_analyzer import HeuristicContentAnalyzer
from agriai.services.ingestion.document_processor import DocumentProcessor
from agriai.services.ingestion.embedding_batcher import EmbeddingBatcher
from agriai.services.ingestion.extractor import TextExtractor
from agriai.services.rag_service import RAGService
from agriai.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(app_settings: Settings) -> ILLMProvider | None:
    """OpenAI (or an OpenAI-compatible endpoint) when a key is configured.

    ``None`` puts the RAG service in fallback-only mode.
    """
    if app_settings.openai_api_key:
        return OpenAILLMProvider(settings=app_settings)
    return None


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    # Built even without a key so search degrades and document jobs fail
    # with a recorded error rather than at startup.
    return OpenAIEmbeddingProvider(settings=app_settings)


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings,
    config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance.

    Returns a flat dict of named components to be stored on ``app.state``.
    Nothing is started here; see :func:`start_components`.
    """
    config = config if config is not None else load_config(settings=app_settings)
    timeout = app_settings.external_request_timeout_seconds

    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    # -- Persistence --
    document_store = SQLiteDocumentStore(db_path=app_settings.database_path)
    object_storage = LocalObjectStorage(root=app_settings.storage_root)

    # -- AI backends --
    llm_provider = _build_llm_provider(app_settings)
    embedding_provider = _build_embedding_provider(app_settings)

    # -- Ingestion --
    analyzer = HeuristicContentAnalyzer()
    document_processor = DocumentProcessor(
        store=document_store,
        storage=object_storage,
        extractor=TextExtractor(http_client=http_client, timeout=timeout),
        chunker=TextChunker(
            chunk_size=app_settings.chunk_size,
            overlap=app_settings.chunk_overlap,
            min_chunk_size=app_settings.min_chunk_size,
            analyzer=analyzer,
        ),
        batcher=EmbeddingBatcher(
            embedding_provider,
            batch_size=app_settings.embedding_batch_size,
            inter_batch_delay=app_settings.embedding_batch_delay_seconds,
            request_timeout=timeout,
        ),
        analyzer=analyzer,
        embedding_provider=embedding_provider,
        min_similarity=app_settings.min_similarity,
        request_timeout=timeout,
    )

    # -- Queues and notifications --
    session_registry = InMemorySessionRegistry()
    queue_manager = QueueManager(
        store=document_store,
        storage=object_storage,
        processor=document_processor,
        sessions=session_registry,
        settings=app_settings,
        maintenance=config.get("maintenance"),
    )

    # -- Query time --
    rag_service = RAGService(
        store=document_store,
        llm=llm_provider,
        analyzer=analyzer,
        top_k=app_settings.rag_top_k,
        min_relevance=app_settings.rag_min_relevance,
        history_turns=app_settings.rag_history_turns,
        fallback_confidence=app_settings.fallback_confidence,
        request_timeout=timeout,
    )

    return {
        "settings": app_settings,
        "config": config,
        "http_client": http_client,
        "document_store": document_store,
        "object_storage": object_storage,
        "llm_provider": llm_provider,
        "embedding_provider": embedding_provider,
        "content_analyzer": analyzer,
        "document_processor": document_processor,
        "session_registry": session_registry,
        "queue_manager": queue_manager,
        "rag_service": rag_service,
    }


async def start_components(components: dict[str, Any], schedule: bool = True) -> None:
    """Create tables, start the worker pools and register maintenance."""
    await components["document_store"].initialize()
    queue_manager: QueueManager = components["queue_manager"]
    await queue_manager.start()
    if schedule:
        registered = queue_manager.schedule_maintenance()
        _logger.info("maintenance_scheduled", schedules=registered)


async def stop_components(components: dict[str, Any]) -> None:
    await components["queue_manager"].shutdown()
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    config: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application."""
    app_settings = app_settings or settings

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        """Build and start all components on startup, stop them on shutdown."""
        components = build_components(app_settings, config)
        for key, value in components.items():
            setattr(application.state, key, value)

        await start_components(components)
        _logger.info(
            "app_startup",
            version=__version__,
            environment=app_settings.app_env,
            llm=components["llm_provider"].get_provider_name() if components["llm_provider"] else None,
        )

        yield

        await stop_components(components)
        _logger.info("app_shutdown")

    application = FastAPI(
        title="AgriAI API",
        version=__version__,
        description=(
            "Queue agricultural documents for extraction, chunking and embedding, "
            "search them semantically, and ask questions answered with cited sources."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    # -- WebSocket --
    @application.websocket("/ws/notifications/{user_id}")
    async def ws_notifications(websocket: WebSocket, user_id: str) -> None:
        await websocket_notifications(websocket, user_id)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "agriai.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
