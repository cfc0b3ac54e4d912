"""Abstract base class for the document persistence layer.

The store is the only state shared between the job queue (writer) and the
RAG service (reader).  It owns documents, their append-only processing
logs, chunks with embeddings, and analyses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from agriai.models.analysis import DocumentAnalysis
from agriai.models.document import AccessLevel, Document, ProcessingLogEntry
from agriai.models.rag import ChunkEmbedding, ChunkMatch, DocumentChunk, StoredChunk


# Concrete implementations:
#   SQLiteDocumentStore -- aiosqlite, cosine search in numpy
# Located in: agriai/providers/store/
class IDocumentStore(ABC):
    """Contract for document, chunk and embedding persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables / connections. Safe to call more than once."""

    @abstractmethod
    async def create_document(self, document: Document) -> Document:
        """Persist a new document record and return it."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Return the document with its processing log, or ``None``.

        Tombstoned documents are returned too; callers check ``deleted_at``.
        """

    @abstractmethod
    async def update_document(self, document_id: str, **fields: Any) -> Document:
        """Apply *fields* to the document and return the updated record.

        The merged record is revalidated, so an update that would publish a
        document with incomplete sub-stages raises ``ValueError``.

        Raises
        ------
        agriai.utils.errors.DocumentNotFoundError
            If no document has *document_id*.
        """

    @abstractmethod
    async def append_processing_log(self, document_id: str, entry: ProcessingLogEntry) -> None:
        """Append one entry to the document's processing log.

        There is deliberately no way to edit or remove entries.
        """

    @abstractmethod
    async def replace_chunks(
        self,
        document_id: str,
        chunks: list[DocumentChunk],
        embeddings: list[ChunkEmbedding],
    ) -> int:
        """Bulk insert chunks with their embeddings, replacing previous ones.

        Returns the number of chunks written.
        """

    @abstractmethod
    async def get_chunks(self, document_id: str) -> list[StoredChunk]:
        """Return the document's chunks in index order."""

    @abstractmethod
    async def save_analysis(self, document_id: str, analysis: DocumentAnalysis) -> None:
        """Store (or replace) the document's content analysis."""

    @abstractmethod
    async def get_analysis(self, document_id: str) -> DocumentAnalysis | None:
        """Return the stored analysis, if any."""

    @abstractmethod
    async def list_published(
        self,
        access_levels: tuple[AccessLevel, ...] | list[AccessLevel],
        limit: int = 20,
    ) -> list[Document]:
        """Published, live, fully indexed documents visible at *access_levels*."""

    @abstractmethod
    async def nearest_chunks(
        self,
        query_vector: list[float],
        embedding_model: str,
        access_levels: tuple[AccessLevel, ...] | list[AccessLevel],
        categories: list[str] | None = None,
        limit: int = 10,
    ) -> list[ChunkMatch]:
        """Nearest chunks by cosine distance, ascending.

        Only chunks embedded by *embedding_model* and belonging to PUBLISHED,
        live documents in *access_levels* (and *categories*, when given) are
        compared.
        """

    @abstractmethod
    async def list_failed_before(self, cutoff: datetime) -> list[Document]:
        """Live FAILED documents last updated before *cutoff*."""

    @abstractmethod
    async def soft_delete(self, document_id: str) -> None:
        """Tombstone the document by setting ``deleted_at``."""

    @abstractmethod
    async def live_source_keys(self) -> set[str]:
        """Object-storage keys referenced by live documents."""
