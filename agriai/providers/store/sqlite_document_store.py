"""SQLite-backed document store.

Persists documents, their append-only processing logs, chunks with
embeddings, and content analyses to a local SQLite database at
``data/agriai.db``.  Uses ``aiosqlite`` for async I/O, one connection per
operation.

Vectors are stored as JSON arrays next to the model that produced them.
Nearest-neighbour search loads the candidate vectors for the requested
model and access filter and ranks them by cosine distance with numpy.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import numpy as np
import structlog

from agriai.interfaces.document_store import IDocumentStore
from agriai.models.analysis import DocumentAnalysis
from agriai.models.document import (
    AccessLevel,
    Document,
    DocumentStatus,
    ProcessingLogEntry,
    ProcessingStatus,
    utc_now,
)
from agriai.models.rag import ChunkEmbedding, ChunkMatch, DocumentChunk, StoredChunk
from agriai.utils.errors import DocumentNotFoundError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/agriai.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    id                TEXT PRIMARY KEY,
    title             TEXT NOT NULL,
    description       TEXT,
    source_key        TEXT,
    source_url        TEXT,
    mime_type         TEXT NOT NULL,
    category_id       TEXT,
    uploaded_by       TEXT,
    extracted_text    TEXT,
    word_count        INTEGER NOT NULL DEFAULT 0,
    language          TEXT NOT NULL DEFAULT 'it',
    access_level      TEXT NOT NULL DEFAULT 'PUBLIC',
    status            TEXT NOT NULL DEFAULT 'DRAFT',
    extraction_status TEXT NOT NULL DEFAULT 'PENDING',
    indexing_status   TEXT NOT NULL DEFAULT 'PENDING',
    metadata          TEXT NOT NULL DEFAULT '{}',
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    published_at      TEXT,
    deleted_at        TEXT
);
""",
    """\
CREATE TABLE IF NOT EXISTS processing_logs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id TEXT NOT NULL REFERENCES documents(id),
    timestamp   TEXT NOT NULL,
    level       TEXT NOT NULL,
    event       TEXT NOT NULL,
    message     TEXT NOT NULL DEFAULT '',
    metadata    TEXT NOT NULL DEFAULT '{}'
);
""",
    """\
CREATE TABLE IF NOT EXISTS document_chunks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id     TEXT NOT NULL REFERENCES documents(id),
    chunk_index     INTEGER NOT NULL,
    chunk_text      TEXT NOT NULL,
    start_char      INTEGER NOT NULL,
    end_char        INTEGER NOT NULL,
    overlap_chars   INTEGER NOT NULL DEFAULT 0,
    token_count     INTEGER NOT NULL DEFAULT 0,
    chunk_metadata  TEXT NOT NULL DEFAULT '{}',
    embedding_model TEXT,
    embedding       TEXT,
    UNIQUE(document_id, chunk_index)
);
""",
    """\
CREATE TABLE IF NOT EXISTS document_analysis (
    document_id TEXT PRIMARY KEY REFERENCES documents(id),
    analysis    TEXT NOT NULL,
    created_at  TEXT NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status, deleted_at);",
    "CREATE INDEX IF NOT EXISTS idx_logs_document ON processing_logs(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON document_chunks(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_model ON document_chunks(embedding_model);",
]

_DOCUMENT_COLUMNS = (
    "id", "title", "description", "source_key", "source_url", "mime_type",
    "category_id", "uploaded_by", "extracted_text", "word_count", "language",
    "access_level", "status", "extraction_status", "indexing_status",
    "metadata", "created_at", "updated_at", "published_at", "deleted_at",
)

_UPSERT_DOCUMENT_SQL = (
    f"INSERT OR REPLACE INTO documents ({', '.join(_DOCUMENT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _DOCUMENT_COLUMNS)})"
)


def _ts(value: datetime | None) -> str | None:
    """Fixed-width UTC timestamp so string comparison matches time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _cosine_distances(query: list[float], matrix: np.ndarray) -> np.ndarray:
    q = np.asarray(query, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    sims = np.divide(
        matrix @ q, denom, out=np.zeros(matrix.shape[0], dtype=np.float64), where=denom > 0
    )
    return 1.0 - sims


class SQLiteDocumentStore(IDocumentStore):
    """SQLite-backed document, chunk and embedding persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            for sql in _CREATE_TABLES_SQL:
                await db.execute(sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("document_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(self, document: Document) -> Document:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_UPSERT_DOCUMENT_SQL, self._document_row(document))
            for entry in document.processing_logs:
                await self._insert_log(db, document.id, entry)
            await db.commit()
        logger.info("document_created", document_id=document.id, title=document.title)
        return document

    async def get_document(self, document_id: str) -> Document | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM documents WHERE id = ?", (document_id,))
            row = await cursor.fetchone()
            if row is None:
                return None
            cursor = await db.execute(
                "SELECT timestamp, level, event, message, metadata FROM processing_logs "
                "WHERE document_id = ? ORDER BY id",
                (document_id,),
            )
            log_rows = await cursor.fetchall()
        return self._document_from_row(dict(row), [dict(r) for r in log_rows])

    async def update_document(self, document_id: str, **fields: Any) -> Document:
        current = await self.get_document(document_id)
        if current is None:
            raise DocumentNotFoundError(
                message=f"Document {document_id} not found",
                provider_name=self.get_provider_name(),
            )
        fields.pop("id", None)
        fields.pop("processing_logs", None)
        merged = {**current.model_dump(), **fields, "updated_at": utc_now()}
        updated = Document.model_validate(merged)

        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_UPSERT_DOCUMENT_SQL, self._document_row(updated))
            await db.commit()
        return updated

    async def append_processing_log(self, document_id: str, entry: ProcessingLogEntry) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await self._insert_log(db, document_id, entry)
            await db.commit()

    # ------------------------------------------------------------------
    # Chunks and embeddings
    # ------------------------------------------------------------------

    async def replace_chunks(
        self,
        document_id: str,
        chunks: list[DocumentChunk],
        embeddings: list[ChunkEmbedding],
    ) -> int:
        by_index = {e.chunk_index: e for e in embeddings}
        rows = []
        for chunk in chunks:
            embedding = by_index.get(chunk.chunk_index)
            rows.append(
                (
                    document_id,
                    chunk.chunk_index,
                    chunk.text,
                    chunk.start_char,
                    chunk.end_char,
                    chunk.overlap_chars,
                    chunk.token_count,
                    json.dumps(chunk.metadata),
                    embedding.model if embedding else None,
                    json.dumps(embedding.vector) if embedding else None,
                )
            )

        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
            await db.executemany(
                "INSERT INTO document_chunks (document_id, chunk_index, chunk_text, "
                "start_char, end_char, overlap_chars, token_count, chunk_metadata, "
                "embedding_model, embedding) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
            await db.commit()
        logger.debug("chunks_replaced", document_id=document_id, chunks=len(rows))
        return len(rows)

    async def get_chunks(self, document_id: str) -> list[StoredChunk]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM document_chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            )
            rows = await cursor.fetchall()
        return [
            StoredChunk(
                document_id=document_id,
                chunk=DocumentChunk(
                    chunk_index=r["chunk_index"],
                    text=r["chunk_text"],
                    start_char=r["start_char"],
                    end_char=r["end_char"],
                    overlap_chars=r["overlap_chars"],
                    token_count=r["token_count"],
                    metadata=json.loads(r["chunk_metadata"]),
                ),
                embedding_model=r["embedding_model"],
                embedding=json.loads(r["embedding"]) if r["embedding"] else None,
            )
            for r in rows
        ]

    async def nearest_chunks(
        self,
        query_vector: list[float],
        embedding_model: str,
        access_levels: tuple[AccessLevel, ...] | list[AccessLevel],
        categories: list[str] | None = None,
        limit: int = 10,
    ) -> list[ChunkMatch]:
        levels = [AccessLevel(level).value for level in access_levels]
        if not levels:
            return []
        sql = (
            "SELECT c.document_id, c.chunk_index, c.chunk_text, c.embedding, "
            "d.title, d.category_id, d.access_level "
            "FROM document_chunks c JOIN documents d ON d.id = c.document_id "
            "WHERE d.status = ? AND d.deleted_at IS NULL AND c.embedding IS NOT NULL "
            "AND c.embedding_model = ? "
            f"AND d.access_level IN ({', '.join('?' for _ in levels)})"
        )
        params: list[Any] = [DocumentStatus.PUBLISHED.value, embedding_model, *levels]
        if categories:
            sql += f" AND d.category_id IN ({', '.join('?' for _ in categories)})"
            params.extend(categories)

        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = [dict(r) for r in await cursor.fetchall()]

        if not rows:
            return []

        vectors = [json.loads(r["embedding"]) for r in rows]
        dim = len(query_vector)
        keep = [i for i, v in enumerate(vectors) if len(v) == dim]
        if not keep:
            return []
        matrix = np.asarray([vectors[i] for i in keep], dtype=np.float64)
        distances = _cosine_distances(query_vector, matrix)
        order = np.argsort(distances, kind="stable")[:limit]

        matches: list[ChunkMatch] = []
        for pos in order:
            row = rows[keep[int(pos)]]
            matches.append(
                ChunkMatch(
                    document_id=row["document_id"],
                    document_title=row["title"],
                    category_id=row["category_id"],
                    access_level=AccessLevel(row["access_level"]),
                    chunk_index=row["chunk_index"],
                    chunk_text=row["chunk_text"],
                    distance=float(distances[int(pos)]),
                )
            )
        return matches

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def save_analysis(self, document_id: str, analysis: DocumentAnalysis) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "INSERT OR REPLACE INTO document_analysis (document_id, analysis, created_at) "
                "VALUES (?, ?, ?)",
                (document_id, analysis.model_dump_json(), _ts(utc_now())),
            )
            await db.commit()

    async def get_analysis(self, document_id: str) -> DocumentAnalysis | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT analysis FROM document_analysis WHERE document_id = ?", (document_id,)
            )
            row = await cursor.fetchone()
        return DocumentAnalysis.model_validate_json(row[0]) if row else None

    # ------------------------------------------------------------------
    # Queries used by retrieval and maintenance
    # ------------------------------------------------------------------

    async def list_published(
        self,
        access_levels: tuple[AccessLevel, ...] | list[AccessLevel],
        limit: int = 20,
    ) -> list[Document]:
        levels = [AccessLevel(level).value for level in access_levels]
        if not levels:
            return []
        sql = (
            "SELECT * FROM documents WHERE status = ? AND indexing_status = ? "
            "AND deleted_at IS NULL "
            f"AND access_level IN ({', '.join('?' for _ in levels)}) "
            "ORDER BY published_at DESC LIMIT ?"
        )
        params = [
            DocumentStatus.PUBLISHED.value,
            ProcessingStatus.COMPLETED.value,
            *levels,
            limit,
        ]
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._document_from_row(dict(r), []) for r in rows]

    async def list_failed_before(self, cutoff: datetime) -> list[Document]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM documents WHERE status = ? AND deleted_at IS NULL "
                "AND updated_at < ?",
                (DocumentStatus.FAILED.value, _ts(cutoff)),
            )
            rows = await cursor.fetchall()
        return [self._document_from_row(dict(r), []) for r in rows]

    async def soft_delete(self, document_id: str) -> None:
        now = _ts(utc_now())
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE documents SET deleted_at = ?, updated_at = ? WHERE id = ?",
                (now, now, document_id),
            )
            await db.commit()
        logger.info("document_soft_deleted", document_id=document_id)

    async def live_source_keys(self) -> set[str]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT source_key FROM documents "
                "WHERE deleted_at IS NULL AND source_key IS NOT NULL"
            )
            rows = await cursor.fetchall()
        return {row[0] for row in rows}

    def get_provider_name(self) -> str:
        return "sqlite"

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    async def _insert_log(db: aiosqlite.Connection, document_id: str,
                          entry: ProcessingLogEntry) -> None:
        await db.execute(
            "INSERT INTO processing_logs (document_id, timestamp, level, event, message, metadata) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                document_id,
                _ts(entry.timestamp),
                entry.level,
                entry.event,
                entry.message,
                json.dumps(entry.metadata, default=str),
            ),
        )

    @staticmethod
    def _document_row(document: Document) -> tuple:
        return (
            document.id,
            document.title,
            document.description,
            document.source_key,
            document.source_url,
            document.mime_type,
            document.category_id,
            document.uploaded_by,
            document.extracted_text,
            document.word_count,
            document.language,
            document.access_level.value,
            document.status.value,
            document.extraction_status.value,
            document.indexing_status.value,
            json.dumps(document.metadata, default=str),
            _ts(document.created_at),
            _ts(document.updated_at),
            _ts(document.published_at),
            _ts(document.deleted_at),
        )

    @staticmethod
    def _document_from_row(row: dict[str, Any], log_rows: list[dict[str, Any]]) -> Document:
        logs = [
            ProcessingLogEntry(
                timestamp=_parse_ts(r["timestamp"]),
                level=r["level"],
                event=r["event"],
                message=r["message"],
                metadata=json.loads(r["metadata"]),
            )
            for r in log_rows
        ]
        return Document(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            source_key=row["source_key"],
            source_url=row["source_url"],
            mime_type=row["mime_type"],
            category_id=row["category_id"],
            uploaded_by=row["uploaded_by"],
            extracted_text=row["extracted_text"],
            word_count=row["word_count"],
            language=row["language"],
            access_level=AccessLevel(row["access_level"]),
            status=DocumentStatus(row["status"]),
            extraction_status=ProcessingStatus(row["extraction_status"]),
            indexing_status=ProcessingStatus(row["indexing_status"]),
            metadata=json.loads(row["metadata"]),
            processing_logs=logs,
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            published_at=_parse_ts(row["published_at"]),
            deleted_at=_parse_ts(row["deleted_at"]),
        )
