"""AgriAI domain models -- re-exports all public model classes.

Submodules by concern:
    - analysis.py  -- heuristic content analysis (sentiment, topics, entities)
    - document.py  -- document record, status enums, access levels, audit log
    - queue.py     -- queue-resident jobs and caller-facing queue snapshots
    - rag.py       -- chunks, embeddings, search hits and generated answers
"""

from __future__ import annotations

from agriai.models.analysis import DocumentAnalysis, ExtractedEntity, Sentiment, Topic
from agriai.models.document import (
    AccessLevel,
    Document,
    DocumentStatus,
    ProcessingLogEntry,
    ProcessingStatus,
    access_levels_for_role,
)
from agriai.models.queue import (
    CleanupReport,
    DocumentJobData,
    JobHandle,
    JobPriority,
    JobState,
    JobStatusReport,
    ProcessingJob,
    QueueName,
    QueueStats,
)
from agriai.models.rag import (
    ChunkEmbedding,
    ChunkMatch,
    ConversationTurn,
    DocumentChunk,
    IntentResult,
    ProcessingResult,
    QueryContext,
    RAGResponse,
    RetrievedSource,
    SemanticSearchResponse,
    SemanticSearchResult,
    StoredChunk,
)

__all__ = [
    # analysis
    "DocumentAnalysis",
    "ExtractedEntity",
    "Sentiment",
    "Topic",
    # document
    "AccessLevel",
    "Document",
    "DocumentStatus",
    "ProcessingLogEntry",
    "ProcessingStatus",
    "access_levels_for_role",
    # queue
    "CleanupReport",
    "DocumentJobData",
    "JobHandle",
    "JobPriority",
    "JobState",
    "JobStatusReport",
    "ProcessingJob",
    "QueueName",
    "QueueStats",
    # rag
    "ChunkEmbedding",
    "ChunkMatch",
    "ConversationTurn",
    "DocumentChunk",
    "IntentResult",
    "ProcessingResult",
    "QueryContext",
    "RAGResponse",
    "RetrievedSource",
    "SemanticSearchResponse",
    "SemanticSearchResult",
    "StoredChunk",
]
