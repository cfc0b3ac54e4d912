"""Document ingestion pipeline for the AgriAI knowledge base.

Orchestrates the full pipeline: **extract -> chunk -> embed -> analyse -> store**.

Pipeline stages overview:

1. **Extract** (extractor.py / TextExtractor) -- MIME-dispatched readers
   turn PDF, DOCX, plain text, HTML and RTF blobs (or a remote page) into
   plain text.

2. **Chunk** (chunker.py / TextChunker) -- Splits the text into ~1000
   character sentence groups with exact source offsets and a carried
   overlap prefix.

3. **Embed** (embedding_batcher.py / EmbeddingBatcher) -- Sends chunk
   texts to the embedding provider in rate-limited batches.

4. **Analyse** (content_analyzer.py / HeuristicContentAnalyzer) --
   Language, sentiment, readability, keywords, topics and entities.

5. **Store** (via IDocumentStore) -- Persists chunks, embeddings and the
   analysis, then publishes the document.

The DocumentProcessor class orchestrates all five stages for one document
and also serves semantic search over the stored embeddings.
"""

from agriai.services.ingestion.chunker import TextChunker
from agriai.services.ingestion.content_analyzer import HeuristicContentAnalyzer
from agriai.services.ingestion.document_processor import DocumentProcessor
from agriai.services.ingestion.embedding_batcher import EmbeddingBatcher
from agriai.services.ingestion.extractor import TextExtractor

__all__ = [
    "DocumentProcessor",
    "EmbeddingBatcher",
    "HeuristicContentAnalyzer",
    "TextChunker",
    "TextExtractor",
]
