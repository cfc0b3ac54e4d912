"""Utility modules for AgriAI.

- **confidence** -- answer confidence blend and human-readable level mapping.
- **errors** -- domain exception hierarchy rooted at AgriAIError; the
  ``retryable`` flag drives the job queue's attempt budget.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **text** -- word tokenising, Jaccard overlap and relevant-span helpers.
- **tokens** -- tiktoken token counting (``cl100k_base``).
"""

from agriai.utils.confidence import (
    ConfidenceLevel,
    calculate_answer_confidence,
    confidence_to_level,
)
from agriai.utils.errors import (
    AgriAIError,
    ConfigurationError,
    DocumentNotFoundError,
    EmbeddingBatchFailedError,
    ExtractionFailedError,
    GenerationUnavailableError,
    LLMError,
    ProcessingFailedError,
    QueueStalledError,
    RetrievalDegradedError,
    StorageError,
    UnsupportedFormatError,
)
from agriai.utils.logging import configure_logging, get_logger

__all__ = [
    "AgriAIError",
    "ConfidenceLevel",
    "ConfigurationError",
    "DocumentNotFoundError",
    "EmbeddingBatchFailedError",
    "ExtractionFailedError",
    "GenerationUnavailableError",
    "LLMError",
    "ProcessingFailedError",
    "QueueStalledError",
    "RetrievalDegradedError",
    "StorageError",
    "UnsupportedFormatError",
    "calculate_answer_confidence",
    "confidence_to_level",
    "configure_logging",
    "get_logger",
]
