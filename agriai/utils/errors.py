"""Custom exception hierarchy for AgriAI.

All application exceptions inherit from :class:`AgriAIError`, which carries
an optional ``provider_name`` so error handlers can identify which external
service (e.g. "openai", "sqlite", "local-storage") caused the failure.

The hierarchy is organized by pipeline stage:

    AgriAIError  (base -- catch-all for any AgriAI error)
    +-- UnsupportedFormatError     (ingestion: unknown MIME type, never retried)
    +-- ExtractionFailedError      (ingestion: corrupt source / fetch failure)
    +-- EmbeddingBatchFailedError  (ingestion: embedding backend failure)
    +-- DocumentNotFoundError      (ingestion: missing or tombstoned document)
    +-- QueueStalledError          (queue: job stalled twice)
    +-- ProcessingFailedError      (queue: a document job returned a failure)
    +-- StorageError               (object storage failure)
    +-- LLMError                   (any chat-completion call failure)
    +-- GenerationUnavailableError (query: no backend / generation failed)
    +-- RetrievalDegradedError     (query: an answer-pipeline step failed)
    +-- ConfigurationError         (startup / invalid config)

The ``retryable`` class attribute tells the job queue whether spending
another attempt can change the outcome.
"""


class AgriAIError(Exception):
    """Base exception for all AgriAI errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    retryable: bool = True

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------

class UnsupportedFormatError(AgriAIError):
    """Raised when no extractor is registered for a MIME type."""

    retryable = False

    def __init__(
        self,
        message: str = "Unsupported file type",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ExtractionFailedError(AgriAIError):
    """Raised when a source is malformed, empty, or cannot be fetched."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingBatchFailedError(AgriAIError):
    """Raised when one embedding batch fails; the whole document job fails with it."""

    def __init__(
        self,
        message: str = "Embedding batch failed",
        provider_name: str | None = None,
        batch_index: int | None = None,
    ) -> None:
        self._batch_index = batch_index
        super().__init__(message=message, provider_name=provider_name)

    @property
    def batch_index(self) -> int | None:
        return self._batch_index


class DocumentNotFoundError(AgriAIError):
    """Raised when a job references a document that is missing or tombstoned."""

    retryable = False

    def __init__(
        self,
        message: str = "Document not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Queue errors
# ---------------------------------------------------------------------------

class QueueStalledError(AgriAIError):
    """Raised (recorded) when a job stalls more often than the queue tolerates."""

    retryable = False

    def __init__(
        self,
        message: str = "Job stalled more than allowable limit",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProcessingFailedError(AgriAIError):
    """Raised by the document job handler when processing returned a failure.

    Carries the retry decision of the original error, whose class name is
    kept in ``error_type``.
    """

    def __init__(
        self,
        message: str = "Document processing failed",
        provider_name: str | None = None,
        retryable: bool = True,
        error_type: str | None = None,
    ) -> None:
        self.retryable = retryable
        self._error_type = error_type
        super().__init__(message=message, provider_name=provider_name)

    @property
    def error_type(self) -> str:
        return self._error_type or type(self).__name__


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------

class StorageError(AgriAIError):
    """Raised when the object storage cannot read, list, or delete a key."""

    def __init__(
        self,
        message: str = "Object storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(AgriAIError):
    """Raised when an LLM API call fails or returns an unparseable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Query-time errors (absorbed by the RAG service, never surfaced to callers)
# ---------------------------------------------------------------------------

class GenerationUnavailableError(AgriAIError):
    """Raised inside the RAG service when no answer can be generated."""

    def __init__(
        self,
        message: str = "Generation backend unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RetrievalDegradedError(AgriAIError):
    """Raised inside the RAG service when an intermediate step fails."""

    def __init__(
        self,
        message: str = "Retrieval step degraded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(AgriAIError):
    """Raised when configuration is invalid or missing at startup."""

    retryable = False

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


def is_retryable(exc: BaseException) -> bool:
    """Return whether another attempt could change the outcome of *exc*."""
    if isinstance(exc, AgriAIError):
        return exc.retryable
    return True
