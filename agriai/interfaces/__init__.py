"""Public interface definitions for every external collaborator.

Business logic talks only to these abstract base classes; concrete
adapters are constructed in ``agriai/main.py`` and injected, so tests can
pass ``MagicMock(spec=...)`` fakes and backends can be swapped.

    Interface            ->  Concrete implementation
    ------------------------------------------------------------
    ILLMProvider         ->  OpenAILLMProvider
    IEmbeddingProvider   ->  OpenAIEmbeddingProvider
    IDocumentStore       ->  SQLiteDocumentStore
    IObjectStorage       ->  LocalObjectStorage
    ISessionRegistry     ->  InMemorySessionRegistry
    IContentAnalyzer     ->  HeuristicContentAnalyzer
"""

from agriai.interfaces.content_analyzer import IContentAnalyzer
from agriai.interfaces.document_store import IDocumentStore
from agriai.interfaces.embedding_provider import IEmbeddingProvider
from agriai.interfaces.llm_provider import ILLMProvider
from agriai.interfaces.object_storage import IObjectStorage, StorageObject
from agriai.interfaces.session_registry import ISessionRegistry, MessageTransport

__all__ = [
    "IContentAnalyzer",
    "IDocumentStore",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IObjectStorage",
    "ISessionRegistry",
    "MessageTransport",
    "StorageObject",
]
