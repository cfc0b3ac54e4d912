"""Shared pytest fixtures for the AgriAI test suite."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from agriai.config.settings import Settings
from agriai.interfaces.embedding_provider import IEmbeddingProvider
from agriai.interfaces.llm_provider import ILLMProvider
from agriai.models.document import AccessLevel, Document
from agriai.providers.storage.local_object_storage import LocalObjectStorage
from agriai.providers.store.sqlite_document_store import SQLiteDocumentStore
from agriai.services.ingestion.content_analyzer import HeuristicContentAnalyzer

EMBEDDING_DIMENSION = 32


def fake_embedding(text: str) -> list[float]:
    """Deterministic bag-of-words vector: texts sharing words point the same way."""
    vector = [0.0] * EMBEDDING_DIMENSION
    for word in text.lower().split():
        word = word.strip(".,;:!?\"'()")
        if len(word) < 3:
            continue
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % EMBEDDING_DIMENSION
        vector[bucket] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


# ---------------------------------------------------------------------------
# Settings and sample data
# ---------------------------------------------------------------------------


@pytest.fixture
def app_settings(tmp_path: Path) -> Settings:
    """Settings pointing every path into tmp_path, with fast queue timings."""
    return Settings(
        openai_api_key="",
        database_path=str(tmp_path / "agriai.db"),
        storage_root=str(tmp_path / "objects"),
        non_critical_delay_seconds=0.0,
        job_backoff_seconds=0.01,
        embedding_batch_delay_seconds=0.0,
        stall_timeout_seconds=60.0,
        stall_check_interval_seconds=60.0,
        document_workers=2,
        notification_workers=2,
        cleanup_workers=1,
        chunk_size=400,
        chunk_overlap=80,
        min_chunk_size=50,
    )


@pytest.fixture
def sample_italian_text() -> str:
    """A few paragraphs of Italian agronomy text for chunking and analysis."""
    return (
        "La coltivazione del grano duro in Puglia richiede una buona preparazione del terreno. "
        "La semina si esegue tra novembre e dicembre, quando il terreno è umido ma non saturo. "
        "Il controllo delle infestanti è importante nelle prime fasi di crescita.\n\n"
        "La concimazione azotata va frazionata in due interventi. Il primo intervento avviene "
        "in accestimento, il secondo in levata. Un eccesso di azoto aumenta il rischio di "
        "allettamento e di malattie fungine come la septoria.\n\n"
        "L'irrigazione di soccorso può essere utile nelle annate siccitose. Gli agricoltori "
        "che aderiscono alla PAC devono rispettare la condizionalità e gli impegni ambientali. "
        "Le aziende con certificazione biologico seguono il Reg. UE 2018/848 per i fertilizzanti "
        "ammessi.\n\n"
        "La raccolta si effettua a giugno con la mietitrebbia. Il contenuto proteico della "
        "granella determina il prezzo di vendita. Un buono stoccaggio in silos ventilati "
        "preserva la qualità del prodotto."
    )


@pytest.fixture
def make_document() -> Callable[..., Document]:
    """Factory for Document records with sensible defaults."""

    def _make(
        document_id: str = "doc-1",
        title: str = "Manuale grano duro",
        **fields,
    ) -> Document:
        fields.setdefault("mime_type", "text/plain")
        fields.setdefault("access_level", AccessLevel.PUBLIC)
        return Document(id=document_id, title=title, **fields)

    return _make


# ---------------------------------------------------------------------------
# Real local providers
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def document_store(tmp_path: Path) -> SQLiteDocumentStore:
    """An initialized SQLite store in a temporary directory."""
    store = SQLiteDocumentStore(db_path=tmp_path / "agriai.db")
    await store.initialize()
    return store


@pytest.fixture
def object_storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(root=tmp_path / "objects")


@pytest.fixture
def analyzer() -> HeuristicContentAnalyzer:
    return HeuristicContentAnalyzer()


# ---------------------------------------------------------------------------
# Mock provider fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider that returns configurable responses.

    Override with ``mock_llm_provider.complete.side_effect = [...]`` for
    the intent / entities / answer sequence of one RAG question.
    """
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.get_model_name.return_value = "mock-model"
    mock.is_available.return_value = True
    mock.complete = AsyncMock(return_value="general")
    return mock


@pytest.fixture
def mock_embedding_provider() -> IEmbeddingProvider:
    """Mock IEmbeddingProvider producing deterministic bag-of-words vectors."""

    async def _embed(texts: list[str]) -> list[list[float]]:
        return [fake_embedding(t) for t in texts]

    async def _embed_single(text: str) -> list[float]:
        return fake_embedding(text)

    mock = MagicMock(spec=IEmbeddingProvider)
    mock.get_provider_name.return_value = "mock-embedding"
    mock.get_model_name.return_value = "mock-embedding-model"
    mock.get_dimension.return_value = EMBEDDING_DIMENSION
    mock.is_available.return_value = True
    mock.embed = AsyncMock(side_effect=_embed)
    mock.embed_single = AsyncMock(side_effect=_embed_single)
    return mock
