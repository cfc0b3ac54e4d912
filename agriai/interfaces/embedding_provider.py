"""Abstract base class for text-embedding service providers.

Defines the contract for turning text into fixed-length vectors.  The
document processor embeds chunks at ingestion time and queries at search
time through this interface only, so any embedding backend can be swapped
in as long as its dimensionality stays constant per model.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider -- OpenAI or any OpenAI-compatible endpoint
# Located in: agriai/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and search."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.

        Returns
        -------
        list[list[float]]
            Vectors corresponding positionally to *texts*, each of length
            :meth:`get_dimension`.

        Raises
        ------
        agriai.utils.errors.EmbeddingBatchFailedError
            If the embedding API call fails.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Embed one string (e.g. a search query)."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the vectors for the current model."""

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the embedding model identifier stored next to each vector.

        Similarity search only compares vectors produced by the same model.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured."""
