"""Abstract base class for raw-file object storage.

The pipeline receives a ready client; it never builds credentials itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class StorageObject:
    """One entry of a storage listing."""

    key: str
    size: int
    last_modified: datetime | None = None


# Concrete implementations:
#   LocalObjectStorage -- files under a root directory
# Located in: agriai/providers/storage/
class IObjectStorage(ABC):
    """Contract for the blob store holding uploaded files."""

    @abstractmethod
    async def download_as_buffer(self, key: str) -> bytes:
        """Return the object's bytes.

        Raises
        ------
        agriai.utils.errors.StorageError
            If the key does not exist or cannot be read.
        """

    @abstractmethod
    async def upload(self, key: str, data: bytes) -> None:
        """Store *data* under *key*, overwriting any existing object."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the object. Deleting a missing key is not an error."""

    @abstractmethod
    async def list(self, prefix: str = "") -> list[StorageObject]:
        """List objects whose key starts with *prefix*."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"local-storage"``."""
