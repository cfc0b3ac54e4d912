"""Object storage adapters."""

from agriai.providers.storage.local_object_storage import LocalObjectStorage

__all__ = ["LocalObjectStorage"]
