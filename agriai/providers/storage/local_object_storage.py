"""Filesystem-backed object storage.

Keys are POSIX-style relative paths (``documents/2024/report.pdf``) mapped
under a root directory.  Blocking file I/O runs in ``asyncio.to_thread`` so
workers never stall the event loop while reading large uploads.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import structlog

from agriai.interfaces.object_storage import IObjectStorage, StorageObject
from agriai.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)


class LocalObjectStorage(IObjectStorage):
    """Object storage rooted at a local directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if path != self._root and self._root not in path.parents:
            raise StorageError(
                message=f"Key escapes storage root: {key}",
                provider_name=self.get_provider_name(),
            )
        return path

    async def download_as_buffer(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageError(
                message=f"Cannot read {key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def upload(self, key: str, data: bytes) -> None:
        path = self._path_for(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(
                message=f"Cannot write {key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("object_uploaded", key=key, size=len(data))

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            raise StorageError(
                message=f"Cannot delete {key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("object_deleted", key=key)

    async def list(self, prefix: str = "") -> list[StorageObject]:
        def _scan() -> list[StorageObject]:
            if not self._root.exists():
                return []
            entries = []
            for path in sorted(self._root.rglob("*")):
                if not path.is_file():
                    continue
                key = path.relative_to(self._root).as_posix()
                if not key.startswith(prefix):
                    continue
                stat = path.stat()
                entries.append(
                    StorageObject(
                        key=key,
                        size=stat.st_size,
                        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    )
                )
            return entries

        return await asyncio.to_thread(_scan)

    def get_provider_name(self) -> str:
        return "local-storage"
