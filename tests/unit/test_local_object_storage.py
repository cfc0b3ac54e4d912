"""Unit tests for LocalObjectStorage."""

from __future__ import annotations

import pytest

from agriai.providers.storage.local_object_storage import LocalObjectStorage
from agriai.utils.errors import StorageError


class TestLocalObjectStorage:
    @pytest.mark.asyncio
    async def test_upload_and_download(self, object_storage: LocalObjectStorage) -> None:
        await object_storage.upload("documents/d1/manuale.pdf", b"%PDF-1.4")
        assert await object_storage.download_as_buffer("documents/d1/manuale.pdf") == b"%PDF-1.4"

    @pytest.mark.asyncio
    async def test_download_missing_raises(self, object_storage: LocalObjectStorage) -> None:
        with pytest.raises(StorageError, match="Cannot read"):
            await object_storage.download_as_buffer("documents/missing.txt")

    @pytest.mark.asyncio
    async def test_list_by_prefix(self, object_storage: LocalObjectStorage) -> None:
        await object_storage.upload("documents/b/2.txt", b"22")
        await object_storage.upload("documents/a/1.txt", b"1")
        await object_storage.upload("exports/report.csv", b"x")

        listing = await object_storage.list("documents/")

        assert [(o.key, o.size) for o in listing] == [("documents/a/1.txt", 1), ("documents/b/2.txt", 2)]
        assert listing[0].last_modified is not None

    @pytest.mark.asyncio
    async def test_list_empty_root(self, tmp_path) -> None:
        assert await LocalObjectStorage(tmp_path / "never-created").list() == []

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, object_storage: LocalObjectStorage) -> None:
        await object_storage.upload("documents/a.txt", b"a")
        await object_storage.delete("documents/a.txt")
        await object_storage.delete("documents/a.txt")
        assert await object_storage.list() == []

    @pytest.mark.asyncio
    async def test_key_cannot_escape_root(self, object_storage: LocalObjectStorage) -> None:
        with pytest.raises(StorageError, match="escapes"):
            await object_storage.upload("../outside.txt", b"x")
