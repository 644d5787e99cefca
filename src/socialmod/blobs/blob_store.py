"""
Blob storage.

The store is content-agnostic: it keeps bytes under an opaque handle and
knows nothing about image formats. ``LocalBlobStore`` keeps each blob as a
file (plus a small sidecar holding its mime type) under a root directory.
"""

from __future__ import annotations

import asyncio
import os
import secrets
from pathlib import Path
from typing import Protocol

from socialmod.datatypes.image_datatypes import BlobItem
from socialmod.errors import BlobAlreadyExistsError, InvalidInputError, NotFoundError
from socialmod.util.handles import validate_handle
from socialmod.util.logger import get_logger

logger = get_logger("blob_store")

_TYPE_SUFFIX = ".type"


class BlobStore(Protocol):
    """Interface of the blob storage collaborator."""

    async def insert(self, blob_handle: str, data: bytes, content_type: str) -> None:
        """Store ``data``; raises BlobAlreadyExistsError if the handle is taken."""
        ...

    async def read(self, blob_handle: str) -> BlobItem:
        """Return the blob; raises NotFoundError if absent."""
        ...

    async def exists(self, blob_handle: str) -> bool:
        ...

    async def delete(self, blob_handle: str) -> None:
        """Remove the blob; raises NotFoundError if absent."""
        ...


class LocalBlobStore:
    """Filesystem blob store.

    Writes go to a temporary file that is hard-linked into place, so a blob is
    either fully present or absent and two writers of the same handle cannot
    both succeed.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, blob_handle: str) -> Path:
        validate_handle(blob_handle, "blob_handle")
        if "/" in blob_handle or "\\" in blob_handle or blob_handle in (".", ".."):
            raise InvalidInputError(f"blob handle {blob_handle!r} is not a valid file name")
        return self.root / blob_handle

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _insert_sync(self, path: Path, data: bytes, content_type: str) -> None:
        temp_path = path.with_name(f".{path.name}.{secrets.token_hex(6)}.tmp")
        try:
            temp_path.write_bytes(data)
            try:
                os.link(temp_path, path)
            except FileExistsError as exc:
                raise BlobAlreadyExistsError(f"blob {path.name} already exists") from exc
            path.with_name(path.name + _TYPE_SUFFIX).write_text(content_type, encoding="utf-8")
        finally:
            temp_path.unlink(missing_ok=True)

    def _read_sync(self, path: Path) -> BlobItem:
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"blob {path.name} not found") from exc
        type_path = path.with_name(path.name + _TYPE_SUFFIX)
        content_type = type_path.read_text(encoding="utf-8") if type_path.exists() else None
        return BlobItem(blob_handle=path.name, data=data, content_type=content_type)

    def _delete_sync(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"blob {path.name} not found") from exc
        path.with_name(path.name + _TYPE_SUFFIX).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def insert(self, blob_handle: str, data: bytes, content_type: str) -> None:
        path = self._path(blob_handle)
        await asyncio.to_thread(self._insert_sync, path, data, content_type)
        logger.debug("[BLOB STORE] Stored %s (%d bytes, %s)", blob_handle, len(data), content_type)

    async def read(self, blob_handle: str) -> BlobItem:
        return await asyncio.to_thread(self._read_sync, self._path(blob_handle))

    async def exists(self, blob_handle: str) -> bool:
        return await asyncio.to_thread(self._path(blob_handle).is_file)

    async def delete(self, blob_handle: str) -> None:
        await asyncio.to_thread(self._delete_sync, self._path(blob_handle))
        logger.debug("[BLOB STORE] Deleted %s", blob_handle)
