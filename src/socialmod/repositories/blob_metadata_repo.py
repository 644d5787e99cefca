"""
Persistent storage for blob and image metadata.

A metadata row is the definition of existence for a blob: the gateway writes
it only after the bytes are stored and deletes it before touching the bytes.
"""

from __future__ import annotations

import time
from typing import List, Optional, Tuple

import aiosqlite

from socialmod.database.db_cache import DatabaseQueryCache
from socialmod.database.db_connection import ConnectionManager
from socialmod.datatypes.content_datatypes import ReviewStatus
from socialmod.datatypes.image_datatypes import BlobMetadata, ImageMetadata, ImageType
from socialmod.datatypes.process_datatypes import StorageConsistencyMode
from socialmod.errors import ConflictError, NotFoundError
from socialmod.util.logger import get_logger

logger = get_logger("blob_metadata_repo")

_IMAGE_COLUMNS = (
    "blob_handle, app_handle, user_handle, image_type, content_type, length, "
    "review_status, resizes_completed, created_time"
)
_BLOB_COLUMNS = "blob_handle, app_handle, user_handle, content_type, length, created_time"


def _row_to_image(row: aiosqlite.Row) -> ImageMetadata:
    return ImageMetadata(
        blob_handle=row["blob_handle"],
        app_handle=row["app_handle"],
        user_handle=row["user_handle"],
        image_type=ImageType(row["image_type"]),
        content_type=row["content_type"],
        length=row["length"],
        review_status=ReviewStatus(row["review_status"]),
        # Size ids are single characters stored back to back
        resizes_completed=frozenset(row["resizes_completed"]),
        created_time=row["created_time"],
    )


def _row_to_blob(row: aiosqlite.Row) -> BlobMetadata:
    return BlobMetadata(
        blob_handle=row["blob_handle"],
        app_handle=row["app_handle"],
        user_handle=row["user_handle"],
        content_type=row["content_type"],
        length=row["length"],
        created_time=row["created_time"],
    )


class ImageMetadataRepo:
    """CRUD for the ``image_metadata`` table."""

    def __init__(self, connection: ConnectionManager, cache: DatabaseQueryCache) -> None:
        self._connection = connection
        self._cache = cache

    @staticmethod
    def _key(blob_handle: str) -> str:
        return f"image:{blob_handle}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, metadata: ImageMetadata) -> ImageMetadata:
        if not metadata.created_time:
            metadata.created_time = time.time()
        try:
            async with self._connection.transaction() as conn:
                await conn.execute(
                    f"INSERT INTO image_metadata ({_IMAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        metadata.blob_handle,
                        metadata.app_handle,
                        metadata.user_handle,
                        metadata.image_type.value,
                        metadata.content_type,
                        metadata.length,
                        metadata.review_status.value,
                        "".join(sorted(metadata.resizes_completed)),
                        metadata.created_time,
                    ),
                )
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(f"image metadata for {metadata.blob_handle} already exists") from exc
        self._cache.discard(self._key(metadata.blob_handle))
        return metadata

    async def add_resize(self, blob_handle: str, size_id: str) -> bool:
        """Append ``size_id`` to ``resizes_completed`` in one statement.

        Returns:
            True if the id was appended, False if it was already recorded.

        Raises:
            NotFoundError: If the metadata row no longer exists.
        """
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE image_metadata SET resizes_completed = resizes_completed || ? "
                "WHERE blob_handle = ? AND instr(resizes_completed, ?) = 0",
                (size_id, blob_handle, size_id),
            )
            appended = cursor.rowcount == 1
            if not appended:
                cursor = await conn.execute("SELECT 1 FROM image_metadata WHERE blob_handle = ?", (blob_handle,))
                if await cursor.fetchone() is None:
                    raise NotFoundError(f"image metadata for {blob_handle} not found")
        self._cache.discard(self._key(blob_handle))
        return appended

    async def update_review_status(self, blob_handle: str, review_status: ReviewStatus) -> bool:
        """Set the review status unless the image is already rejected.

        Returns:
            True if the row changed.
        """
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE image_metadata SET review_status = ? "
                "WHERE blob_handle = ? AND review_status != ?",
                (review_status.value, blob_handle, ReviewStatus.REJECTED.value),
            )
            changed = cursor.rowcount == 1
        self._cache.discard(self._key(blob_handle))
        return changed

    async def delete(self, blob_handle: str) -> bool:
        async with self._connection.transaction() as conn:
            cursor = await conn.execute("DELETE FROM image_metadata WHERE blob_handle = ?", (blob_handle,))
            deleted = cursor.rowcount == 1
        self._cache.discard(self._key(blob_handle))
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(
        self,
        blob_handle: str,
        consistency: StorageConsistencyMode = StorageConsistencyMode.STRONG,
    ) -> Optional[ImageMetadata]:
        key = self._key(blob_handle)
        if consistency is StorageConsistencyMode.DEFAULT:
            hit, cached = self._cache.lookup(key)
            if hit:
                return cached

        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_IMAGE_COLUMNS} FROM image_metadata WHERE blob_handle = ?",
                (blob_handle,),
            )
            row = await cursor.fetchone()
        metadata = _row_to_image(row) if row else None
        self._cache.set(key, metadata)
        return metadata

    async def list_active_for_user(
        self,
        app_handle: str,
        user_handle: str,
        after_rowid: int,
        limit: int,
    ) -> List[Tuple[int, ImageMetadata]]:
        """Non-rejected images of one user, in upload order, after ``after_rowid``."""
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT rowid, {_IMAGE_COLUMNS} FROM image_metadata "
                "WHERE app_handle = ? AND user_handle = ? AND review_status != ? AND rowid > ? "
                "ORDER BY rowid LIMIT ?",
                (app_handle, user_handle, ReviewStatus.REJECTED.value, after_rowid, limit),
            )
            rows = await cursor.fetchall()
        return [(row["rowid"], _row_to_image(row)) for row in rows]

    async def list_incomplete(self, image_type: ImageType, size_count: int, limit: int = 100) -> List[str]:
        """Handles of ``image_type`` images with fewer than ``size_count`` completed resizes."""
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                "SELECT blob_handle FROM image_metadata "
                "WHERE image_type = ? AND length(resizes_completed) < ? ORDER BY rowid LIMIT ?",
                (image_type.value, size_count, limit),
            )
            rows = await cursor.fetchall()
        return [row["blob_handle"] for row in rows]


class BlobMetadataRepo:
    """CRUD for the ``blob_metadata`` table (non-image blobs)."""

    def __init__(self, connection: ConnectionManager, cache: DatabaseQueryCache) -> None:
        self._connection = connection
        self._cache = cache

    @staticmethod
    def _key(blob_handle: str) -> str:
        return f"blob:{blob_handle}"

    async def insert(self, metadata: BlobMetadata) -> BlobMetadata:
        if not metadata.created_time:
            metadata.created_time = time.time()
        try:
            async with self._connection.transaction() as conn:
                await conn.execute(
                    f"INSERT INTO blob_metadata ({_BLOB_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        metadata.blob_handle,
                        metadata.app_handle,
                        metadata.user_handle,
                        metadata.content_type,
                        metadata.length,
                        metadata.created_time,
                    ),
                )
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(f"blob metadata for {metadata.blob_handle} already exists") from exc
        self._cache.discard(self._key(metadata.blob_handle))
        return metadata

    async def delete(self, blob_handle: str) -> bool:
        async with self._connection.transaction() as conn:
            cursor = await conn.execute("DELETE FROM blob_metadata WHERE blob_handle = ?", (blob_handle,))
            deleted = cursor.rowcount == 1
        self._cache.discard(self._key(blob_handle))
        return deleted

    async def read(
        self,
        blob_handle: str,
        consistency: StorageConsistencyMode = StorageConsistencyMode.STRONG,
    ) -> Optional[BlobMetadata]:
        key = self._key(blob_handle)
        if consistency is StorageConsistencyMode.DEFAULT:
            hit, cached = self._cache.lookup(key)
            if hit:
                return cached

        async with self._connection.read() as conn:
            cursor = await conn.execute(
                f"SELECT {_BLOB_COLUMNS} FROM blob_metadata WHERE blob_handle = ?",
                (blob_handle,),
            )
            row = await cursor.fetchone()
        metadata = _row_to_blob(row) if row else None
        self._cache.set(key, metadata)
        return metadata
